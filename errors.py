"""
errors.py - Excepciones del servidor de licencias

Los rechazos de validación (clave desconocida, desactivada, expirada,
límite de activaciones) no son excepciones: son veredictos normales.
"""


class LicensingError(Exception):
    """Base de todos los errores del servidor de licencias"""
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message=None, code=None):
        self.message = message or self.default_message
        self.code = code or self.__class__.__name__
        super().__init__(self.message)


class AuthorizationFailure(LicensingError):
    status_code = 401
    default_message = "Invalid admin secret"


class InputError(LicensingError):
    """Parámetros administrativos inválidos (se rechazan antes de tocar la BD)"""
    status_code = 400
    default_message = "Invalid request"


class LicenseNotFound(LicensingError):
    status_code = 404
    default_message = "License not found"


class StorageUnavailable(LicensingError):
    """El almacenamiento durable no responde (o no existe en modo fallback)"""
    status_code = 503
    default_message = "License storage unavailable"


class DuplicateKeyError(LicensingError):
    """La clave generada ya existe en la BD"""
    status_code = 500
    default_message = "Duplicate license key"
