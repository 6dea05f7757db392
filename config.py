"""
config.py - Configuración centralizada del servidor de licencias
"""

import logging
import os

from sqlalchemy.pool import NullPool


def _env_int(name, default):
    return int(os.getenv(name, default))


def _env_float(name, default):
    return float(os.getenv(name, default))


def _env_flag(name, default="0"):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Configuración base"""
    # Base de datos (sin DATABASE_URL el servidor arranca en modo fallback)
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL") or None
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Política de operaciones de almacenamiento
    STORAGE_TIMEOUT = _env_float("STORAGE_TIMEOUT", "10")
    STORAGE_RETRIES = _env_int("STORAGE_RETRIES", "3")
    STORAGE_BACKOFF = _env_float("STORAGE_BACKOFF", "0.2")

    # Seguridad
    ADMIN_SECRET = os.getenv("ADMIN_SECRET", "")

    # Configuración de licencias
    LICENSE_PREFIX = "PCOPT"
    KEY_GENERATION_ATTEMPTS = 2
    DEFAULT_VALIDITY_DAYS = 365
    MAX_VALIDITY_DAYS = 3650
    MAX_BULK_COUNT = 1000
    MAX_CUSTOMER_NAME_LENGTH = 250
    DEFAULT_MAX_ACTIVATIONS = 1

    # Catálogo de demostración (semilla de la BD y modo fallback)
    SEED_DEMO_LICENSES = _env_flag("SEED_DEMO_LICENSES")
    DEMO_LICENSES = [
        {"key": "PCOPT-STD01-DEMO1-TEST1-12345", "customer_name": "Demo User 1", "days": 365},
        {"key": "PCOPT-STD02-DEMO2-TEST2-67890", "customer_name": "Demo User 2", "days": 365},
    ]

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    SERVER_VERSION = "2.1"

    @staticmethod
    def init_app(app):
        """Inicialización de la aplicación"""
        logging.basicConfig(
            level=app.config["LOG_LEVEL"],
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        uri = app.config.get("SQLALCHEMY_DATABASE_URI")
        if not uri:
            return

        if uri.startswith("postgres://"):
            uri = uri.replace("postgres://", "postgresql://", 1)
            app.config["SQLALCHEMY_DATABASE_URI"] = uri

        options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
        options.update(engine_options(uri, app.config["STORAGE_TIMEOUT"]))
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = options


def engine_options(uri, timeout):
    """Traduce el timeout de almacenamiento a opciones del engine"""
    if uri.startswith("sqlite"):
        # Flask-SQLAlchemy elige el pool para sqlite (StaticPool en memoria)
        return {"connect_args": {"timeout": timeout, "check_same_thread": False}}

    options = {"poolclass": NullPool, "pool_pre_ping": True}
    if uri.startswith("postgresql"):
        options["connect_args"] = {
            "connect_timeout": max(1, int(timeout)),
            "options": f"-c statement_timeout={int(timeout * 1000)}",
        }
    return options


class DevelopmentConfig(Config):
    """Configuración de desarrollo"""
    DEBUG = True
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")


class ProductionConfig(Config):
    """Configuración de producción"""
    DEBUG = False


class TestingConfig(Config):
    """Configuración de pruebas"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    ADMIN_SECRET = "test-admin-secret"
    STORAGE_RETRIES = 1
    STORAGE_BACKOFF = 0
    SEED_DEMO_LICENSES = False


# Configuración por defecto
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}
