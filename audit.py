"""
audit.py - Registro de intentos de validación
"""

import logging

from models import ValidationLog
from utils import utcnow

logger = logging.getLogger(__name__)


class AuditLog:
    """Agrega una entrada por intento de validación; nunca falla hacia el llamador"""

    def __init__(self, store):
        self.store = store

    def record(self, license_id, license_key, hardware_fingerprint, successful,
               error_message="", ip_address="", device_info="", product_version=""):
        entry = ValidationLog(
            license_id=license_id,
            license_key=(license_key or "")[:200],
            hardware_fingerprint=(hardware_fingerprint or "")[:100],
            validation_date=utcnow(),
            is_successful=successful,
            error_message=(error_message or "")[:500],
            ip_address=(ip_address or "")[:50],
            device_info=(device_info or "")[:200],
            product_version=(product_version or "")[:50],
        )
        try:
            self.store.append_log(entry)
        except Exception:
            logger.warning("Failed to write validation log for key %s", license_key, exc_info=True)
