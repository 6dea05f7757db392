"""
licensing.py - Validación de licencias, vínculo con el hardware y emisión de claves
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from errors import DuplicateKeyError, LicenseNotFound, LicensingError, StorageUnavailable
from models import Activation, License
from utils import generate_key, make_expiry, utcnow

logger = logging.getLogger(__name__)

# Motivos de rechazo (los clientes pueden decidir según este valor)
UNKNOWN_KEY = "unknown_key"
DEACTIVATED = "deactivated"
EXPIRED = "expired"
ACTIVATION_LIMIT_REACHED = "activation_limit_reached"

STORAGE_ERROR_MESSAGE = "License storage error; remaining licenses were not generated"


def _iso(value):
    return value.isoformat() if value else None


@dataclass
class ValidationVerdict:
    is_valid: bool
    reason: Optional[str] = None
    error_message: Optional[str] = None
    customer_name: Optional[str] = None
    expiration_date: Optional[datetime] = None
    remaining_activations: Optional[int] = None

    @classmethod
    def reject(cls, reason, message):
        return cls(is_valid=False, reason=reason, error_message=message)

    def to_dict(self):
        if not self.is_valid:
            return {"isValid": False, "reason": self.reason, "errorMessage": self.error_message}
        return {
            "isValid": True,
            "customerName": self.customer_name,
            "expirationDate": _iso(self.expiration_date),
            "remainingActivations": self.remaining_activations,
        }


class LicenseValidator:
    """
    Decide si una clave es válida para una huella de hardware.

    Orden fijo de comprobaciones: existencia, activa, expiración, vínculo.
    Cada intento queda registrado en el log de auditoría.
    """

    def __init__(self, store, audit, clock=utcnow):
        self.store = store
        self.audit = audit
        self.clock = clock

    def validate(self, license_key, hardware_fingerprint, machine_name=None,
                 product_version=None, ip_address="", device_info=""):
        context = {
            "ip_address": ip_address,
            "device_info": device_info,
            "product_version": product_version or "",
        }

        try:
            lic = self.store.find_by_key(license_key)
            if lic is None:
                verdict = ValidationVerdict.reject(UNKNOWN_KEY, "Invalid license key")
                return self._finish(None, license_key, hardware_fingerprint, verdict, context)

            license_id = lic.id
            now = self.clock()

            if not lic.is_active:
                verdict = ValidationVerdict.reject(DEACTIVATED, "License has been deactivated")
            elif lic.is_expired(now):
                verdict = ValidationVerdict.reject(EXPIRED, "License has expired")
            else:
                verdict = self.store.atomic(
                    license_id,
                    lambda: self._bind(lic, hardware_fingerprint, machine_name, product_version, now),
                )
        except StorageUnavailable:
            logger.error("Validation of key %s from %s aborted: storage unavailable",
                         license_key, ip_address or "unknown")
            raise

        return self._finish(license_id, license_key, hardware_fingerprint, verdict, context)

    def _bind(self, lic, fingerprint, machine_name, product_version, now):
        activations = self.store.list_activations(lic.id)
        current = next((a for a in activations if a.hardware_fingerprint == fingerprint), None)

        if current is not None:
            # Renovación desde un equipo ya vinculado: nunca cuenta contra el límite
            current.last_seen = now
            if machine_name:
                current.machine_name = machine_name
            if product_version:
                current.product_version = product_version
            self.store.update_activation(current)
            bound = len(activations)
        elif len(activations) >= lic.max_activations:
            return ValidationVerdict.reject(
                ACTIVATION_LIMIT_REACHED,
                f"License already activated on {lic.max_activations} machine(s); "
                f"activation limit reached",
            )
        else:
            self.store.add_activation(Activation(
                license_id=lic.id,
                hardware_fingerprint=fingerprint,
                machine_name=machine_name or "",
                first_activated=now,
                last_seen=now,
                product_version=product_version or "",
            ))
            bound = len(activations) + 1

        return ValidationVerdict(
            is_valid=True,
            customer_name=lic.customer_name,
            expiration_date=lic.expiration_date,
            remaining_activations=self._remaining(lic, bound),
        )

    def _remaining(self, lic, bound):
        # Sin persistencia (modo fallback) nunca se consume capacidad
        if not self.store.persists_activations:
            return lic.max_activations
        return max(0, lic.max_activations - bound)

    def _finish(self, license_id, license_key, fingerprint, verdict, context):
        if not verdict.is_valid:
            logger.info("Validation rejected for key %s: %s", license_key, verdict.reason)
        self.audit.record(license_id, license_key, fingerprint, verdict.is_valid,
                          verdict.error_message or "", **context)
        return verdict


@dataclass
class IssueResult:
    """Resultado de emitir una licencia (uno por entrada en la generación masiva)"""
    success: bool
    customer_name: str
    validity_days: int
    license_key: Optional[str] = None
    creation_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    max_activations: Optional[int] = None
    message: str = ""
    status_code: int = 200

    @classmethod
    def failed(cls, customer_name, validity_days, error):
        return cls(success=False, customer_name=customer_name, validity_days=validity_days,
                   message=error.message, status_code=error.status_code)

    def to_dict(self):
        data = {
            "success": self.success,
            "licenseKey": self.license_key,
            "customerName": self.customer_name,
            "creationDate": _iso(self.creation_date),
            "expirationDate": _iso(self.expiration_date),
            "validityDays": self.validity_days,
        }
        if self.success:
            data["maxActivations"] = self.max_activations
        else:
            data["message"] = self.message
        return data


class LicenseIssuer:
    """Genera y persiste licencias nuevas (ruta administrativa)"""

    def __init__(self, store, prefix="PCOPT", attempts=2, key_factory=generate_key,
                 clock=utcnow):
        self.store = store
        self.prefix = prefix
        self.attempts = max(1, attempts)
        self.key_factory = key_factory
        self.clock = clock

    def generate(self, customer_name, validity_days, customer_email=None, max_activations=1):
        """Genera una licencia; regenera la clave si choca con una existente"""
        last_error = None
        for attempt in range(1, self.attempts + 1):
            now = self.clock()
            lic = License(
                license_key=self.key_factory(self.prefix, now),
                customer_name=customer_name,
                customer_email=customer_email,
                max_activations=max_activations,
                creation_date=now,
                expiration_date=make_expiry(validity_days, now),
                is_active=True,
            )
            result = IssueResult(
                success=True,
                customer_name=customer_name,
                validity_days=validity_days,
                license_key=lic.license_key,
                creation_date=lic.creation_date,
                expiration_date=lic.expiration_date,
                max_activations=max_activations,
                message="License generated successfully",
            )
            try:
                self.store.insert_license(lic)
            except DuplicateKeyError as e:
                logger.warning("Duplicate license key generated (attempt %d/%d), regenerating",
                               attempt, self.attempts)
                last_error = e
                continue

            logger.info("Generated license %s for '%s' (valid for %d days)",
                        result.license_key, customer_name, validity_days)
            return result

        raise DuplicateKeyError(
            f"Could not generate a unique license key after {self.attempts} attempts"
        ) from last_error

    def generate_bulk(self, customer_name_prefix, count, validity_days):
        """
        Genera ``count`` licencias en orden. Cada entrada informa si se guardó;
        si el almacenamiento cae o falla de forma inesperada, las entradas
        restantes se marcan fallidas y las ya guardadas se siguen informando.
        """
        results = []
        unavailable = None
        for index in range(1, count + 1):
            name = f"{customer_name_prefix} {index}"
            if unavailable is not None:
                results.append(IssueResult.failed(name, validity_days, unavailable))
                continue
            try:
                results.append(self.generate(name, validity_days))
            except StorageUnavailable as e:
                unavailable = e
                results.append(IssueResult.failed(name, validity_days, e))
            except DuplicateKeyError as e:
                results.append(IssueResult.failed(name, validity_days, e))
            except (LicensingError, SQLAlchemyError) as e:
                logger.error("Bulk generation for '%s' stopped at entry %d: %s",
                             customer_name_prefix, index, e)
                unavailable = LicensingError(STORAGE_ERROR_MESSAGE)
                results.append(IssueResult.failed(name, validity_days, unavailable))

        failed = sum(1 for r in results if not r.success)
        if failed:
            logger.error("Bulk generation for '%s': %d of %d licenses failed",
                         customer_name_prefix, failed, count)
        return results

    def set_active(self, license_key, active):
        """Desactivación / reactivación fuera de banda"""
        lic = self.store.set_active(license_key, active)
        if lic is None:
            raise LicenseNotFound()
        logger.info("License %s %s", license_key, "reactivated" if active else "deactivated")
        return lic


@dataclass
class LicensingService:
    store: object
    audit: object
    validator: LicenseValidator
    issuer: LicenseIssuer


def get_licensing() -> LicensingService:
    return current_app.extensions["licensing"]
