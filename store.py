"""
store.py - Almacenamiento de licencias, activaciones y logs de validación

Dos backends con la misma interfaz:

* ``SqlLicenseStore``: base de datos via Flask-SQLAlchemy (modo "database").
* ``MemoryLicenseStore``: catálogo fijo en memoria (modo "fallback"). Solo
  permite buscar claves; no guarda activaciones ni licencias nuevas.

El backend se elige una sola vez al arrancar (``create_store``).
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import text
from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    IntegrityError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)

from errors import DuplicateKeyError, StorageUnavailable
from models import db, Activation, License
from utils import utcnow

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (OperationalError, DisconnectionError, PoolTimeoutError)

FALLBACK_UNAVAILABLE = "License generation unavailable - database not connected"

# Locks por proceso para serializar el vínculo de activaciones (license_id % N)
LOCK_STRIPES = 64


@dataclass(frozen=True)
class StoragePolicy:
    """Timeout (segundos), reintentos y backoff exponencial para la BD"""
    timeout: float = 10.0
    retries: int = 3
    backoff: float = 0.2

    @classmethod
    def from_config(cls, cfg):
        return cls(
            timeout=cfg["STORAGE_TIMEOUT"],
            retries=cfg["STORAGE_RETRIES"],
            backoff=cfg["STORAGE_BACKOFF"],
        )

    def delay(self, attempt):
        return self.backoff * (2 ** attempt)


def _is_transient(error):
    if isinstance(error, TRANSIENT_ERRORS):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


class SqlLicenseStore:
    """Backend durable. Requiere un app context activo."""

    mode = "database"
    persists_activations = True

    def __init__(self, database, policy):
        self.db = database
        self.policy = policy
        self._ready = False
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]

    # ── Infraestructura ──────────────────────────────────────────────────────

    def initialize(self, demo_licenses=None):
        """Crea las tablas y siembra el catálogo demo si la BD está vacía"""
        count = self._run(lambda: License.query.count(), "schema creation")
        logger.info("Found %d existing licenses", count)

        if demo_licenses and count == 0:
            def _seed():
                now = utcnow()
                self.db.session.add_all([_demo_license(item, now) for item in demo_licenses])
                self._commit()

            self._run(_seed, "demo seeding")
            logger.info("Database seeded with %d demo licenses", len(demo_licenses))

    def _ensure_schema(self):
        if not self._ready:
            self.db.create_all()
            self._ready = True

    def _commit(self):
        try:
            self.db.session.commit()
        except Exception:
            self.db.session.rollback()
            raise

    def _run(self, operation, description, retries=None):
        """
        Ejecuta ``operation`` reintentando fallos transitorios de conexión.
        ``retries`` sustituye al número de reintentos de la política.
        """
        limit = self.policy.retries if retries is None else retries
        attempt = 0
        while True:
            try:
                self._ensure_schema()
                return operation()
            except SQLAlchemyError as e:
                self.db.session.rollback()
                if not _is_transient(e):
                    raise
                if attempt >= limit:
                    logger.error("Storage unavailable during %s after %d attempts: %s",
                                 description, attempt + 1, e)
                    raise StorageUnavailable() from e
                delay = self.policy.delay(attempt)
                attempt += 1
                logger.warning("Storage error during %s, retrying in %.2fs (%d/%d): %s",
                               description, delay, attempt, limit, e)
                time.sleep(delay)

    def _lock_for(self, license_id):
        # Licencias distintas pueden compartir lock; el número de locks no crece
        return self._locks[license_id % len(self._locks)]

    # ── Licencias ────────────────────────────────────────────────────────────

    def find_by_key(self, key):
        return self._run(
            lambda: License.query.filter_by(license_key=key).first(), "license lookup"
        )

    def insert_license(self, lic):
        def _insert():
            self.db.session.add(lic)
            try:
                self._commit()
            except IntegrityError as e:
                raise DuplicateKeyError(f"License key {lic.license_key} already exists") from e
            return lic

        return self._run(_insert, "license insert")

    def set_active(self, key, active):
        def _set():
            lic = License.query.filter_by(license_key=key).first()
            if lic is None:
                return None
            lic.is_active = active
            self._commit()
            return lic

        return self._run(_set, "license update")

    def stats(self, now):
        def _count():
            total = License.query.count()
            active = License.query.filter(
                License.is_active.is_(True), License.expiration_date > now
            ).count()
            return total, active

        return self._run(_count, "license stats")

    def ping(self):
        try:
            self._ensure_schema()
            self.db.session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            self.db.session.rollback()
            logger.warning("Database ping failed: %s", e)
            return False

    # ── Activaciones ─────────────────────────────────────────────────────────
    # list/add/update se usan dentro de atomic(), que hace el commit.

    def atomic(self, license_id, work):
        """
        Ejecuta ``work()`` como una unidad atómica para la licencia: lock del
        proceso por licencia + SELECT ... FOR UPDATE de la fila, commit al
        final. Así el conteo de activaciones y la inserción no se cruzan.
        """
        with self._lock_for(license_id):
            return self._run(lambda: self._atomic_once(license_id, work), "activation binding")

    def _atomic_once(self, license_id, work):
        try:
            self.db.session.query(License).filter_by(id=license_id).with_for_update().one()
            result = work()
        except Exception:
            self.db.session.rollback()
            raise
        self._commit()
        return result

    def list_activations(self, license_id):
        return Activation.query.filter_by(license_id=license_id)\
                               .order_by(Activation.first_activated.asc(), Activation.id.asc())\
                               .all()

    def add_activation(self, activation):
        self.db.session.add(activation)

    def update_activation(self, activation):
        self.db.session.add(activation)

    # ── Auditoría ────────────────────────────────────────────────────────────

    def append_log(self, entry):
        """Un solo intento: la auditoría no retrasa la respuesta de validación"""
        def _append():
            self.db.session.add(entry)
            self._commit()

        self._run(_append, "validation log", retries=0)


class MemoryLicenseStore:
    """Catálogo fijo en memoria cuando no hay base de datos configurada"""

    mode = "fallback"
    persists_activations = False

    def __init__(self, catalog, now=None):
        now = now or utcnow()
        self._licenses = {}
        for index, item in enumerate(catalog, start=1):
            lic = _demo_license(item, now)
            lic.id = index
            self._licenses[lic.license_key] = lic
        self._lock = threading.Lock()

    def find_by_key(self, key):
        return self._licenses.get(key)

    def insert_license(self, lic):
        raise StorageUnavailable(FALLBACK_UNAVAILABLE)

    def set_active(self, key, active):
        raise StorageUnavailable(FALLBACK_UNAVAILABLE)

    def stats(self, now):
        total = len(self._licenses)
        active = sum(1 for l in self._licenses.values()
                     if l.is_active and l.expiration_date > now)
        return total, active

    def ping(self):
        return True

    def atomic(self, license_id, work):
        with self._lock:
            return work()

    def list_activations(self, license_id):
        return []

    def add_activation(self, activation):
        pass

    def update_activation(self, activation):
        pass

    def append_log(self, entry):
        logger.info("Validation %s for key %s from %s: %s",
                    "succeeded" if entry.is_successful else "failed",
                    entry.license_key, entry.ip_address or "unknown", entry.error_message)


def _demo_license(item, now):
    return License(
        license_key=item["key"],
        customer_name=item["customer_name"],
        customer_email=item.get("customer_email"),
        max_activations=item.get("max_activations", 1),
        creation_date=now,
        expiration_date=now + timedelta(days=item["days"]),
        is_active=True,
    )


def create_store(app):
    """Elige el backend una única vez al arrancar"""
    if not app.config.get("SQLALCHEMY_DATABASE_URI"):
        logger.warning("No DATABASE_URL configured; running in IN-MEMORY fallback mode "
                       "(limited functionality)")
        return MemoryLicenseStore(app.config["DEMO_LICENSES"])

    store = SqlLicenseStore(db, StoragePolicy.from_config(app.config))
    seed = app.config["DEMO_LICENSES"] if app.config["SEED_DEMO_LICENSES"] else None
    with app.app_context():
        try:
            store.initialize(seed)
        except StorageUnavailable:
            logger.error("Database initialization failed; license requests will report "
                         "service unavailable until the database is reachable")
    return store
