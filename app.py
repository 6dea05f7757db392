"""
app.py - Aplicación principal Flask
"""

import logging
import os

from flask import Flask

from audit import AuditLog
from config import config
from licensing import LicenseIssuer, LicenseValidator, LicensingService
from models import db
from store import create_store

logger = logging.getLogger(__name__)


def create_app(config_name='default', overrides=None):
    """Factory para crear la aplicación Flask"""
    app = Flask(__name__)

    # Cargar configuración
    app_config = config[config_name]
    app.config.from_object(app_config)
    app.config.update(overrides or {})
    app_config.init_app(app)

    # Inicializar base de datos (solo si hay una configurada)
    if app.config.get("SQLALCHEMY_DATABASE_URI"):
        db.init_app(app)

    # El backend se elige una sola vez, aquí
    store = create_store(app)
    audit = AuditLog(store)
    app.extensions["licensing"] = LicensingService(
        store=store,
        audit=audit,
        validator=LicenseValidator(store, audit),
        issuer=LicenseIssuer(
            store,
            prefix=app.config["LICENSE_PREFIX"],
            attempts=app.config["KEY_GENERATION_ATTEMPTS"],
        ),
    )

    # Registrar blueprints
    from routes.validation import bp as validation_bp
    from routes.admin_api import bp as admin_api_bp
    from routes.health import bp as health_bp

    app.register_blueprint(validation_bp)
    app.register_blueprint(admin_api_bp)
    app.register_blueprint(health_bp)

    if store.mode == "database":
        logger.info("License server started with DATABASE SUPPORT")
    else:
        logger.warning("License server started in IN-MEMORY MODE (limited functionality)")

    return app


# Crear instancia de la app
app = create_app(os.getenv('FLASK_ENV', 'production'))


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")), debug=False)
