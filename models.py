"""
models.py - Modelos de base de datos SQLAlchemy
"""

from flask_sqlalchemy import SQLAlchemy

from utils import utcnow

db = SQLAlchemy()


class License(db.Model):
    """Modelo principal de licencias"""
    id              = db.Column(db.Integer, primary_key=True)
    license_key     = db.Column(db.String(64), unique=True, nullable=False, index=True)
    customer_name   = db.Column(db.String(300), nullable=False)
    customer_email  = db.Column(db.String(254), nullable=True)
    max_activations = db.Column(db.Integer, nullable=False, default=1)
    creation_date   = db.Column(db.DateTime, nullable=False, default=utcnow)
    expiration_date = db.Column(db.DateTime, nullable=False)
    is_active       = db.Column(db.Boolean, nullable=False, default=True)

    # Relaciones
    activations = db.relationship('Activation', backref='license', lazy='dynamic',
                                  cascade='all, delete-orphan')

    def is_expired(self, now=None):
        return (now or utcnow()) > self.expiration_date

    def __repr__(self):
        return f"<License {self.license_key} - {self.customer_name}>"


class Activation(db.Model):
    """Vínculo entre una licencia y un equipo (huella de hardware)"""
    id                   = db.Column(db.Integer, primary_key=True)
    license_id           = db.Column(db.Integer, db.ForeignKey('license.id'), nullable=False, index=True)
    hardware_fingerprint = db.Column(db.String(100), nullable=False, index=True)
    machine_name         = db.Column(db.String(100), default="")
    first_activated      = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_seen            = db.Column(db.DateTime, nullable=False, default=utcnow)
    product_version      = db.Column(db.String(50), default="")

    def __repr__(self):
        return f"<Activation {self.hardware_fingerprint[:16]}... - license {self.license_id}>"


class ValidationLog(db.Model):
    """Registro de cada intento de validación (solo se agrega, nunca se edita)"""
    id                   = db.Column(db.Integer, primary_key=True)
    license_id           = db.Column(db.Integer, nullable=True, index=True)
    license_key          = db.Column(db.String(200), nullable=False)
    hardware_fingerprint = db.Column(db.String(100), default="")
    validation_date      = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    # Resultado de la validación
    is_successful        = db.Column(db.Boolean, nullable=False, default=False)
    error_message        = db.Column(db.String(500), default="")

    # Información del cliente
    ip_address           = db.Column(db.String(50), default="")
    device_info          = db.Column(db.String(200), default="")
    product_version      = db.Column(db.String(50), default="")

    def __repr__(self):
        return f"<ValidationLog {self.validation_date} - {'OK' if self.is_successful else 'FAIL'}>"
