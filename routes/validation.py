"""
routes/validation.py - Endpoint de validación de licencias (API pública)
"""

from flask import Blueprint, request, jsonify

from errors import StorageUnavailable
from licensing import get_licensing
from utils import get_client_ip, get_device_info, json_body, text_param

bp = Blueprint('validation', __name__, url_prefix='/api/license')


def _invalid(message, status):
    return jsonify({"isValid": False, "errorMessage": message}), status


@bp.errorhandler(StorageUnavailable)
def storage_unavailable(error):
    return _invalid("License service temporarily unavailable", 503)


@bp.route("/validate", methods=["POST"])
def validate():
    """Valida una licencia y vincula el equipo"""
    data        = json_body(request)
    key         = text_param(data, "licenseKey").upper()
    fingerprint = text_param(data, "hardwareFingerprint")

    if not key or not fingerprint:
        return _invalid("licenseKey and hardwareFingerprint are required", 400)
    if len(key) > 200 or len(fingerprint) > 100:
        return _invalid("licenseKey or hardwareFingerprint is too long", 400)

    verdict = get_licensing().validator.validate(
        key,
        fingerprint,
        machine_name=text_param(data, "machineName")[:100] or None,
        product_version=text_param(data, "productVersion")[:50] or None,
        ip_address=get_client_ip(request),
        device_info=get_device_info(request.headers.get('User-Agent', '')),
    )
    return jsonify(verdict.to_dict()), 200
