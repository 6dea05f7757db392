"""
routes/admin_api.py - Endpoints de administración (API JSON)

Las precondiciones se comprueban en orden (secreto, nombre, días) y antes de
tocar el almacenamiento.
"""

import logging

from flask import Blueprint, current_app, request, jsonify

from errors import AuthorizationFailure, InputError, LicensingError
from licensing import get_licensing
from utils import check_admin_secret, get_admin_secret, get_client_ip, json_body, text_param

bp = Blueprint('admin_api', __name__, url_prefix='/api/license')

logger = logging.getLogger(__name__)


@bp.errorhandler(LicensingError)
def licensing_error(error):
    if error.status_code >= 500:
        logger.error("Admin request failed (%s): %s", error.code, error.message)
    return jsonify({"success": False, "message": error.message}), error.status_code


def require_admin(data):
    """Verifica el secreto de admin o lanza AuthorizationFailure"""
    if not check_admin_secret(get_admin_secret(request, data), current_app.config["ADMIN_SECRET"]):
        logger.warning("Unauthorized admin request from IP: %s", get_client_ip(request))
        raise AuthorizationFailure()


def int_param(data, name, default, low, high, message):
    value = data.get(name, default)
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        raise InputError(message)
    return value


def validity_days_param(data):
    cfg = current_app.config
    return int_param(data, "validityDays", cfg["DEFAULT_VALIDITY_DAYS"], 1, cfg["MAX_VALIDITY_DAYS"],
                     f"Validity days must be between 1 and {cfg['MAX_VALIDITY_DAYS']}")


def customer_name_param(data, name, label):
    value = text_param(data, name)
    limit = current_app.config["MAX_CUSTOMER_NAME_LENGTH"]
    if not value:
        raise InputError(f"{label} is required")
    if len(value) > limit:
        raise InputError(f"{label} must be {limit} characters or less")
    return value


@bp.route("/generate", methods=["POST"])
def generate():
    """Genera una licencia nueva"""
    data = json_body(request)
    require_admin(data)

    customer_name = customer_name_param(data, "customerName", "Customer name")
    validity_days = validity_days_param(data)
    max_activations = int_param(data, "maxActivations", current_app.config["DEFAULT_MAX_ACTIVATIONS"],
                                1, 1000, "Max activations must be between 1 and 1000")

    logger.info("License generation request - Customer: '%s', Days: %d", customer_name, validity_days)

    result = get_licensing().issuer.generate(
        customer_name,
        validity_days,
        customer_email=text_param(data, "customerEmail") or None,
        max_activations=max_activations,
    )
    body = result.to_dict()
    body["message"] = result.message
    return jsonify(body), 200


@bp.route("/generate-bulk", methods=["POST"])
def generate_bulk():
    """Genera varias licencias con el mismo prefijo de cliente"""
    data = json_body(request)
    require_admin(data)

    max_count = current_app.config["MAX_BULK_COUNT"]
    prefix = customer_name_param(data, "customerNamePrefix", "Customer name prefix")
    count = int_param(data, "count", None, 1, max_count, f"Count must be between 1 and {max_count}")
    validity_days = validity_days_param(data)

    results = get_licensing().issuer.generate_bulk(prefix, count, validity_days)
    succeeded = sum(1 for r in results if r.success)
    failed = len(results) - succeeded

    if not failed:
        status = 200
    elif succeeded:
        status = 207
    else:
        status = results[0].status_code

    return jsonify({
        "success":   failed == 0,
        "requested": count,
        "succeeded": succeeded,
        "failed":    failed,
        "licenses":  [r.to_dict() for r in results],
    }), status


def _set_active(active):
    data = json_body(request)
    require_admin(data)

    key = text_param(data, "licenseKey").upper()
    if not key:
        raise InputError("License key is required")

    get_licensing().issuer.set_active(key, active)
    return jsonify({"success": True, "licenseKey": key, "isActive": active}), 200


@bp.route("/deactivate", methods=["POST"])
def deactivate():
    """Desactiva una licencia"""
    return _set_active(False)


@bp.route("/reactivate", methods=["POST"])
def reactivate():
    """Reactiva una licencia desactivada"""
    return _set_active(True)
