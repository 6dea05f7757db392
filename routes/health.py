"""
routes/health.py - Estado del servidor y del almacenamiento
"""

from flask import Blueprint, current_app, jsonify

from errors import StorageUnavailable
from licensing import get_licensing
from utils import utcnow

bp = Blueprint('health', __name__, url_prefix='/api/license')


@bp.route("/health")
def health():
    """Modo de almacenamiento, conectividad y totales de licencias"""
    store = get_licensing().store
    now = utcnow()

    body = {
        "mode":           store.mode,
        "serverTime":     now.isoformat(),
        "version":        current_app.config["SERVER_VERSION"],
        "totalLicenses":  None,
        "activeLicenses": None,
    }

    reachable = store.ping()
    if reachable:
        try:
            body["totalLicenses"], body["activeLicenses"] = store.stats(now)
        except StorageUnavailable:
            reachable = False

    if store.mode == "fallback":
        database = "In-Memory"
    else:
        database = "Connected" if reachable else "Unreachable"

    body.update({
        "status":    "Healthy" if reachable else "Degraded",
        "database":  database,
        "reachable": reachable,
    })
    return jsonify(body), 200
