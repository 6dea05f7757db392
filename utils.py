"""
utils.py - Funciones de utilidad
"""

import hmac
import re
import secrets
import string
from datetime import datetime, timedelta, timezone

from user_agents import parse

KEY_ALPHABET = string.ascii_uppercase + string.digits
KEY_GROUPS = 4
KEY_GROUP_LENGTH = 4


def utcnow() -> datetime:
    """Hora UTC actual sin zona horaria (como se guarda en la BD)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_key(prefix="PCOPT", now=None) -> str:
    """Genera una clave de licencia: PREFIJO-AAMMDD-XXXX-XXXX-XXXX-XXXX"""
    stamp = (now or utcnow()).strftime("%y%m%d")
    groups = [
        "".join(secrets.choice(KEY_ALPHABET) for _ in range(KEY_GROUP_LENGTH))
        for _ in range(KEY_GROUPS)
    ]
    return "-".join([prefix, stamp] + groups)


def key_pattern(prefix="PCOPT"):
    group = "[A-Z0-9]{%d}" % KEY_GROUP_LENGTH
    return re.compile(
        "^%s-[0-9]{6}%s$" % (re.escape(prefix), ("-" + group) * KEY_GROUPS)
    )


def is_well_formed_key(key: str, prefix="PCOPT") -> bool:
    return bool(key_pattern(prefix).match(key or ""))


def make_expiry(validity_days: int, now=None) -> datetime:
    """Calcula fecha de expiración a partir de los días de validez"""
    return (now or utcnow()) + timedelta(days=validity_days)


def get_device_info(user_agent_string: str) -> str:
    """Extrae información legible del user agent"""
    if not user_agent_string:
        return ""
    ua = parse(user_agent_string)
    return f"{ua.os.family} {ua.os.version_string} - {ua.browser.family}"[:200]


def get_client_ip(request) -> str:
    """
    Extrae la IP real del cliente, manejando proxies y CDNs.

    Orden de prioridad:
    1. CF-Connecting-IP (Cloudflare)
    2. X-Real-IP (Nginx)
    3. X-Forwarded-For (primer IP en la cadena)
    4. request.remote_addr (fallback)
    """
    if request.headers.get('CF-Connecting-IP'):
        return request.headers.get('CF-Connecting-IP')

    if request.headers.get('X-Real-IP'):
        return request.headers.get('X-Real-IP')

    # X-Forwarded-For puede tener múltiples IPs: "client, proxy1, proxy2"
    if request.headers.get('X-Forwarded-For'):
        ips = request.headers.get('X-Forwarded-For').split(',')
        return ips[0].strip()

    return request.remote_addr or "Unknown"


def json_body(request) -> dict:
    """Cuerpo JSON de la petición; cualquier otra cosa cuenta como vacío"""
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


def text_param(data, name) -> str:
    value = data.get(name)
    return value.strip() if isinstance(value, str) else ""


def check_admin_secret(supplied, expected) -> bool:
    """Compara el secreto de admin en tiempo constante"""
    if not expected:
        return False
    return hmac.compare_digest(
        (supplied or "").encode("utf-8"), expected.encode("utf-8")
    )


def get_admin_secret(req, data) -> str:
    """El secreto viaja en el cuerpo (adminSecret) o en la cabecera X-Admin-Secret"""
    secret = data.get("adminSecret")
    if isinstance(secret, str) and secret:
        return secret
    return req.headers.get("X-Admin-Secret", "")
