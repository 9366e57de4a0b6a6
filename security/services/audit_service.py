# security/services/audit_service.py
"""
Security audit trail.

record() never raises: losing an audit row must not fail the login it
describes. Failures are logged instead.
"""
import logging

from django.db import DatabaseError, transaction

from security.models import SecurityAuditEvent
from users.utils.network import UNKNOWN_NETWORK_KEY
from users.utils.security import otp_security
from users.validators import redact_email

logger = logging.getLogger("security.audit")

MAX_METADATA_DEPTH = 2
MAX_METADATA_KEYS = 30
MAX_METADATA_LIST_ITEMS = 20
DEPTH_LIMITED = "[depth-limited]"


def _normalize_email(value):
    if not isinstance(value, str):
        return None
    return value.strip().lower() or None


def hash_network_key(value):
    if not value or value == UNKNOWN_NETWORK_KEY:
        return None
    return otp_security.hash_network_key(value)


def _json_safe(value, depth=0):
    if depth > MAX_METADATA_DEPTH:
        return DEPTH_LIMITED
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [_json_safe(item, depth + 1) for item in list(value)[:MAX_METADATA_LIST_ITEMS]]
    if isinstance(value, dict):
        items = list(value.items())[:MAX_METADATA_KEYS]
        return {str(key): _json_safe(item, depth + 1) for key, item in items}
    return str(value)


def normalize_metadata(metadata) -> dict:
    if not metadata:
        return {}
    return {
        str(key): _json_safe(value)
        for key, value in metadata.items()
        if value is not None
    }


def record(
    event_type,
    outcome,
    actor_email=None,
    target_email=None,
    network_fingerprint=None,
    metadata=None,
):
    """
    Append one audit event.

    Returns the saved SecurityAuditEvent, or None when it could not be stored.
    """
    actor = _normalize_email(actor_email)
    target = _normalize_email(target_email)
    outcome = (outcome or "").strip() or "unknown"
    safe_metadata = normalize_metadata(metadata)
    ip_key_hash = hash_network_key(getattr(network_fingerprint, "ip_key", None))
    subnet_key_hash = hash_network_key(getattr(network_fingerprint, "subnet_key", None))

    logger.info(
        f"[AUDIT] {event_type} outcome={outcome} "
        f"actor={redact_email(actor)} target={redact_email(target)} "
        f"metadata={safe_metadata} has_ip_hash={bool(ip_key_hash)}"
    )

    try:
        with transaction.atomic():
            return SecurityAuditEvent.objects.create(
                event_type=event_type,
                outcome=outcome,
                actor_email=actor,
                target_email=target,
                ip_key_hash=ip_key_hash,
                subnet_key_hash=subnet_key_hash,
                metadata=safe_metadata,
            )
    except DatabaseError as e:
        logger.warning(f"[AUDIT] Failed to persist {event_type}:{outcome}: {e}")
        return None
