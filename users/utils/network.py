"""
Client network identity for rate limiting.

Only one proxy header is trusted, and only at a fixed hop depth from the
right end of its chain: entries further left were written by the client.
"""
import ipaddress
import logging
import re
from dataclasses import dataclass
from typing import Optional

from django.conf import settings

logger = logging.getLogger("users.security")

UNKNOWN_NETWORK_KEY = "unknown"
DEFAULT_TRUSTED_HEADER = "x-forwarded-for"
DEFAULT_TRUSTED_HOPS = 1

_FORWARDED_FOR = re.compile(r"for=([^;,]+)", re.IGNORECASE)
_warned_default_header = False


@dataclass(frozen=True)
class NetworkFingerprint:
    ip_key: str = UNKNOWN_NETWORK_KEY
    subnet_key: str = UNKNOWN_NETWORK_KEY

    @property
    def is_known(self) -> bool:
        return self.ip_key != UNKNOWN_NETWORK_KEY

    def as_dict(self):
        return {"ipKey": self.ip_key, "subnetKey": self.subnet_key}


UNKNOWN_FINGERPRINT = NetworkFingerprint()


def normalize_ip_candidate(value) -> Optional[str]:
    """
    Return the canonical text of an IP literal, or None.

    Accepts `for=` prefixes, quotes, `[v6]:port`, `v4:port` and zone ids.
    """
    if not isinstance(value, str):
        return None

    candidate = value.strip()
    if candidate.lower().startswith("for="):
        candidate = candidate[4:]
    if len(candidate) >= 2 and candidate[0] == '"' and candidate[-1] == '"':
        candidate = candidate[1:-1]
    candidate = candidate.strip()
    if not candidate or candidate.lower() == UNKNOWN_NETWORK_KEY:
        return None

    if candidate.startswith("["):
        closing = candidate.find("]")
        if closing <= 1:
            return None
        candidate = candidate[1:closing]
    elif candidate.count(":") == 1 and "." in candidate:
        candidate = candidate.rsplit(":", 1)[0]

    candidate = candidate.split("%", 1)[0].strip()
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None


def build_subnet_key(ip_text: str) -> str:
    address = ipaddress.ip_address(ip_text)
    prefix = 24 if address.version == 4 else 64
    return str(ipaddress.ip_network(f"{address}/{prefix}", strict=False))


def _chain_entries(header_name: str, raw_value: str):
    if header_name == "forwarded":
        return [match.strip() for match in _FORWARDED_FOR.findall(raw_value)]
    return [part.strip() for part in raw_value.split(",")]


def _trusted_header_config():
    global _warned_default_header

    header = getattr(settings, "TRUSTED_PROXY_HEADER", None)
    if not header:
        if not settings.DEBUG and not _warned_default_header:
            logger.warning(
                "TRUSTED_PROXY_HEADER is not configured; falling back to "
                f"'{DEFAULT_TRUSTED_HEADER}' at hop {DEFAULT_TRUSTED_HOPS}"
            )
            _warned_default_header = True
        header = DEFAULT_TRUSTED_HEADER

    try:
        hops = int(getattr(settings, "TRUSTED_PROXY_HOPS", DEFAULT_TRUSTED_HOPS))
    except (TypeError, ValueError):
        hops = DEFAULT_TRUSTED_HOPS

    return header.strip().lower(), max(hops, 1)


def resolve_client_ip(headers) -> Optional[str]:
    header, hops = _trusted_header_config()
    raw_value = {str(name).lower(): value for name, value in headers.items()}.get(header)
    if not raw_value:
        return None

    entries = _chain_entries(header, raw_value)
    if len(entries) < hops:
        return None

    return normalize_ip_candidate(entries[-hops])


def resolve_network_fingerprint(request) -> NetworkFingerprint:
    """
    Derive (ip_key, subnet_key) from the request headers.

    Accepts a Django/DRF request or any mapping of header names.
    """
    headers = getattr(request, "headers", request)
    try:
        client_ip = resolve_client_ip(headers)
    except (AttributeError, TypeError):
        client_ip = None

    if not client_ip:
        return UNKNOWN_FINGERPRINT

    return NetworkFingerprint(
        ip_key=client_ip,
        subnet_key=build_subnet_key(client_ip),
    )
