"""Client IP extraction for token issuance and attempt logging.

Proxy headers are checked before the socket peer address. The result is
recorded for auditing only and is never used for access decisions, since
every one of these headers can be set by the client.
"""

import ipaddress
from collections.abc import Mapping

from magic_login.schemas.magic_login import UNKNOWN_IP

# Checked in order; the first header holding a valid address wins
_IP_HEADERS = (
    "client-ip",
    "x-forwarded-for",
    "x-forwarded",
    "x-cluster-client-ip",
    "forwarded-for",
    "forwarded",
)


def _first_address(value: str) -> str:
    """First hop of a comma-separated header, without a ``for=`` prefix."""
    candidate = value.split(",", 1)[0].strip()
    for part in candidate.split(";"):
        directive = part.strip()
        if directive.lower().startswith("for="):
            candidate = directive[4:]
            break
    return candidate.strip().strip('"')


def _is_valid_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def get_client_ip(headers: Mapping[str, str], remote_addr: str | None = None) -> str:
    """Best-effort client IP address.

    Args:
        headers: Request headers (case-insensitive mapping or lower-cased keys).
        remote_addr: Socket peer address, if known.

    Returns:
        The first valid address found, or "UNKNOWN".
    """
    for header in _IP_HEADERS:
        value = headers.get(header)
        if not value:
            continue
        address = _first_address(value)
        if _is_valid_ip(address):
            return address

    if remote_addr and _is_valid_ip(remote_addr):
        return remote_addr

    return UNKNOWN_IP
