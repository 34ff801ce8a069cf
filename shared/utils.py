from __future__ import annotations
import uuid
from typing import Any

# ========================================
#           INPUT VALIDATION HELPERS
# ========================================
"""
Small helpers used by the config loader and the session to decide whether
user-supplied endpoints and flags are usable, and by tests to check the
identifiers the correlator hands out.
"""

def is_uuid_v4(s: str) -> bool:
    """
    enforces that request ids are valid UUIDv4s in canonical string form
    """
    try:
        u = uuid.UUID(s)
        return u.version == 4 and str(u) == s.lower()
    except (ValueError, TypeError, AttributeError):
        return False

def is_valid_port(port: Any) -> bool:
    return isinstance(port, int) and not isinstance(port, bool) and 0 < port <= 65535

def build_ws_url(host: str, port: int) -> str:
    """WebSocket URL for an endpoint; IPv6 literals are bracketed."""
    if ':' in host and not host.startswith('['):
        host = f"[{host}]"
    return f"ws://{host}:{port}"


# ========================================
#           VALUE COERCION
# ========================================

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}

def parse_bool(value: Any) -> bool:
    """
    Interpret config/env values like "yes", "0", True as a bool.
    Raises ValueError for anything else.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        v = value.strip().lower()
        if v in _TRUE:
            return True
        if v in _FALSE:
            return False
    raise ValueError(f"Not a boolean: {value!r}")
