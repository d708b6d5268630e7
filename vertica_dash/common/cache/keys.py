"""
Deterministic cache keys from a namespace prefix and request parameters.
"""
from datetime import date, datetime
from typing import Any, Mapping
from urllib.parse import quote

KEY_DELIMITER = ":"


def _render(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _escape(text: str) -> str:
    # Keeps the delimiter unambiguous: "a" -> "1:b" must not collide with a=1, b=...
    return quote(text, safe="")


def build_cache_key(prefix: str, params: Mapping[str, Any]) -> str:
    """
    Build a cache key that is independent of parameter order.

    None values are dropped, the remaining names are sorted and rendered as
    ``name:value`` pairs joined by ``:``, then prefixed.

    Examples:
        build_cache_key("bp:campaigns", {"startDate": None, "advertiserId": 5})
        -> "bp:campaigns:advertiserId:5"
        build_cache_key("bp:advertisers", {})
        -> "bp:advertisers"
    """
    pairs = [
        f"{_escape(str(name))}{KEY_DELIMITER}{_escape(_render(params[name]))}"
        for name in sorted(params, key=str)
        if params[name] is not None
    ]
    if not pairs:
        return prefix
    return KEY_DELIMITER.join([prefix, *pairs])
