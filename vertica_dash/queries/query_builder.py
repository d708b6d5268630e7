"""
Helpers for assembling SQL literals and WHERE clauses.

Vertica queries here are sent as plain text, so every literal that comes from
request parameters must go through escape_value().
"""
import math
from typing import Iterable, Optional, Union

SqlValue = Optional[Union[str, int, float]]

ALLOWED_OPERATORS = frozenset(["=", ">", "<", ">=", "<="])


def escape_value(value: SqlValue) -> str:
    """Render a Python value as a SQL literal."""
    if value is None:
        return "NULL"

    if isinstance(value, bool):
        raise ValueError("Boolean values are not supported as SQL literals")

    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError("Invalid number value")
        return str(value)

    return "'" + str(value).replace("'", "''") + "'"


def build_where_clause(conditions: Iterable[str]) -> str:
    """Join non-empty conditions with AND. Returns '' when nothing remains."""
    filtered = [c for c in conditions if c]
    return f"WHERE {' AND '.join(filtered)}" if filtered else ""


def build_filter_condition(column: str, value: SqlValue, operator: str = "=") -> str:
    """Build ``column <op> literal``, or '' when value is None."""
    if value is None:
        return ""

    if operator == "BETWEEN":
        raise ValueError("BETWEEN operator requires special handling")
    if operator not in ALLOWED_OPERATORS:
        raise ValueError(f"Unsupported operator: {operator}")

    return f"{column} {operator} {escape_value(value)}"


def build_date_range_condition(column: str, start_date: Optional[str], end_date: Optional[str]) -> str:
    """
    Inclusive date range over a timestamp column.

    The end bound is ``< end + 1 day`` so every timestamp on the end date matches.
    Returns '' unless both bounds are given.
    """
    if not start_date or not end_date:
        return ""

    return (
        f"{column} >= {escape_value(start_date)} "
        f"AND {column} < ({escape_value(end_date)}::date + interval '1 day')"
    )
