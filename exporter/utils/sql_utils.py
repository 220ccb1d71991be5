"""
Identifier and literal helpers for building ClickHouse queries.

Only quote doubling is applied. Column and table names must come from
trusted sources (system.columns, settings), never from end users.
"""

import uuid
from datetime import date, datetime
from typing import Any, Iterable

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'
TIMESTAMP_MICROS_FORMAT = '%Y-%m-%d %H:%M:%S.%f'
DATE_FORMAT = '%Y-%m-%d'


def quote_identifier(name: str) -> str:
    """
    Wrap an identifier in backticks, doubling embedded backticks.

    Args:
        name: Column, table or database name

    Returns:
        Quoted identifier, or empty string for empty input
    """
    name = (name or '').strip()
    if not name:
        return ''
    return '`' + name.replace('`', '``') + '`'


def qualified(database: str, table: str) -> str:
    """Return `database`.`table`."""
    return f"{quote_identifier(database)}.{quote_identifier(table)}"


def join_quoted(names: Iterable[str]) -> str:
    """Quote every name and join with commas."""
    return ','.join(quote_identifier(n) for n in names)


def _quote_string(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def literal_for(value: Any) -> str:
    """
    Render a scalar for embedding in a WHERE predicate.

    Strings and bytes are single-quoted with embedded quotes doubled,
    timestamps are quoted as YYYY-MM-DD HH:MM:SS (with .ffffff when they carry
    microseconds), numbers use their
    natural text form.

    Args:
        value: Python value read from ClickHouse or taken from settings

    Returns:
        SQL literal text
    """
    if value is None:
        return 'NULL'
    if isinstance(value, bytes):
        return _quote_string(value.decode('utf-8', errors='replace'))
    if isinstance(value, str):
        return _quote_string(value)
    if isinstance(value, bool):
        return 'true' if value else 'false'
    # datetime is a date subclass, check it first
    if isinstance(value, datetime):
        # DateTime64 cursors compare below the second
        fmt = TIMESTAMP_MICROS_FORMAT if value.microsecond else TIMESTAMP_FORMAT
        return _quote_string(value.strftime(fmt))
    if isinstance(value, date):
        return _quote_string(value.strftime(DATE_FORMAT))
    if isinstance(value, uuid.UUID):
        return _quote_string(str(value))
    return str(value)
