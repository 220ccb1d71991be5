"""
ORDER BY normalization for export queries.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from .sql_utils import quote_identifier

logger = logging.getLogger(__name__)

DIRECTIONS = ('ASC', 'DESC')


def parse_order_terms(expr: str, known_columns: Iterable[str]) -> List[Tuple[str, Optional[str]]]:
    """
    Parse a user supplied ORDER BY expression into (column, direction) pairs.

    Fragments whose column is not a known column of the table are dropped
    entirely. This also rejects arbitrary expressions such as function calls.

    Args:
        expr: Comma separated ordering expression, e.g. "a ASC, `b` desc"
        known_columns: Column names of the exported table

    Returns:
        Accepted (column, direction) pairs in input order; direction is
        'ASC', 'DESC' or None
    """
    expr = (expr or '').strip()
    if not expr:
        return []

    known = set(known_columns)
    terms = []

    for fragment in expr.split(','):
        tokens = fragment.split()
        if not tokens:
            continue

        column = tokens[0]
        if len(column) >= 2 and column.startswith('`') and column.endswith('`'):
            column = column[1:-1]

        direction = None
        if len(tokens) > 1 and tokens[1].upper() in DIRECTIONS:
            direction = tokens[1].upper()

        if column not in known:
            logger.debug(f"Dropping ORDER BY fragment '{fragment.strip()}': unknown column")
            continue

        terms.append((column, direction))

    return terms


def render_order_terms(terms: Iterable[Tuple[str, Optional[str]]]) -> str:
    """Render (column, direction) pairs as `col` [ASC|DESC], ..."""
    rendered = []
    for column, direction in terms:
        rendered.append(quote_identifier(column) + (f" {direction}" if direction else ''))
    return ', '.join(rendered)


def normalize_order_by(expr: str, known_columns: Iterable[str]) -> str:
    """
    Validate and re-quote an ORDER BY expression against the table columns.

    Example:
        normalize_order_by("a ASC, z DESC, b", ["a", "b", "c"])
        -> "`a` ASC, `b`"

    Returns:
        Normalized expression, or empty string if nothing survives
    """
    return render_order_terms(parse_order_terms(expr, known_columns))
