"""
Pagination planning for table exports.

Two mutually exclusive modes, chosen once per export run:

- OffsetPlanner: no cursor column configured. Windows are
  ``LIMIT <offset>, <batch_size>`` and the offset grows by the number of
  rows consumed.
- CursorPlanner: a monotonic cursor column is configured. Windows are
  ``WHERE cursor > <last seen>`` (or ``>= <start>`` before the first row),
  optionally bounded by ``cursor <= <end>``, always ordered by the cursor
  column first, with ``LIMIT <batch_size>``.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from exporter.exceptions import ConfigError, StalledCursorError
from exporter.utils.order_by import normalize_order_by, parse_order_terms, render_order_terms
from exporter.utils.sql_utils import join_quoted, literal_for, qualified, quote_identifier

logger = logging.getLogger(__name__)


def is_set(value: Any) -> bool:
    """True unless value is None or a blank string."""
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ''
    return True


@dataclass(frozen=True)
class QueryWindow:
    """One bounded query issued by a planner."""
    sql: str
    mode: str
    offset: Optional[int] = None
    predicate: Optional[Tuple[Any, Any, Any]] = None


class PaginationPlanner:
    """Base planner. Subclasses build the next window and track progress."""

    mode = None

    def __init__(
        self,
        database: str,
        table: str,
        columns: Sequence[str],
        batch_size: int,
        order_by: str = '',
    ):
        if batch_size <= 0:
            raise ConfigError(f"batch_size must be positive, got {batch_size}")
        if not columns:
            raise ConfigError(f"No columns found for {database}.{table}")

        self.database = database
        self.table = table
        self.columns = list(columns)
        self.batch_size = batch_size
        self.order_by = order_by or ''

    def _select(self) -> str:
        return f"SELECT {join_quoted(self.columns)} FROM {qualified(self.database, self.table)}"

    def next_window(self) -> QueryWindow:
        raise NotImplementedError

    def observe(self, row: Sequence[Any]) -> None:
        """Called for every row consumed from the current window."""

    def complete_window(self, rows: int) -> None:
        """Called once the current window's batch has been delivered."""

    @property
    def position(self) -> dict:
        raise NotImplementedError


class OffsetPlanner(PaginationPlanner):
    """LIMIT offset, n pagination for tables without a cursor column."""

    mode = 'offset'

    def __init__(self, *args, offset: int = 0, **kwargs):
        super().__init__(*args, **kwargs)
        if offset < 0:
            raise ConfigError(f"offset must be non-negative, got {offset}")
        self.offset = offset

    def next_window(self) -> QueryWindow:
        sql = self._select()

        order = normalize_order_by(self.order_by, self.columns)
        if order:
            sql += f" ORDER BY {order}"

        sql += f" LIMIT {self.offset}, {self.batch_size}"
        return QueryWindow(sql=sql, mode=self.mode, offset=self.offset)

    def complete_window(self, rows: int) -> None:
        self.offset += rows

    @property
    def position(self) -> dict:
        return {'offset': self.offset}


class CursorPlanner(PaginationPlanner):
    """
    Range pagination on a strictly increasing cursor column.

    The lower bound is exclusive once a row has been seen, so the boundary
    row of window K is never fetched again in window K+1. Rows that tie on
    the cursor value inside one window arrive in server-decided order.
    """

    mode = 'cursor'

    def __init__(
        self,
        *args,
        cursor_column: str,
        cursor_start: Any = None,
        cursor_end: Any = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        if cursor_column not in self.columns:
            raise ConfigError(
                f"Cursor column '{cursor_column}' not found in {self.database}.{self.table}"
            )

        self.cursor_column = cursor_column
        self.cursor_index = self.columns.index(cursor_column)
        self.cursor_start = cursor_start if is_set(cursor_start) else None
        self.cursor_end = cursor_end if is_set(cursor_end) else None
        self.last_cursor = None
        self._window_start_cursor = None

    def predicate(self) -> str:
        column = quote_identifier(self.cursor_column)
        clauses = []

        if self.last_cursor is not None:
            clauses.append(f"{column} > {literal_for(self.last_cursor)}")
        elif self.cursor_start is not None:
            clauses.append(f"{column} >= {literal_for(self.cursor_start)}")

        if self.cursor_end is not None:
            clauses.append(f"{column} <= {literal_for(self.cursor_end)}")

        return ' AND '.join(clauses)

    def order_expression(self) -> str:
        # Cursor first and ascending; any user term on it is dropped from the rest
        rest = []
        for term in parse_order_terms(self.order_by, self.columns):
            if term[0] == self.cursor_column:
                logger.debug(f"Dropping ORDER BY term on cursor column '{self.cursor_column}', always ascending")
                continue
            rest.append(term)
        return render_order_terms([(self.cursor_column, None)] + rest)

    def next_window(self) -> QueryWindow:
        self._window_start_cursor = self.last_cursor

        sql = self._select()
        where = self.predicate()
        if where:
            sql += f" WHERE {where}"
        sql += f" ORDER BY {self.order_expression()} LIMIT {self.batch_size}"

        return QueryWindow(
            sql=sql,
            mode=self.mode,
            predicate=(self.last_cursor, self.cursor_start, self.cursor_end),
        )

    def observe(self, row: Sequence[Any]) -> None:
        value = row[self.cursor_index]
        # NULL cursors sort last and never satisfy the range predicate
        if value is not None:
            self.last_cursor = value

    def complete_window(self, rows: int) -> None:
        if rows == 0:
            return

        if self.last_cursor is None:
            raise StalledCursorError(self.cursor_column, None)

        start = self._window_start_cursor
        if start is not None and not self.last_cursor > start:
            raise StalledCursorError(self.cursor_column, start)

    @property
    def position(self) -> dict:
        return {'cursor': self.last_cursor}


def create_planner(
    database: str,
    table: str,
    columns: List[str],
    batch_size: int,
    order_by: str = '',
    cursor_column: Optional[str] = None,
    cursor_start: Any = None,
    cursor_end: Any = None,
) -> PaginationPlanner:
    """
    Pick the pagination mode for one export run.

    Cursor mode is used whenever a cursor column is configured; otherwise
    offset mode.
    """
    if is_set(cursor_column):
        logger.debug(f"Using cursor pagination on {table}.{cursor_column}")
        return CursorPlanner(
            database, table, columns, batch_size, order_by,
            cursor_column=cursor_column.strip(),
            cursor_start=cursor_start,
            cursor_end=cursor_end,
        )

    logger.debug(f"Using offset pagination on {table}")
    return OffsetPlanner(database, table, columns, batch_size, order_by)
