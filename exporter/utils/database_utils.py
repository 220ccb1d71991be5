"""
ClickHouse utility functions for connection management and table metadata

Connections go through SQLAlchemy with the clickhouse-sqlalchemy native
dialect.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, NamedTuple, Optional, Tuple
from urllib.parse import quote_plus

from django.conf import settings
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from exporter.exceptions import ConnectivityError, QueryError
from exporter.utils.sql_utils import qualified, quote_identifier

logger = logging.getLogger(__name__)


class Column(NamedTuple):
    name: str
    type: str
    position: int


def build_connection_string(config: Optional[Dict[str, Any]] = None) -> str:
    """
    Build SQLAlchemy connection string from CLICKHOUSE_CONFIG

    Args:
        config: Connection settings (defaults to settings.CLICKHOUSE_CONFIG)

    Returns:
        str: SQLAlchemy connection string
    """
    config = config or settings.CLICKHOUSE_CONFIG

    # URL-encode username and password to handle special characters (@, :, /, etc.)
    username = quote_plus(config.get('USER') or 'default')
    password = quote_plus(config.get('PASSWORD') or '')
    host = config.get('HOST', '127.0.0.1')
    port = config.get('PORT', 9000)
    database = config.get('DATABASE') or 'default'

    url = f"clickhouse+native://{username}:{password}@{host}:{port}/{database}"
    if config.get('SECURE'):
        url += "?secure=True&verify=False"
    return url


def get_clickhouse_engine(config: Optional[Dict[str, Any]] = None, pool_size: Optional[int] = None) -> Engine:
    """
    Create SQLAlchemy engine for ClickHouse

    Args:
        config: Connection settings (defaults to settings.CLICKHOUSE_CONFIG)
        pool_size: Connection pool size

    Returns:
        Engine: SQLAlchemy engine instance

    Raises:
        ConnectivityError: If the engine cannot be created
    """
    config = config or settings.CLICKHOUSE_CONFIG
    try:
        engine = create_engine(
            build_connection_string(config),
            pool_size=pool_size or config.get('POOL_SIZE', 5),
            pool_pre_ping=True,  # Test connections before using
            pool_recycle=3600,   # Recycle connections after 1 hour
            echo=False
        )
        logger.info(f"Created ClickHouse engine for {config.get('HOST')}:{config.get('PORT')}")
        return engine

    except Exception as e:
        error_msg = f"Failed to create ClickHouse engine: {str(e)}"
        logger.error(error_msg)
        raise ConnectivityError(error_msg) from e


@contextmanager
def get_clickhouse_connection(config: Optional[Dict[str, Any]] = None):
    """
    Context manager for ClickHouse connections

    Example:
        with get_clickhouse_connection() as conn:
            columns = get_columns(conn, 'default', 'events')
    """
    engine = get_clickhouse_engine(config, pool_size=1)
    try:
        try:
            connection = engine.connect()
        except SQLAlchemyError as e:
            raise ConnectivityError(f"Failed to connect to ClickHouse: {str(e)}") from e
        try:
            yield connection
        finally:
            connection.close()
    finally:
        engine.dispose()


def _raise_query_error(error: SQLAlchemyError, query: str):
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        raise ConnectivityError(f"ClickHouse connection lost: {error}") from error
    raise QueryError(f"Query failed: {error}", query=query) from error


def execute_window(conn: Connection, query: str) -> List[Tuple]:
    """
    Execute one export window and return its rows as tuples.

    The query is passed to the driver verbatim; literals are already
    rendered by the pagination planner.

    Raises:
        QueryError: If ClickHouse rejects the query
        ConnectivityError: If the connection dropped
    """
    try:
        result = conn.exec_driver_sql(query)
        return [tuple(row) for row in result]
    except SQLAlchemyError as e:
        logger.error(f"Query execution failed: {e} | query={query}")
        _raise_query_error(e, query)


def get_columns(conn: Connection, database: str, table: str) -> List[Column]:
    """
    Column list of a table, in declaration order, from system.columns
    """
    query = (
        "SELECT name, type, position FROM system.columns "
        "WHERE database = :database AND table = :table ORDER BY position"
    )
    try:
        result = conn.execute(text(query), {'database': database, 'table': table})
        return [Column(name=row[0], type=row[1], position=int(row[2])) for row in result]
    except SQLAlchemyError as e:
        _raise_query_error(e, query)


def count_table_rows(conn: Connection, database: str, table: str) -> int:
    """
    Estimate the row count of a table from its active parts
    """
    query = (
        "SELECT sum(rows) FROM system.parts "
        "WHERE database = :database AND table = :table AND active = 1"
    )
    try:
        value = conn.execute(text(query), {'database': database, 'table': table}).scalar()
        return int(value or 0)
    except SQLAlchemyError as e:
        _raise_query_error(e, query)


def count_all_tables_rows(conn: Connection, database: str) -> List[Tuple[str, int]]:
    """
    Estimated row counts of every table in a database
    """
    query = (
        "SELECT table, sum(rows) AS rows FROM system.parts "
        "WHERE database = :database AND active = 1 GROUP BY table ORDER BY table"
    )
    try:
        result = conn.execute(text(query), {'database': database})
        return [(row[0], int(row[1] or 0)) for row in result]
    except SQLAlchemyError as e:
        _raise_query_error(e, query)


def max_column_value(conn: Connection, database: str, table: str, column: str) -> Any:
    """
    SELECT max(column) FROM database.table

    Returns:
        The maximum value, or None when the table is empty or missing
    """
    query = f"SELECT max({quote_identifier(column)}) FROM {qualified(database, table)}"
    try:
        return conn.exec_driver_sql(query).scalar()
    except SQLAlchemyError as e:
        logger.warning(f"Could not read max({column}) from {database}.{table}: {e}")
        return None
