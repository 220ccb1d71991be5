"""
Utility modules for ClickHouse access and SQL rendering
"""

from .sql_utils import (
    quote_identifier,
    qualified,
    join_quoted,
    literal_for,
)

from .order_by import (
    parse_order_terms,
    render_order_terms,
    normalize_order_by,
)

from .database_utils import (
    Column,
    get_clickhouse_engine,
    get_clickhouse_connection,
    execute_window,
    get_columns,
    count_table_rows,
    count_all_tables_rows,
    max_column_value,
)
