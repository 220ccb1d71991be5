"""
Django management command to show estimated row counts of source tables
"""

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from chsync.utils.kafka.topic_manager import partitions_for_rows
from exporter.exceptions import ExportError
from exporter.utils.database_utils import count_all_tables_rows, count_table_rows, get_clickhouse_connection

from ._common import to_json


class Command(BaseCommand):
    help = 'Estimated row counts (from active parts) and the partition count each would get'

    def add_arguments(self, parser):
        parser.add_argument('tables', nargs='*', help='Tables to count (default: every table in the database)')
        parser.add_argument('--database', type=str, help='Source ClickHouse database')

    def handle(self, *args, **options):
        database = options.get('database') or settings.CLICKHOUSE_CONFIG.get('DATABASE') or 'default'
        rows_per_partition = settings.KAFKA_TOPIC_CONFIG.get('ROWS_PER_PARTITION', 1000000)

        try:
            with get_clickhouse_connection() as conn:
                if options['tables']:
                    counts = [(t, count_table_rows(conn, database, t)) for t in options['tables']]
                else:
                    counts = count_all_tables_rows(conn, database)
        except ExportError as e:
            raise CommandError(str(e))

        self.stdout.write(to_json({
            'database': database,
            'tables': [
                {'table': table, 'rows': rows, 'partitions': partitions_for_rows(rows, rows_per_partition)}
                for table, rows in counts
            ],
            'total_rows': sum(rows for _, rows in counts),
        }))
