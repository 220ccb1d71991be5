"""
Django management command to sync several tables to Kafka, one after another
"""

from django.core.management.base import BaseCommand, CommandError

from exporter.config import configured_tables
from exporter.exceptions import ConfigError
from exporter.export.orchestrator import ExportOrchestrator
from exporter.tasks import export_tables_parallel

from ._common import add_export_arguments, event_printer, overrides_from_options, to_json


class Command(BaseCommand):
    help = 'Prepare topics and export every configured table (or the given ones)'

    def add_arguments(self, parser):
        parser.add_argument('tables', nargs='*', help='Tables to sync (default: all EXPORT_TABLES)')
        add_export_arguments(parser)
        parser.add_argument(
            '--continue-on-error',
            action='store_true',
            help='Record failed tables and keep going',
        )
        parser.add_argument(
            '--prepare-only',
            action='store_true',
            help='Only create the topics, do not export',
        )
        parser.add_argument(
            '--parallel',
            action='store_true',
            help='Queue one Celery export task per table instead of exporting here',
        )
        parser.add_argument(
            '--quiet',
            action='store_true',
            help='Do not print per-batch events',
        )

    def handle(self, *args, **options):
        overrides = overrides_from_options(options)
        overrides['watch'] = False

        if options['parallel']:
            self._dispatch(options, overrides)
            return

        on_event = None if options['quiet'] else event_printer(self.stdout)
        orchestrator = ExportOrchestrator(on_event=on_event)

        try:
            summary = orchestrator.sync(
                options['tables'] or None,
                continue_on_error=options['continue_on_error'],
                prepare_only=options['prepare_only'],
                full_export=options['full_export'],
                recreate_topic=options['recreate_topic'],
                **overrides
            )
        except ConfigError as e:
            raise CommandError(str(e))

        self.stdout.write(to_json({
            'tables': {
                name: {'rows': r['rows'], 'success': r['success'],
                       'error': str(r['error']) if r['error'] is not None else None}
                for name, r in summary['tables'].items()
            },
            'total_rows': summary['total_rows'],
            'failed': summary['failed'],
        }))

        if summary['failed']:
            for table in summary['failed']:
                self.stderr.write(self.style.ERROR(f"❌ {table}: {summary['tables'][table]['error']}"))
            if summary['aborted']:
                raise CommandError(f"Sync stopped at {summary['failed'][-1]}")
            raise CommandError(f"{len(summary['failed'])} table(s) failed")

        self.stderr.write(self.style.SUCCESS(
            f"✅ Synced {len(summary['tables'])} table(s), {summary['total_rows']} rows"
        ))

    def _dispatch(self, options, overrides):
        tables = options['tables'] or configured_tables()
        if not tables:
            raise CommandError("No tables to sync: pass table names or configure EXPORT_TABLES")

        result = export_tables_parallel(
            tables,
            full_export=options['full_export'],
            recreate_topic=options['recreate_topic'],
            **overrides
        )
        self.stdout.write(to_json({
            'group_id': result.id,
            'tasks': {table: task.id for table, task in zip(tables, result.results)},
        }))
        self.stderr.write(self.style.SUCCESS(f"✅ Queued {len(tables)} export task(s)"))
