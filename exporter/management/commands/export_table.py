"""
Django management command to export one ClickHouse table to Kafka
"""

from django.core.management.base import BaseCommand, CommandError

from exporter.config import resolve_export_config
from exporter.exceptions import ExportError
from exporter.export.orchestrator import ExportOrchestrator

from ._common import add_export_arguments, event_printer, overrides_from_options, to_json


class Command(BaseCommand):
    help = 'Export a ClickHouse table to a Kafka topic in batches'

    def add_arguments(self, parser):
        parser.add_argument('table', type=str, help='Source table name')
        parser.add_argument('--topic', type=str, help='Target topic (default <database>_<table>)')
        add_export_arguments(parser)
        parser.add_argument(
            '--watch',
            action='store_true',
            default=None,
            help='Keep polling for new rows after the table is drained',
        )
        parser.add_argument(
            '--prepare',
            action='store_true',
            help='Create the topic sized for the table before exporting',
        )
        parser.add_argument(
            '--quiet',
            action='store_true',
            help='Do not print per-batch events',
        )

    def handle(self, *args, **options):
        overrides = overrides_from_options(options)
        if options.get('topic'):
            overrides['topic'] = options['topic']
        if options.get('watch') is not None:
            overrides['watch'] = options['watch']

        try:
            config = resolve_export_config(options['table'], full_export=options['full_export'], **overrides)
        except ExportError as e:
            raise CommandError(str(e))

        on_event = None if options['quiet'] else event_printer(self.stdout)
        orchestrator = ExportOrchestrator(on_event=on_event)

        try:
            result = orchestrator.export(
                config,
                prepare=options['prepare'],
                recreate_topic=options['recreate_topic'],
            )
        except KeyboardInterrupt:
            self.stderr.write(self.style.WARNING(f'Interrupted, stopped exporting {config.table}'))
            return

        if not result['success']:
            raise CommandError(f"Export of {config.table} failed after {result['rows']} rows: {result['error']}")

        self.stdout.write(to_json({
            'table': config.table,
            'topic': config.topic,
            'rows': result['rows'],
        }))
        self.stderr.write(self.style.SUCCESS(f"✅ Exported {result['rows']} rows to {config.topic}"))
