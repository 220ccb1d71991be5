"""
Shared argument handling for the export management commands
"""
import json


def add_export_arguments(parser):
    """Options that map onto resolve_export_config overrides."""
    parser.add_argument('--database', type=str, help='Source ClickHouse database')
    parser.add_argument('--brokers', type=str, help='Comma separated Kafka brokers')
    parser.add_argument('--batch-size', type=int, help='Rows per window')
    parser.add_argument('--order-by', type=str, help='ORDER BY expression, e.g. "id ASC, ts DESC"')
    parser.add_argument('--key-column', type=str, help='Column used as the message key')
    parser.add_argument('--cursor-column', type=str, help='Monotonic column for cursor pagination')
    parser.add_argument('--cursor-start', type=str, help='Inclusive lower bound of the cursor')
    parser.add_argument('--cursor-end', type=str, help='Inclusive upper bound of the cursor')
    parser.add_argument('--poll-interval', type=float, help='Seconds to sleep on an empty window in watch mode')
    parser.add_argument('--target-database', type=str, help='Target database for --cursor-start-from-target')
    parser.add_argument('--target-table', type=str, help='Target table for --cursor-start-from-target')
    parser.add_argument(
        '--cursor-start-from-target',
        action='store_true',
        default=None,
        help='Start the cursor at max(cursor column) already in the target',
    )
    parser.add_argument(
        '--full-export',
        action='store_true',
        help='Ignore cursor settings and export the whole table',
    )
    parser.add_argument(
        '--recreate-topic',
        action='store_true',
        help='Delete and recreate the topic first (DESTRUCTIVE)',
    )


OVERRIDE_OPTIONS = (
    'database', 'brokers', 'batch_size', 'order_by', 'key_column',
    'cursor_column', 'cursor_start', 'cursor_end', 'poll_interval',
    'target_database', 'target_table', 'cursor_start_from_target',
)


def overrides_from_options(options):
    """Only options the user actually passed; None falls through to settings."""
    return {name: options[name] for name in OVERRIDE_OPTIONS if options.get(name) is not None}


def to_json(payload):
    return json.dumps(payload, default=str, ensure_ascii=False)


def event_printer(stdout):
    """on_event callback writing one JSON object per line."""
    def on_event(event):
        stdout.write(to_json(event))
    return on_event
