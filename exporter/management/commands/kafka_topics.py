"""
Django management command to inspect and manage export topics
"""

from django.core.management.base import BaseCommand, CommandError

from chsync.utils.kafka.topic_manager import KafkaTopicManager
from exporter.exceptions import ExportError

from ._common import to_json


class Command(BaseCommand):
    help = 'List, inspect, count, create, delete or wait for Kafka topics'

    def add_arguments(self, parser):
        parser.add_argument(
            'action',
            choices=['list', 'info', 'count', 'create', 'delete', 'wait'],
            help='Operation to perform',
        )
        parser.add_argument('topic', nargs='?', help='Topic name (all actions except list)')
        parser.add_argument('--brokers', type=str, help='Comma separated Kafka brokers')
        parser.add_argument('--prefix', type=str, help='Filter topics by prefix when listing')
        parser.add_argument('--partitions', type=int, help='Partitions for create')
        parser.add_argument('--replication-factor', type=int, help='Replication factor for create')
        parser.add_argument('--timeout', type=float, default=10.0, help='Seconds to wait (create, wait)')
        parser.add_argument(
            '--force',
            action='store_true',
            help='Skip confirmation prompt on delete',
        )

    def handle(self, *args, **options):
        action = options['action']
        topic = options.get('topic')
        if action != 'list' and not topic:
            raise CommandError(f"'{action}' needs a topic name")

        manager = KafkaTopicManager(brokers=options.get('brokers'))

        try:
            if action == 'list':
                result = {'topics': manager.list_topics(prefix=options.get('prefix'))}
            elif action == 'info':
                result = manager.describe_topic(topic)
            elif action == 'count':
                result = {'topic': topic, 'messages': manager.count_messages(topic)}
            elif action == 'create':
                created = manager.ensure_topic(
                    topic,
                    partitions=options.get('partitions'),
                    replication_factor=options.get('replication_factor'),
                    timeout=options['timeout'],
                )
                result = {'topic': topic, 'created': created}
            elif action == 'delete':
                if not options['force']:
                    confirm = input(f'Delete topic "{topic}" and all its messages? (yes/no): ')
                    if confirm.lower() != 'yes':
                        self.stderr.write('Cancelled.')
                        return
                result = {'topic': topic, 'deleted': manager.delete_topic(topic)}
            else:
                manager.wait_ready(topic, timeout=options['timeout'])
                result = {'topic': topic, 'ready': True}
        except ExportError as e:
            raise CommandError(f"❌ {e}")

        self.stdout.write(to_json(result))
