import json
from io import StringIO
from unittest.mock import MagicMock, patch

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from exporter.exceptions import QueryError
from exporter.tasks import export_table_task, sync_tables_task


def run(name, *args, **kwargs):
    out, err = StringIO(), StringIO()
    call_command(name, *args, stdout=out, stderr=err, **kwargs)
    return out.getvalue(), err.getvalue()


class TestExportTableCommand:
    @patch('exporter.management.commands.export_table.ExportOrchestrator')
    def test_prints_summary(self, orchestrator_cls):
        orchestrator_cls.return_value.export.return_value = {
            'table': 'events', 'topic': 'default_events', 'rows': 12, 'success': True, 'error': None,
        }

        out, _ = run('export_table', 'events', '--batch-size', '5', '--cursor-column', 'id', '--quiet')

        config = orchestrator_cls.return_value.export.call_args[0][0]
        assert config.batch_size == 5
        assert config.cursor_column == 'id'
        assert config.watch is False
        assert json.loads(out.strip().splitlines()[-1]) == {'table': 'events', 'topic': 'default_events', 'rows': 12}

    @patch('exporter.management.commands.export_table.ExportOrchestrator')
    def test_failure_raises_command_error(self, orchestrator_cls):
        orchestrator_cls.return_value.export.return_value = {
            'table': 'events', 'topic': 'default_events', 'rows': 4, 'success': False,
            'error': QueryError('Query failed', query='SELECT 1'),
        }

        with pytest.raises(CommandError, match='after 4 rows'):
            run('export_table', 'events', '--quiet')


class TestSyncTablesCommand:
    @patch('exporter.management.commands.sync_tables.ExportOrchestrator')
    def test_passes_options(self, orchestrator_cls):
        orchestrator_cls.return_value.sync.return_value = {
            'tables': {'events': {'rows': 3, 'success': True, 'error': None}},
            'total_rows': 3, 'failed': [], 'aborted': False,
        }

        out, _ = run('sync_tables', 'events', '--continue-on-error', '--prepare-only', '--quiet')

        args, kwargs = orchestrator_cls.return_value.sync.call_args
        assert args == (['events'],)
        assert kwargs['continue_on_error'] is True
        assert kwargs['prepare_only'] is True
        assert kwargs['watch'] is False
        assert json.loads(out.strip().splitlines()[-1])['total_rows'] == 3

    @patch('exporter.management.commands.sync_tables.export_tables_parallel')
    def test_parallel_dispatch(self, dispatch):
        task = MagicMock(id='task-1')
        dispatch.return_value = MagicMock(id='group-1', results=[task])

        out, _ = run('sync_tables', 'events', '--parallel', '--batch-size', '100')

        args, kwargs = dispatch.call_args
        assert args == (['events'],)
        assert kwargs['batch_size'] == 100
        assert kwargs['watch'] is False
        assert json.loads(out) == {'group_id': 'group-1', 'tasks': {'events': 'task-1'}}


class TestKafkaTopicsCommand:
    @patch('exporter.management.commands.kafka_topics.KafkaTopicManager')
    def test_list(self, manager_cls):
        manager_cls.return_value.list_topics.return_value = ['default_events']

        out, _ = run('kafka_topics', 'list', '--prefix', 'default_')

        manager_cls.return_value.list_topics.assert_called_once_with(prefix='default_')
        assert json.loads(out) == {'topics': ['default_events']}

    def test_topic_required(self):
        with pytest.raises(CommandError):
            run('kafka_topics', 'info')


class TestTasks:
    @patch('exporter.tasks.ExportOrchestrator')
    def test_export_table_task_result_is_serializable(self, orchestrator_cls):
        orchestrator_cls.return_value.export.return_value = {
            'table': 'events', 'topic': 'default_events', 'rows': 2, 'success': False,
            'error': QueryError('boom'),
        }

        result = export_table_task.apply(args=('events',)).get()

        assert result['error'] == 'boom'
        assert result['error_type'] == 'QueryError'
        json.dumps(result)

    @patch('exporter.tasks.ExportOrchestrator')
    def test_sync_tables_task_disables_watch(self, orchestrator_cls):
        orchestrator_cls.return_value.sync.return_value = {
            'tables': {}, 'total_rows': 0, 'failed': [], 'aborted': False,
        }

        sync_tables_task.apply(args=(['events'],)).get()

        assert orchestrator_cls.return_value.sync.call_args.kwargs['watch'] is False
