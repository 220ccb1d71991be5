"""
Celery tasks for table exports
"""
import logging
from typing import Any, Dict, List, Optional

from celery import group, shared_task

from exporter.config import resolve_export_config
from exporter.exceptions import ConfigError
from exporter.export.orchestrator import ExportOrchestrator

logger = logging.getLogger(__name__)


def _serializable(result: Dict[str, Any]) -> Dict[str, Any]:
    """Task results go through the JSON serializer; errors become strings."""
    data = {k: v for k, v in result.items() if k != 'error'}
    error = result.get('error')
    data['error'] = str(error) if error is not None else None
    data['error_type'] = type(error).__name__ if error is not None else None
    if 'cursor_start' in data and data['cursor_start'] is not None:
        data['cursor_start'] = str(data['cursor_start'])
    return data


@shared_task(bind=True)
def export_table_task(self, table: str, prepare: bool = True, full_export: bool = False,
                      recreate_topic: bool = False, **overrides):
    """
    Task: export one table to its topic

    Watch mode is rejected here; a watching task would hold a worker forever.
    """
    logger.info(f"🚀 Export task {self.request.id} started for {table}")

    try:
        config = resolve_export_config(table, full_export=full_export, **overrides)
    except ConfigError as e:
        logger.error(f"❌ Invalid export config for {table}: {e}")
        return {'table': table, 'rows': 0, 'success': False, 'error': str(e), 'error_type': 'ConfigError'}

    if config.watch:
        return {'table': table, 'rows': 0, 'success': False,
                'error': 'watch mode is not supported in Celery tasks', 'error_type': 'ConfigError'}

    result = ExportOrchestrator().export(config, prepare=prepare, recreate_topic=recreate_topic)

    if result['success']:
        logger.info(f"✅ Exported {result['rows']} rows from {table}")
    else:
        logger.error(f"❌ Export of {table} failed after {result['rows']} rows: {result['error']}")

    return _serializable(result)


@shared_task
def sync_tables_task(tables: Optional[List[str]] = None, continue_on_error: bool = False,
                     prepare_only: bool = False, full_export: bool = False,
                     recreate_topic: bool = False, **overrides):
    """
    Task: sync several tables one after another
    """
    overrides['watch'] = False
    summary = ExportOrchestrator().sync(
        tables,
        continue_on_error=continue_on_error,
        prepare_only=prepare_only,
        full_export=full_export,
        recreate_topic=recreate_topic,
        **overrides
    )
    return {
        'tables': {name: _serializable(result) for name, result in summary['tables'].items()},
        'total_rows': summary['total_rows'],
        'failed': summary['failed'],
        'aborted': summary['aborted'],
    }


def export_tables_parallel(tables: List[str], **options):
    """
    Fan out one export_table_task per table.

    Each table still exports sequentially inside its own task.

    Returns:
        GroupResult
    """
    job = group(export_table_task.s(table, **options) for table in tables)
    return job.apply_async()
