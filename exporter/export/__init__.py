"""
Table export: pagination planning, the batch loop and multi-table sync
"""

from .pagination import (
    QueryWindow,
    OffsetPlanner,
    CursorPlanner,
    create_planner,
)

from .engine import (
    TableExporter,
    export_table,
)

from .orchestrator import (
    ExportOrchestrator,
    resume_from_target,
)
