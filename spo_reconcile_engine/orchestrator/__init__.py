from .engine import ProgressSink, TaskOrchestrator
from .works import (
    DocumentCompareWork,
    ListCompareWork,
    NavigationSettingsWork,
    PairWork,
    PermissionAuditWork,
    pair_libraries,
)

__all__ = [
    "ProgressSink",
    "TaskOrchestrator",
    "PairWork",
    "DocumentCompareWork",
    "ListCompareWork",
    "PermissionAuditWork",
    "NavigationSettingsWork",
    "pair_libraries",
]
