from .base import BaseCollector, CollectorResult
from .documents import DocumentCollector
from .permissions import PermissionAssignmentCollector, parse_role_assignments
from .navigation import NavigationSettingsCollector
from .lists import ListInventoryCollector

__all__ = [
    "BaseCollector",
    "CollectorResult",
    "DocumentCollector",
    "PermissionAssignmentCollector",
    "parse_role_assignments",
    "NavigationSettingsCollector",
    "ListInventoryCollector",
]
