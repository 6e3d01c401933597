"""
Data models — Structured types shared by the enumeration, reconciliation,
permission audit and orchestration layers.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from .config import DOCUMENT_LIBRARY_TEMPLATE, NEWER_AT_SOURCE_HOURS

logger = logging.getLogger("spo_reconcile_engine.orchestrator")

T = TypeVar("T")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_iso(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


# ─── Operation results ──────────────────────────────────────────────────────

class OperationStatus(str, Enum):
    SUCCESS = "success"
    AUTHENTICATION_REQUIRED = "authentication_required"
    ACCESS_DENIED = "access_denied"
    NOT_FOUND = "not_found"
    ERROR = "error"

    @classmethod
    def from_http_status(cls, status_code: int) -> "OperationStatus":
        if status_code == 401:
            return cls.AUTHENTICATION_REQUIRED
        if status_code == 403:
            return cls.ACCESS_DENIED
        if status_code == 404:
            return cls.NOT_FOUND
        return cls.ERROR


@dataclass
class OperationResult(Generic[T]):
    """Outcome of a remote operation where "not found" is an expected answer."""
    status: OperationStatus = OperationStatus.SUCCESS
    data: Optional[T] = None
    error_message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == OperationStatus.SUCCESS

    @classmethod
    def success(cls, data: T) -> "OperationResult[T]":
        return cls(status=OperationStatus.SUCCESS, data=data)

    @classmethod
    def failure(cls, status: OperationStatus, message: str) -> "OperationResult[T]":
        return cls(status=status, error_message=message)


# ─── Remote items ───────────────────────────────────────────────────────────

class ItemType(str, Enum):
    FILE = "file"
    FOLDER = "folder"


@dataclass(frozen=True)
class RemoteItem:
    """Snapshot of one library row, captured at enumeration time."""
    id: int
    name: str
    server_relative_url: str
    size_bytes: int = 0
    version_count: int = 1
    created: Optional[datetime] = None
    modified: Optional[datetime] = None
    item_type: ItemType = ItemType.FILE

    @property
    def is_folder(self) -> bool:
        return self.item_type == ItemType.FOLDER

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "server_relative_url": self.server_relative_url,
            "size_bytes": self.size_bytes,
            "version_count": self.version_count,
            "created": _iso(self.created),
            "modified": _iso(self.modified),
            "item_type": self.item_type.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RemoteItem":
        return cls(
            id=int(data.get("id", 0)),
            name=data.get("name", ""),
            server_relative_url=data.get("server_relative_url", ""),
            size_bytes=int(data.get("size_bytes", 0)),
            version_count=int(data.get("version_count", 1)),
            created=_parse_iso(data.get("created")),
            modified=_parse_iso(data.get("modified")),
            item_type=ItemType(data.get("item_type", ItemType.FILE.value)),
        )


LIST_TYPES = {
    100: "Custom List",
    101: "Document Library",
    102: "Survey",
    103: "Links",
    104: "Announcements",
    105: "Contacts",
    106: "Calendar",
    107: "Tasks",
    108: "Discussion Board",
    109: "Picture Library",
    110: "Data Sources",
    115: "Form Library",
    118: "Wiki Page Library",
    119: "Custom Workflow Process",
    120: "Custom Workflow History",
    130: "Data Connection Library",
    140: "Workflow History",
    150: "Gantt Tasks",
    170: "Promoted Links",
    171: "App Catalog",
    175: "Asset Library",
    432: "Issues List",
    544: "Facility",
    600: "External List",
    851: "Site Pages Library",
}


@dataclass
class ListInfo:
    """A list or library on a site."""
    id: str
    title: str
    item_count: int = 0
    hidden: bool = False
    base_template: int = 0
    server_relative_url: str = ""

    @property
    def is_library(self) -> bool:
        return self.base_template == DOCUMENT_LIBRARY_TEMPLATE

    @property
    def url_name(self) -> str:
        """Last segment of the root folder URL (may differ from the title)."""
        return self.server_relative_url.rstrip("/").rsplit("/", 1)[-1]

    @property
    def list_type(self) -> str:
        return LIST_TYPES.get(self.base_template, f"List ({self.base_template})")


@dataclass
class SiteInfo:
    url: str
    title: str = ""
    server_relative_url: str = ""
    web_template: str = ""


# ─── Reconciliation ─────────────────────────────────────────────────────────

class ReconciliationOutcome(str, Enum):
    FOUND = "Found"
    SIZE_ISSUE = "SizeIssue"
    SOURCE_ONLY = "SourceOnly"
    TARGET_ONLY = "TargetOnly"


@dataclass
class ComparisonRecord:
    """One comparison key and the items found for it on either side."""
    key: str
    outcome: ReconciliationOutcome
    library: str = ""
    source: Optional[RemoteItem] = None
    target: Optional[RemoteItem] = None
    source_url: str = ""
    target_url: str = ""

    @property
    def name(self) -> str:
        item = self.source or self.target
        return item.name if item else ""

    @property
    def extension(self) -> str:
        item = self.source or self.target
        if item is None or item.is_folder or "." not in item.name:
            return ""
        return item.name.rsplit(".", 1)[-1].lower()

    @property
    def size_difference_percent(self) -> float:
        source_size = self.source.size_bytes if self.source else 0
        target_size = self.target.size_bytes if self.target else 0
        if source_size == 0:
            return 0.0 if target_size == 0 else 100.0
        return abs(target_size - source_size) / source_size * 100

    @property
    def is_newer_at_source(self) -> bool:
        if self.outcome not in (ReconciliationOutcome.FOUND, ReconciliationOutcome.SIZE_ISSUE):
            return False
        if not (self.source and self.target and self.source.modified and self.target.modified):
            return False
        delta = self.source.modified - self.target.modified
        return delta.total_seconds() > NEWER_AT_SOURCE_HOURS * 3600

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "outcome": self.outcome.value,
            "library": self.library,
            "source": self.source.to_dict() if self.source else None,
            "target": self.target.to_dict() if self.target else None,
            "source_url": self.source_url,
            "target_url": self.target_url,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ComparisonRecord":
        return cls(
            key=data.get("key", ""),
            outcome=ReconciliationOutcome(data["outcome"]),
            library=data.get("library", ""),
            source=RemoteItem.from_dict(data["source"]) if data.get("source") else None,
            target=RemoteItem.from_dict(data["target"]) if data.get("target") else None,
            source_url=data.get("source_url", ""),
            target_url=data.get("target_url", ""),
        )


@dataclass
class DiffAggregates:
    """Counts and informational signals for one diff."""
    found: int = 0
    size_issue: int = 0
    source_only: int = 0
    target_only: int = 0
    newer_at_source: int = 0
    source_bytes: int = 0
    target_bytes: int = 0
    avg_source_versions: float = 0.0
    avg_target_versions: float = 0.0

    @property
    def matched(self) -> int:
        """Source keys present on the target, whatever their size."""
        return self.found + self.size_issue

    @property
    def total(self) -> int:
        return self.found + self.size_issue + self.source_only + self.target_only

    @property
    def completeness_percent(self) -> float:
        source_total = self.matched + self.source_only
        if source_total == 0:
            return 100.0
        return self.matched / source_total * 100

    def to_dict(self) -> dict:
        return {
            "found": self.found,
            "size_issue": self.size_issue,
            "source_only": self.source_only,
            "target_only": self.target_only,
            "newer_at_source": self.newer_at_source,
            "source_bytes": self.source_bytes,
            "target_bytes": self.target_bytes,
            "avg_source_versions": round(self.avg_source_versions, 2),
            "avg_target_versions": round(self.avg_target_versions, 2),
            "completeness_percent": round(self.completeness_percent, 2),
        }


@dataclass
class DiffResult:
    records: list[ComparisonRecord] = field(default_factory=list)
    aggregates: DiffAggregates = field(default_factory=DiffAggregates)


# ─── List counts ────────────────────────────────────────────────────────────

class ListCompareStatus(str, Enum):
    MATCH = "Match"
    MISMATCH = "Mismatch"
    SOURCE_ONLY = "SourceOnly"
    TARGET_ONLY = "TargetOnly"


@dataclass
class ListCountComparison:
    """Item counts of one list on either side of a site pair."""
    list_title: str
    status: ListCompareStatus
    list_type: str = ""
    source_count: int = 0
    target_count: int = 0
    source_list_url: str = ""
    target_list_url: str = ""

    @property
    def difference(self) -> int:
        return self.target_count - self.source_count

    @property
    def percent_difference(self) -> float:
        if self.source_count == 0:
            return 0.0 if self.target_count == 0 else 100.0
        return abs(self.difference) / self.source_count * 100

    def to_dict(self) -> dict:
        return {
            "list_title": self.list_title,
            "status": self.status.value,
            "list_type": self.list_type,
            "source_count": self.source_count,
            "target_count": self.target_count,
            "source_list_url": self.source_list_url,
            "target_list_url": self.target_list_url,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ListCountComparison":
        return cls(
            list_title=data.get("list_title", ""),
            status=ListCompareStatus(data["status"]),
            list_type=data.get("list_type", ""),
            source_count=int(data.get("source_count", 0)),
            target_count=int(data.get("target_count", 0)),
            source_list_url=data.get("source_list_url", ""),
            target_list_url=data.get("target_list_url", ""),
        )


# ─── Permissions ────────────────────────────────────────────────────────────

class PermissionObjectType(str, Enum):
    SITE_COLLECTION = "Site Collection"
    SITE = "Site"
    SUBSITE = "Subsite"
    LIST = "List"
    LIBRARY = "Library"
    FOLDER = "Folder"
    LIST_ITEM = "List Item"
    DOCUMENT = "Document"


PRINCIPAL_TYPES = {
    1: "User",
    2: "Distribution List",
    4: "Security Group",
    8: "SharePoint Group",
}


@dataclass
class PermissionAssignment:
    """One principal's effective role set on one securable object."""
    principal_name: str
    principal_login: str
    principal_type: str
    object_type: PermissionObjectType
    object_title: str
    object_url: str
    roles: list[str]
    site_url: str = ""
    site_title: str = ""
    site_collection_url: str = ""
    object_path: str = ""
    inherited: bool = False
    inherited_from: str = ""

    @property
    def permission_level(self) -> str:
        return ", ".join(self.roles)

    def to_dict(self) -> dict:
        return {
            "principal_name": self.principal_name,
            "principal_login": self.principal_login,
            "principal_type": self.principal_type,
            "object_type": self.object_type.value,
            "object_title": self.object_title,
            "object_url": self.object_url,
            "object_path": self.object_path,
            "roles": list(self.roles),
            "site_url": self.site_url,
            "site_title": self.site_title,
            "site_collection_url": self.site_collection_url,
            "inherited": self.inherited,
            "inherited_from": self.inherited_from,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PermissionAssignment":
        return cls(
            principal_name=data.get("principal_name", ""),
            principal_login=data.get("principal_login", ""),
            principal_type=data.get("principal_type", "Unknown"),
            object_type=PermissionObjectType(data["object_type"]),
            object_title=data.get("object_title", ""),
            object_url=data.get("object_url", ""),
            object_path=data.get("object_path", ""),
            roles=list(data.get("roles", [])),
            site_url=data.get("site_url", ""),
            site_title=data.get("site_title", ""),
            site_collection_url=data.get("site_collection_url", ""),
            inherited=bool(data.get("inherited", False)),
            inherited_from=data.get("inherited_from", ""),
        )


# ─── Navigation ─────────────────────────────────────────────────────────────

@dataclass
class NavigationSettings:
    horizontal_quick_launch: bool = False
    mega_menu_enabled: bool = False

    def to_dict(self) -> dict:
        return {
            "horizontal_quick_launch": self.horizontal_quick_launch,
            "mega_menu_enabled": self.mega_menu_enabled,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["NavigationSettings"]:
        if not data:
            return None
        return cls(
            horizontal_quick_launch=bool(data.get("horizontal_quick_launch")),
            mega_menu_enabled=bool(data.get("mega_menu_enabled")),
        )


class NavigationStatus(str, Enum):
    MATCH = "Match"
    MISMATCH = "Mismatch"
    APPLIED = "Applied"
    FAILED = "Failed"
    ERROR = "Error"


@dataclass
class NavigationComparison:
    source: Optional[NavigationSettings] = None
    target: Optional[NavigationSettings] = None
    status: NavigationStatus = NavigationStatus.ERROR
    error_message: str = ""

    @property
    def all_match(self) -> bool:
        return self.source is not None and self.source == self.target

    def to_dict(self) -> dict:
        return {
            "source": self.source.to_dict() if self.source else None,
            "target": self.target.to_dict() if self.target else None,
            "status": self.status.value,
            "error_message": self.error_message,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["NavigationComparison"]:
        if not data:
            return None
        return cls(
            source=NavigationSettings.from_dict(data.get("source")),
            target=NavigationSettings.from_dict(data.get("target")),
            status=NavigationStatus(data.get("status", NavigationStatus.ERROR.value)),
            error_message=data.get("error_message", ""),
        )


# ─── Runs ───────────────────────────────────────────────────────────────────

class PairStatus(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    SKIPPED = "Skipped"


class RunStatus(str, Enum):
    RUNNING = "Running"
    COMPLETED = "Completed"
    PARTIALLY_FAILED = "PartiallyFailed"
    CANCELLED = "Cancelled"
    FAILED = "Failed"


@dataclass(frozen=True)
class SitePair:
    source_url: str
    target_url: Optional[str] = None

    @property
    def label(self) -> str:
        if self.target_url:
            return f"{self.source_url} -> {self.target_url}"
        return self.source_url

    def matches(self, source_url: str, target_url: Optional[str]) -> bool:
        return (
            self.source_url.rstrip("/").lower() == (source_url or "").rstrip("/").lower()
            and (self.target_url or "").rstrip("/").lower()
            == (target_url or "").rstrip("/").lower()
        )


@dataclass
class SitePairRun:
    """Result record for one site pair within a run."""
    source_url: str
    target_url: Optional[str] = None
    source_title: str = ""
    target_title: str = ""
    status: PairStatus = PairStatus.PENDING
    error_message: str = ""
    counts: dict[str, float] = field(default_factory=dict)
    libraries_processed: list[str] = field(default_factory=list)
    library_errors: list[str] = field(default_factory=list)
    comparisons: list[ComparisonRecord] = field(default_factory=list)
    permissions: list[PermissionAssignment] = field(default_factory=list)
    list_comparisons: list[ListCountComparison] = field(default_factory=list)
    navigation: Optional[NavigationComparison] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.status == PairStatus.SUCCEEDED

    @property
    def pair(self) -> SitePair:
        return SitePair(self.source_url, self.target_url)

    def to_dict(self) -> dict:
        return {
            "source_url": self.source_url,
            "target_url": self.target_url,
            "source_title": self.source_title,
            "target_title": self.target_title,
            "status": self.status.value,
            "success": self.success,
            "error_message": self.error_message,
            "counts": dict(self.counts),
            "libraries_processed": list(self.libraries_processed),
            "library_errors": list(self.library_errors),
            "comparisons": [c.to_dict() for c in self.comparisons],
            "permissions": [p.to_dict() for p in self.permissions],
            "list_comparisons": [c.to_dict() for c in self.list_comparisons],
            "navigation": self.navigation.to_dict() if self.navigation else None,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SitePairRun":
        return cls(
            source_url=data.get("source_url", ""),
            target_url=data.get("target_url"),
            source_title=data.get("source_title", ""),
            target_title=data.get("target_title", ""),
            status=PairStatus(data.get("status", PairStatus.PENDING.value)),
            error_message=data.get("error_message", ""),
            counts=dict(data.get("counts", {})),
            libraries_processed=list(data.get("libraries_processed", [])),
            library_errors=list(data.get("library_errors", [])),
            comparisons=[ComparisonRecord.from_dict(c) for c in data.get("comparisons", [])],
            permissions=[PermissionAssignment.from_dict(p) for p in data.get("permissions", [])],
            list_comparisons=[
                ListCountComparison.from_dict(c) for c in data.get("list_comparisons", [])
            ],
            navigation=NavigationComparison.from_dict(data.get("navigation")),
            started_at=_parse_iso(data.get("started_at")),
            completed_at=_parse_iso(data.get("completed_at")),
        )


@dataclass
class TaskRunResult:
    """All pair records for one execution, plus its log and resume metadata."""
    run_id: str
    task_type: str
    task_name: str = "default"
    status: RunStatus = RunStatus.RUNNING
    error_message: str = ""
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    throttle_retry_count: int = 0
    pair_runs: list[SitePairRun] = field(default_factory=list)
    execution_log: list[str] = field(default_factory=list)
    resumed_from: Optional[str] = None
    pairs_carried_forward: int = 0

    def log(self, message: str) -> None:
        self.execution_log.append(f"[{datetime.now():%H:%M:%S}] {message}")
        logger.info(message)

    @property
    def succeeded_pairs(self) -> int:
        return sum(1 for p in self.pair_runs if p.status == PairStatus.SUCCEEDED)

    @property
    def failed_pairs(self) -> int:
        return sum(1 for p in self.pair_runs if p.status == PairStatus.FAILED)

    @property
    def skipped_pairs(self) -> int:
        return sum(1 for p in self.pair_runs if p.status == PairStatus.SKIPPED)

    def find_pair(self, pair: SitePair) -> Optional[SitePairRun]:
        for run in self.pair_runs:
            if pair.matches(run.source_url, run.target_url):
                return run
        return None

    def carry_forward(self, previous: SitePairRun) -> SitePairRun:
        """Copy a succeeded pair record from a prior run unchanged."""
        record = copy.deepcopy(previous)
        self.pair_runs.append(record)
        self.pairs_carried_forward += 1
        return record

    def totals(self) -> dict[str, float]:
        summary: dict[str, float] = {}
        for run in self.pair_runs:
            for k, v in run.counts.items():
                if isinstance(v, (int, float)) and not k.startswith("avg_") and k != "completeness_percent":
                    summary[k] = summary.get(k, 0) + v
        return summary

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "task_type": self.task_type,
            "task_name": self.task_name,
            "status": self.status.value,
            "error_message": self.error_message,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "throttle_retry_count": self.throttle_retry_count,
            "summary": {
                "pairs": len(self.pair_runs),
                "succeeded": self.succeeded_pairs,
                "failed": self.failed_pairs,
                "skipped": self.skipped_pairs,
                "carried_forward": self.pairs_carried_forward,
                "totals": self.totals(),
            },
            "resumed_from": self.resumed_from,
            "pairs_carried_forward": self.pairs_carried_forward,
            "pair_runs": [p.to_dict() for p in self.pair_runs],
            "execution_log": list(self.execution_log),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TaskRunResult":
        result = cls(
            run_id=data.get("run_id", ""),
            task_type=data.get("task_type", ""),
            task_name=data.get("task_name", "default"),
            status=RunStatus(data.get("status", RunStatus.RUNNING.value)),
            error_message=data.get("error_message", ""),
            completed_at=_parse_iso(data.get("completed_at")),
            throttle_retry_count=int(data.get("throttle_retry_count", 0)),
            pair_runs=[SitePairRun.from_dict(p) for p in data.get("pair_runs", [])],
            execution_log=list(data.get("execution_log", [])),
            resumed_from=data.get("resumed_from"),
            pairs_carried_forward=int(data.get("pairs_carried_forward", 0)),
        )
        started = _parse_iso(data.get("started_at"))
        if started:
            result.started_at = started
        return result
