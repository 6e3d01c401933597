"""
Safety Guardian — Keeps the engine read-oriented.

Every request is classified before it leaves the client:

    read             GET/HEAD/OPTIONS, and the POST endpoints SharePoint uses
                     for queries (RenderListDataAsStream, ProcessQuery,
                     contextinfo)
    admin mutation   MERGE on the web itself (navigation flags), only when
                     the guardian was created with ``allow_writes=True``
    blocked          everything else, plus any URL that looks destructive
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("spo_reconcile_engine.safety")

# ─── Request classes ────────────────────────────────────────────────────────

READ_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

QUERY_POST_PATTERNS = (
    re.compile(r"/RenderListDataAsStream$", re.IGNORECASE),
    re.compile(r"/_vti_bin/client\.svc/ProcessQuery$", re.IGNORECASE),
    re.compile(r"/_api/contextinfo$", re.IGNORECASE),
)

# Writable only with allow_writes: the web's own properties
ADMIN_MERGE_PATTERNS = (
    re.compile(r"/_api/web/?$", re.IGNORECASE),
)

DESTRUCTIVE_PATTERNS = (
    re.compile(r"/recycle\(\)$", re.IGNORECASE),
    re.compile(r"/deleteobject\(\)$", re.IGNORECASE),
    re.compile(r"/(break|reset)roleinheritance", re.IGNORECASE),
    re.compile(r"/roleassignments/(add|remove)roleassignment", re.IGNORECASE),
    re.compile(r"/siteusers/removebyid", re.IGNORECASE),
    re.compile(r"/files/add", re.IGNORECASE),
    re.compile(r"/(moveto|copyto)", re.IGNORECASE),
)


class SafetyViolation(Exception):
    """A request fell outside the read-oriented policy."""
    pass


@dataclass
class SafetyEvent:
    method: str
    url: str
    reason: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


def _matches(patterns, path: str) -> bool:
    return any(p.search(path) for p in patterns)


class SafetyGuardian:
    """
    Gatekeeper shared by every SharePointClient of a run. Counts checks and
    permitted admin writes, and keeps each blocked request for the audit
    record.
    """

    def __init__(self, allow_writes: bool = False):
        self.allow_writes = allow_writes
        self.violations: list[SafetyEvent] = []
        self.checks_performed = 0
        self.writes_permitted = 0
        self.started_at = datetime.now(timezone.utc).isoformat()

    def blocked_reason(self, method: str, url: str) -> Optional[str]:
        """Why ``method url`` is not allowed, or None when it may be sent."""
        verb = method.upper()
        if verb in READ_METHODS:
            return None

        path = url.split("?", 1)[0]
        if _matches(DESTRUCTIVE_PATTERNS, path):
            return "Destructive endpoint"
        if verb == "POST" and _matches(QUERY_POST_PATTERNS, path):
            return None
        if verb == "MERGE" and _matches(ADMIN_MERGE_PATTERNS, path):
            return None if self.allow_writes else "Admin mutation requested while writes are disabled"
        return f"{verb} is not a permitted write"

    def validate_request(self, method: str, url: str, body: Optional[object] = None) -> bool:
        """Return True if the request may be sent; raise SafetyViolation otherwise."""
        self.checks_performed += 1
        reason = self.blocked_reason(method, url)
        if reason is not None:
            event = SafetyEvent(method.upper(), url, reason)
            self.violations.append(event)
            logger.critical(f"Blocked {event.method} {url}: {reason}")
            raise SafetyViolation(f"Blocked {event.method} {url}: {reason}")

        if method.upper() == "MERGE":
            self.writes_permitted += 1
            logger.info(f"Admin mutation permitted: MERGE {url}")
        return True

    def get_audit_record(self) -> dict:
        return {
            "safety_guardian": {
                "mode": "ADMIN-WRITES-ENABLED" if self.allow_writes else "READ-ONLY",
                "started_at": self.started_at,
                "checks_performed": self.checks_performed,
                "writes_permitted": self.writes_permitted,
                "violations": [asdict(v) for v in self.violations],
                "status": "VIOLATIONS_DETECTED" if self.violations else "CLEAN",
            }
        }

    @staticmethod
    def print_banner(allow_writes: bool = False):
        print("=" * 70)
        if allow_writes:
            print("  ADMIN MUTATIONS ENABLED -- navigation settings may be written")
            print("  * Only the web's navigation properties are writable")
        else:
            print("  READ-ONLY RECONCILIATION -- NO CHANGES WILL BE MADE")
            print("  * Listing and CSOM calls are read-only queries")
        print("  * Every request is checked by the Safety Guardian before it is sent")
        print("=" * 70)
