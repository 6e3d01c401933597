"""Shared test fixtures: SharePoint clients over httpx.MockTransport."""

from __future__ import annotations

import json
from typing import Callable, Optional

import httpx
import pytest

from spo_reconcile_engine.safety.guardian import SafetyGuardian
from spo_reconcile_engine.sharepoint.client import SharePointClient

SOURCE_DOMAIN = "contoso.sharepoint.com"
TARGET_DOMAIN = "fabrikam.sharepoint.com"


class RecordingSleeper:
    """Stands in for the backoff wait; records every requested delay."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float, cancel=None) -> None:
        self.delays.append(seconds)
        if cancel is not None:
            cancel.raise_if_cancelled()


def json_response(data, status_code: int = 200, headers: Optional[dict] = None) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(data).encode(), headers={
        "Content-Type": "application/json", **(headers or {})
    })


def list_row(item_id: int, path: str, size: int = 100, folder: bool = False, version: str = "1.0") -> dict:
    return {
        "ID": str(item_id),
        "FileLeafRef": path.rsplit("/", 1)[-1],
        "FileRef": path,
        "File_x0020_Size": f"{size:,}" if not folder else "",
        "_UIVersionString": version,
        "FSObjType": "1" if folder else "0",
        "Created.": "2024-01-01T10:00:00Z",
        "Modified.": "2024-01-02T10:00:00Z",
    }


@pytest.fixture
def sleeper() -> RecordingSleeper:
    return RecordingSleeper()


@pytest.fixture
def guardian() -> SafetyGuardian:
    return SafetyGuardian()


@pytest.fixture
def make_client(sleeper, guardian) -> Callable[..., SharePointClient]:
    """Factory: ``make_client(handler, domain=...)`` returns an unopened client."""

    def _make(handler, domain: str = SOURCE_DOMAIN, **kwargs) -> SharePointClient:
        kwargs.setdefault("sleeper", sleeper)
        kwargs.setdefault("cookies", {"FedAuth": "fa", "rtFa": "rt"})
        return SharePointClient(
            domain,
            kwargs.pop("guardian", guardian),
            transport=httpx.MockTransport(handler),
            **kwargs,
        )

    return _make
