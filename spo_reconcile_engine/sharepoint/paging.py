"""
Paged list enumeration through RenderListDataAsStream.

Rows are yielded lazily, one RemoteItem at a time, so a 100k-item library
never sits in memory as raw JSON pages.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator, Optional

from ..config import DEFAULT_PAGE_SIZE, MAX_PAGES_PER_LIST
from ..models import ItemType, RemoteItem
from ..parsing import get_collection, get_datetime, get_str, to_int
from .client import AuthenticationRequired, SharePointClient
from .throttle import OperationCancelled
from .urls import odata_literal

logger = logging.getLogger("spo_reconcile_engine.sharepoint.paging")

VIEW_FIELDS = (
    "ID",
    "FileLeafRef",
    "FileRef",
    "File_x0020_Size",
    "_UIVersionString",
    "FSObjType",
    "Created",
    "Modified",
)


class EnumerationError(Exception):
    """
    Enumeration stopped part-way. ``items_yielded`` counts the rows already
    handed to the caller; the original failure is chained as ``__cause__``.
    """
    def __init__(self, items_yielded: int, url: str, message: str):
        self.items_yielded = items_yielded
        self.url = url
        super().__init__(f"Enumeration of {url} failed after {items_yielded} items: {message}")


def build_view_xml(page_size: int) -> str:
    fields = "".join(f"<FieldRef Name='{name}'/>" for name in VIEW_FIELDS)
    return (
        "<View Scope='RecursiveAll'>"
        f"<ViewFields>{fields}</ViewFields>"
        f"<RowLimit Paged='TRUE'>{page_size}</RowLimit>"
        "</View>"
    )


def parse_row(row: dict) -> Optional[RemoteItem]:
    """Build a RemoteItem from one listing row, or None if required fields are missing."""
    name = get_str(row, "FileLeafRef")
    path = get_str(row, "FileRef")
    if not name or not path:
        return None

    version = get_str(row, "_UIVersionString")
    major = to_int(version.split(".", 1)[0], 1) if version else 1

    return RemoteItem(
        id=to_int(row.get("ID"), 0),
        name=name,
        server_relative_url=path,
        size_bytes=to_int(row.get("File_x0020_Size"), 0),
        version_count=major if major > 0 else 1,
        created=get_datetime(row, "Created.", "Created"),
        modified=get_datetime(row, "Modified.", "Modified"),
        item_type=ItemType.FOLDER if get_str(row, "FSObjType") == "1" else ItemType.FILE,
    )


def is_aspx_page(item: RemoteItem) -> bool:
    return not item.is_folder and item.name.lower().endswith(".aspx")


class PagedListFetcher:
    """
    Cursor-driven enumeration of one list or library.

    Each call to :meth:`enumerate_items` starts from the first page; the
    server's NextHref cursor is never carried between calls.
    """

    def __init__(self, client: SharePointClient, max_pages: int = MAX_PAGES_PER_LIST):
        self.client = client
        self.max_pages = max_pages
        self.skipped_rows = 0

    def list_endpoint(self, site_url: str, list_title: str) -> str:
        return (
            f"{site_url.rstrip('/')}/_api/web/lists/GetByTitle('{odata_literal(list_title)}')"
            "/RenderListDataAsStream"
        )

    async def enumerate_items(
        self,
        site_url: str,
        list_title: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        include_aspx: bool = True,
    ) -> AsyncGenerator[RemoteItem, None]:
        """
        Yield every row of ``list_title``, files and folders alike.

        Stops when NextHref is absent or the page holds fewer raw rows than
        ``page_size``. Malformed rows are skipped. Any failure is re-raised
        as EnumerationError carrying the number of items already yielded;
        cancellation and AuthenticationRequired propagate unchanged.
        """
        endpoint = self.list_endpoint(site_url, list_title)
        body = {"parameters": {"RenderOptions": 2, "ViewXml": build_view_xml(page_size)}}
        cursor = ""
        yielded = 0
        pages = 0

        while pages < self.max_pages:
            url = endpoint + cursor
            try:
                data = await self.client.post_json(url, body)
            except (OperationCancelled, AuthenticationRequired):
                raise
            except Exception as e:
                raise EnumerationError(yielded, url, str(e)) from e

            rows = get_collection(data, "Row")
            pages += 1
            for row in rows:
                item = parse_row(row) if isinstance(row, dict) else None
                if item is None:
                    self.skipped_rows += 1
                    logger.debug(f"Skipping malformed row in {list_title}: {row!r:.200}")
                    continue
                if not include_aspx and is_aspx_page(item):
                    continue
                yielded += 1
                yield item

            cursor = get_str(data, "NextHref")
            if not cursor:
                break
            if len(rows) < page_size:
                logger.debug(
                    f"Short page ({len(rows)}/{page_size}) from {list_title}; treating as last page"
                )
                break
        else:
            logger.warning(
                f"Pagination safety cap reached ({self.max_pages} pages) for list: {list_title}"
            )

    async def collect(
        self,
        site_url: str,
        list_title: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        include_aspx: bool = True,
    ) -> list[RemoteItem]:
        """Fetch all rows into a list. Use enumerate_items() for very large lists."""
        items = []
        async for item in self.enumerate_items(site_url, list_title, page_size, include_aspx):
            items.append(item)
        return items
