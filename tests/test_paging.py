"""PagedListFetcher: cursors, short pages, malformed rows, failure annotation, cached snapshots."""

from __future__ import annotations

import json

import httpx
import pytest

from conftest import json_response, list_row
from spo_reconcile_engine.cache.store import EnumerationCache
from spo_reconcile_engine.collectors.documents import DocumentCollector
from spo_reconcile_engine.config import CompareConfig
from spo_reconcile_engine.models import ItemType, ListInfo
from spo_reconcile_engine.sharepoint.client import AuthenticationRequired
from spo_reconcile_engine.sharepoint.paging import EnumerationError, PagedListFetcher, parse_row

SITE = "https://contoso.sharepoint.com/sites/hr"
LIB = "/sites/hr/Shared Documents"


def rows(start: int, count: int) -> list[dict]:
    return [list_row(i, f"{LIB}/f{i}.txt") for i in range(start, start + count)]


# ========================================================================
# Row parsing
# ========================================================================


def test_parse_row_reads_sizes_versions_and_dates():
    item = parse_row({
        "ID": "12",
        "FileLeafRef": "Budget.xlsx",
        "FileRef": f"{LIB}/Budget.xlsx",
        "File_x0020_Size": "1,234,567",
        "_UIVersionString": "4.2",
        "FSObjType": "0",
        "Created": "2024-01-01T00:00:00Z",
        "Modified.": "2024-02-01T08:30:00Z",
    })
    assert item.id == 12
    assert item.size_bytes == 1234567
    assert item.version_count == 4
    assert item.item_type == ItemType.FILE
    assert item.created.year == 2024
    assert item.modified.month == 2 and item.modified.hour == 8


def test_parse_row_folder_and_defaults():
    item = parse_row({"ID": 3, "FileLeafRef": "Sub", "FileRef": f"{LIB}/Sub", "FSObjType": "1"})
    assert item.is_folder
    assert item.size_bytes == 0
    assert item.version_count == 1


def test_parse_row_missing_required_fields():
    assert parse_row({"ID": "1", "FileLeafRef": "x.txt"}) is None
    assert parse_row({"ID": "1", "FileRef": f"{LIB}/x.txt"}) is None


# ========================================================================
# Paging
# ========================================================================


@pytest.mark.asyncio
async def test_follows_next_href_until_absent(make_client):
    seen = []

    def handler(request: httpx.Request):
        seen.append(str(request.url))
        body = json.loads(request.content)
        assert body["parameters"]["RenderOptions"] == 2
        assert "RowLimit Paged='TRUE'>2<" in body["parameters"]["ViewXml"]
        if "p_ID" not in str(request.url):
            return json_response({"Row": rows(1, 2), "NextHref": "?Paged=TRUE&p_ID=2"})
        return json_response({"Row": rows(3, 2)})

    async with make_client(handler) as client:
        items = await PagedListFetcher(client).collect(SITE, "Documents", page_size=2)

    assert [i.id for i in items] == [1, 2, 3, 4]
    assert len(seen) == 2
    assert seen[0].endswith("/_api/web/lists/GetByTitle('Documents')/RenderListDataAsStream")
    assert seen[1].endswith("RenderListDataAsStream?Paged=TRUE&p_ID=2")


@pytest.mark.asyncio
async def test_short_page_ends_enumeration_even_with_cursor(make_client):
    calls = []

    def handler(request):
        calls.append(1)
        return json_response({"Row": rows(1, 3), "NextHref": "?Paged=TRUE&p_ID=3"})

    async with make_client(handler) as client:
        items = await PagedListFetcher(client).collect(SITE, "Documents", page_size=5)

    assert len(items) == 3
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_malformed_rows_are_skipped_but_count_toward_page(make_client):
    page = rows(1, 2) + [{"ID": "9"}, "junk"]
    calls = []

    def handler(request):
        calls.append(1)
        if len(calls) == 1:
            return json_response({"Row": page, "NextHref": "?p_ID=9"})
        return json_response({"Row": rows(10, 1)})

    async with make_client(handler) as client:
        fetcher = PagedListFetcher(client)
        items = await fetcher.collect(SITE, "Documents", page_size=4)

    assert [i.id for i in items] == [1, 2, 10]
    assert fetcher.skipped_rows == 2
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_aspx_pages_excluded_on_request(make_client):
    page = [list_row(1, f"{LIB}/Home.aspx"), list_row(2, f"{LIB}/a.docx")]

    async with make_client(lambda r: json_response({"Row": page})) as client:
        fetcher = PagedListFetcher(client)
        without = await fetcher.collect(SITE, "Documents", include_aspx=False)
        with_pages = await fetcher.collect(SITE, "Documents", include_aspx=True)

    assert [i.name for i in without] == ["a.docx"]
    assert len(with_pages) == 2


@pytest.mark.asyncio
async def test_cached_snapshot_honours_aspx_setting_of_each_run(make_client, tmp_path):
    page = [list_row(1, f"{LIB}/Home.aspx"), list_row(2, f"{LIB}/a.docx")]
    calls = []

    def handler(request):
        calls.append(1)
        return json_response({"Row": page})

    cache = EnumerationCache(tmp_path)
    library = ListInfo("1", "Documents", base_template=101, server_relative_url=LIB)
    async with make_client(handler) as client:
        first = DocumentCollector(client, CompareConfig(include_aspx_pages=False), cache=cache, run_id="r1")
        live = await first.enumerate_library(SITE, library)

        second = DocumentCollector(client, CompareConfig(include_aspx_pages=True, use_cache=True), cache=cache)
        cached_with_pages = await second.enumerate_library(SITE, library)

        third = DocumentCollector(client, CompareConfig(use_cache=True), cache=cache)
        cached_without = await third.enumerate_library(SITE, library)

    assert [i.name for i in live] == ["a.docx"]
    assert first.result.counters["items_enumerated"] == 1
    assert sorted(i.name for i in cached_with_pages) == ["Home.aspx", "a.docx"]
    assert [i.name for i in cached_without] == ["a.docx"]
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_failure_reports_items_already_yielded(make_client):
    calls = []

    def handler(request):
        calls.append(1)
        if len(calls) == 1:
            return json_response({"Row": rows(1, 2), "NextHref": "?p_ID=2"})
        return json_response({"error": {"message": "boom"}}, status_code=500)

    async with make_client(handler) as client:
        fetcher = PagedListFetcher(client)
        received = []
        with pytest.raises(EnumerationError) as exc_info:
            async for item in fetcher.enumerate_items(SITE, "Documents", page_size=2):
                received.append(item)

    assert exc_info.value.items_yielded == 2
    assert len(received) == 2
    assert exc_info.value.__cause__ is not None


@pytest.mark.asyncio
async def test_unauthorized_propagates_unwrapped(make_client):
    async with make_client(lambda r: httpx.Response(401)) as client:
        with pytest.raises(AuthenticationRequired):
            await PagedListFetcher(client).collect(SITE, "Documents")


@pytest.mark.asyncio
async def test_list_title_is_escaped(make_client):
    urls = []

    def handler(request):
        urls.append(request.url.raw_path.decode())
        return json_response({"Row": []})

    async with make_client(handler) as client:
        await PagedListFetcher(client).collect(SITE, "Bob's Files")

    assert "GetByTitle('Bob%27%27s%20Files')" in urls[0]
