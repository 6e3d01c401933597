"""List compare: count thresholds, list filtering and the per-pair work."""

from __future__ import annotations

import httpx
import pytest

from conftest import SOURCE_DOMAIN, TARGET_DOMAIN, json_response
from spo_reconcile_engine.auth.provider import CredentialProvider
from spo_reconcile_engine.config import ConfigurationError, EngineConfig, ListCompareConfig
from spo_reconcile_engine.credentials import CookieCredential, CredentialStore, DomainCredential
from spo_reconcile_engine.models import (
    ListCompareStatus,
    ListCountComparison,
    ListInfo,
    PairStatus,
    RunStatus,
    SitePair,
    SitePairRun,
)
from spo_reconcile_engine.orchestrator import ListCompareWork, TaskOrchestrator
from spo_reconcile_engine.reconcile import compare_list_counts, within_threshold
from spo_reconcile_engine.safety.guardian import SafetyGuardian

PAIR = SitePair(f"https://{SOURCE_DOMAIN}/sites/ops", f"https://{TARGET_DOMAIN}/sites/ops")


# ========================================================================
# Thresholds
# ========================================================================


@pytest.mark.parametrize("source,target,kind,value,expected", [
    (100, 100, "percentage", 0, True),
    (100, 110, "percentage", 10, True),
    (100, 89, "percentage", 10, False),
    (0, 0, "percentage", 10, True),
    (0, 3, "percentage", 50, False),
    (100, 105, "count", 5, True),
    (100, 94, "count", 5, False),
    (0, 3, "count", 5, True),
])
def test_within_threshold(source, target, kind, value, expected):
    assert within_threshold(source, target, kind, value) is expected


def test_percent_difference_of_empty_source():
    assert ListCountComparison("A", ListCompareStatus.TARGET_ONLY, target_count=4).percent_difference == 100.0
    assert ListCountComparison("A", ListCompareStatus.MATCH).percent_difference == 0.0
    assert ListCountComparison("A", ListCompareStatus.MISMATCH, source_count=8, target_count=6).difference == -2


def test_compare_list_counts_classifies_every_list():
    site_src = PAIR.source_url
    site_tgt = PAIR.target_url
    tasks_src = ListInfo("1", "Tasks", 50, base_template=107, server_relative_url="/sites/ops/Lists/Tasks")
    tasks_tgt = ListInfo("9", "Tasks", 40, base_template=107, server_relative_url="/sites/ops/Lists/Tasks")
    links = ListInfo("2", "Links", 3, base_template=103, server_relative_url="/sites/ops/Lists/Links")
    odd = ListInfo("3", "Odd", 1, base_template=9999, server_relative_url="/sites/ops/Lists/Odd")

    records = compare_list_counts(
        [(tasks_src, tasks_tgt)], [links], [odd], site_src, site_tgt, ListCompareConfig(threshold_value=10),
    )

    assert [(r.list_title, r.status) for r in records] == [
        ("Tasks", ListCompareStatus.MISMATCH),
        ("Links", ListCompareStatus.SOURCE_ONLY),
        ("Odd", ListCompareStatus.TARGET_ONLY),
    ]
    assert records[0].list_type == "Tasks"
    assert records[0].target_list_url == f"https://{TARGET_DOMAIN}/sites/ops/Lists/Tasks"
    assert records[1].target_count == 0
    assert records[2].list_type == "List (9999)"


def test_excluded_titles():
    config = ListCompareConfig(excluded_lists=["Site Pages", "Workflow Tasks"])
    assert config.excluded_titles() == {"workflow tasks", "site assets"}
    assert "site assets" not in ListCompareConfig(include_site_assets=True).excluded_titles()


@pytest.mark.parametrize("mutate", [
    lambda c: setattr(c.list_compare, "threshold_type", "ratio"),
    lambda c: setattr(c.list_compare, "threshold_value", -1),
    lambda c: setattr(c.list_compare, "threshold_value", "10"),
])
def test_validate_rejects_bad_list_thresholds(mutate):
    config = EngineConfig()
    mutate(config)
    with pytest.raises(ConfigurationError):
        config.validate()


# ========================================================================
# ListCompareWork
# ========================================================================


def _list(list_id, title, count, template=100, hidden=False, url=None):
    return {
        "Id": list_id, "Title": title, "ItemCount": count, "BaseTemplate": template, "Hidden": hidden,
        "RootFolder": {"ServerRelativeUrl": url or f"/sites/ops/Lists/{title.replace(' ', '')}"},
    }


SOURCE_LISTS = [
    _list("1", "Issues", 200, template=432),
    _list("2", "Contacts", 40, template=105),
    _list("3", "Site Assets", 12, template=101, url="/sites/ops/SiteAssets"),
    _list("4", "Workflow Tasks", 7, template=107),
    _list("5", "Hidden Config", 1, hidden=True),
    _list("6", "Shared Documents", 900, template=101, url="/sites/ops/Shared Documents"),
    _list("7", "Retired", 5),
]

TARGET_LISTS = [
    _list("11", "ISSUES", 150, template=432),
    _list("12", "Contacts", 42, template=105),
    _list("13", "Documents", 905, template=101, url="/sites/ops/Shared Documents"),
    _list("14", "New Board", 2, template=108),
]


def handler(request: httpx.Request) -> httpx.Response:
    source = request.url.host == SOURCE_DOMAIN
    if request.url.path == "/sites/ops/_api/web":
        return json_response({"Title": "Ops" if source else "Operations"})
    if request.url.path == "/sites/ops/_api/web/lists":
        return json_response({"value": SOURCE_LISTS if source else TARGET_LISTS})
    return httpx.Response(404)


def provider_for(tmp_path, transport_handler=handler) -> CredentialProvider:
    store = CredentialStore(path=tmp_path / "credentials.json")
    for domain in (SOURCE_DOMAIN, TARGET_DOMAIN):
        store.credentials[domain] = DomainCredential(domain, cookies=CookieCredential("fa", "rt"))
    return CredentialProvider(store, SafetyGuardian(), transport=httpx.MockTransport(transport_handler))


@pytest.mark.asyncio
async def test_list_compare_end_to_end(tmp_path):
    work = ListCompareWork(ListCompareConfig(threshold_type="percentage", threshold_value=10))
    async with provider_for(tmp_path) as provider:
        result = await TaskOrchestrator(work, provider, task_name="list-compare-default").run([PAIR])

    assert result.status == RunStatus.COMPLETED
    record = result.pair_runs[0]
    assert record.status == PairStatus.SUCCEEDED
    assert (record.source_title, record.target_title) == ("Ops", "Operations")

    statuses = {c.list_title: c.status for c in record.list_comparisons}
    assert statuses == {
        "Issues": ListCompareStatus.MISMATCH,
        "Contacts": ListCompareStatus.MATCH,
        "Shared Documents": ListCompareStatus.MATCH,
        "Retired": ListCompareStatus.SOURCE_ONLY,
        "New Board": ListCompareStatus.TARGET_ONLY,
    }
    assert record.counts == {"lists": 5, "match": 2, "mismatch": 1, "source_only": 1, "target_only": 1}

    restored = SitePairRun.from_dict(record.to_dict())
    assert restored.list_comparisons == record.list_comparisons


@pytest.mark.asyncio
async def test_absolute_count_threshold(tmp_path):
    config = ListCompareConfig(threshold_type="count", threshold_value=60, include_site_assets=True)
    async with provider_for(tmp_path) as provider:
        result = await TaskOrchestrator(ListCompareWork(config), provider).run([PAIR])

    statuses = {c.list_title: c.status for c in result.pair_runs[0].list_comparisons}
    assert statuses["Issues"] == ListCompareStatus.MATCH
    assert statuses["Site Assets"] == ListCompareStatus.SOURCE_ONLY


@pytest.mark.asyncio
async def test_unreadable_lists_fail_the_pair(tmp_path):
    def broken(request):
        if request.url.host == TARGET_DOMAIN and request.url.path.endswith("/lists"):
            return httpx.Response(500, text="boom")
        return handler(request)

    async with provider_for(tmp_path, broken) as provider:
        result = await TaskOrchestrator(ListCompareWork(), provider).run([PAIR])

    assert result.pair_runs[0].status == PairStatus.FAILED
    assert result.status == RunStatus.PARTIALLY_FAILED
