"""Command line: input files, configuration overrides, exports and credential commands."""

from __future__ import annotations

import csv
import json
import logging

import pytest

from spo_reconcile_engine.__main__ import (
    build_config,
    main_async,
    parse_args,
    read_pairs_file,
    read_sites_file,
    resolve_pairs,
)
from spo_reconcile_engine.config import ConfigurationError, EngineConfig
from spo_reconcile_engine.credentials import CredentialStore
from spo_reconcile_engine.models import (
    ComparisonRecord,
    ListCompareStatus,
    ListCountComparison,
    PairStatus,
    PermissionAssignment,
    PermissionObjectType,
    ReconciliationOutcome,
    RemoteItem,
    RunStatus,
    SitePair,
    SitePairRun,
    TaskRunResult,
)
from spo_reconcile_engine.reporting import export_csv
from spo_reconcile_engine.store.results import ResultStore

SRC = "https://contoso.sharepoint.com/sites/hr"
TGT = "https://fabrikam.sharepoint.com/sites/people"


# ========================================================================
# Input files
# ========================================================================


def test_read_pairs_file(tmp_path):
    path = tmp_path / "pairs.txt"
    path.write_text(
        "\ufeff# wave 1\n"
        f"{SRC}, {TGT}\n"
        "\n"
        f"{SRC}/finance,\n"
        f"{SRC}/legal\n",
        encoding="utf-8",
    )
    assert read_pairs_file(path) == [
        SitePair(SRC, TGT),
        SitePair(f"{SRC}/finance", None),
        SitePair(f"{SRC}/legal", None),
    ]


def test_read_sites_file_ignores_extra_columns(tmp_path):
    path = tmp_path / "sites.txt"
    path.write_text(f"{SRC},ignored\n# comment\n{SRC}/it\n", encoding="utf-8")
    assert read_sites_file(path) == [SitePair(SRC), SitePair(f"{SRC}/it")]


# ========================================================================
# Configuration
# ========================================================================


def test_config_file_and_overrides(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({
        "compare": {"size_issue_threshold": 0.5, "page_size": 2000},
        "permissions": {"include_items": True},
        "throttle": {"initial_backoff_seconds": 1, "max_backoff_seconds": 4, "max_retries": 4},
        "site_pairs": [{"source": SRC, "target": TGT}, [f"{SRC}/it"]],
        "csom_batch_size": 100,
    }), encoding="utf-8")

    args = parse_args([
        "compare", "-c", str(config_path), "-o", str(tmp_path / "out"),
        "--threshold", "0.25", "--use-cache",
    ])
    config = build_config(args)

    assert config.compare.size_issue_threshold == 0.25
    assert config.compare.page_size == 2000
    assert config.compare.use_cache
    assert config.permissions.include_items
    assert config.throttle.delays == (1, 2, 4, 4)
    assert config.csom_batch_size == 100
    assert config.output.results_dir == tmp_path / "out" / "results"
    assert resolve_pairs(args, config) == [SitePair(SRC, TGT), SitePair(f"{SRC}/it")]
    config.validate()


def test_permission_scope_flags():
    args = parse_args(["permissions", "--no-site", "--items", "--inherited"])
    scope = build_config(args).permissions
    assert not scope.include_site
    assert scope.include_lists
    assert scope.include_items
    assert scope.include_inherited
    assert not scope.include_hidden_lists


def test_list_compare_flags():
    args = parse_args([
        "list-compare", "--threshold-type", "count", "--threshold-value", "3",
        "--exclude", "Retired", "--hidden",
    ])
    lists = build_config(args).list_compare
    assert lists.threshold_type == "count"
    assert lists.threshold_value == 3
    assert lists.include_hidden_lists
    assert not lists.include_site_assets
    assert "retired" in lists.excluded_titles()


def test_unreadable_config_file(tmp_path):
    bad = tmp_path / "config.json"
    bad.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        EngineConfig.from_file(bad)
    with pytest.raises(ConfigurationError):
        EngineConfig.from_file(tmp_path / "missing.json")


@pytest.mark.parametrize("section", [
    {"throttle": {"max_retries": "x"}},
    {"throttle": [1, 2]},
    {"throttle": {"initial_backoff_seconds": None}},
    {"site_pairs": 5},
])
def test_mistyped_config_sections(tmp_path, section):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(section), encoding="utf-8")
    with pytest.raises(ConfigurationError):
        EngineConfig.from_file(path)


@pytest.mark.parametrize("mutate", [
    lambda c: setattr(c.compare, "size_issue_threshold", 1.5),
    lambda c: setattr(c.compare, "page_size", 0),
    lambda c: setattr(c, "csom_batch_size", 1000),
    lambda c: setattr(c, "csom_batch_size", "200"),
    lambda c: setattr(c, "csom_batch_size", True),
    lambda c: c.site_pairs.append(("http://contoso.sharepoint.com/sites/hr", None)),
])
def test_validate_rejects_bad_settings(mutate):
    config = EngineConfig()
    mutate(config)
    with pytest.raises(ConfigurationError):
        config.validate()


# ========================================================================
# CSV export
# ========================================================================


def _read_csv(path):
    with open(path, newline="", encoding="utf-8-sig") as fh:
        return list(csv.DictReader(fh))


def test_export_compare_run(tmp_path):
    record = SitePairRun(
        SRC, TGT, status=PairStatus.SUCCEEDED, counts={"found": 1, "size_issue": 1},
        libraries_processed=["Documents"],
        comparisons=[
            ComparisonRecord(
                "a/b.docx", ReconciliationOutcome.SIZE_ISSUE, "Documents",
                source=RemoteItem(1, "b.docx", "/sites/hr/Shared Documents/a/b.docx", 1000),
                target=RemoteItem(7, "b.docx", "/sites/people/Documents/a/b.docx", 100),
            ),
        ],
    )
    result = TaskRunResult("20240101T000000000000Z", "compare", pair_runs=[record])

    paths = export_csv(result, tmp_path)

    assert [p.name for p in paths] == [
        "pairs_20240101T000000000000Z.csv", "comparisons_20240101T000000000000Z.csv",
    ]
    [pair] = _read_csv(paths[0])
    assert pair["found"] == "1"
    assert pair["libraries"] == "Documents"
    [row] = _read_csv(paths[1])
    assert row["outcome"] == ReconciliationOutcome.SIZE_ISSUE.value
    assert row["extension"] == "docx"
    assert row["size_difference_percent"] == "90.0"
    assert row["target_id"] == "7"


def test_export_permission_run(tmp_path):
    record = SitePairRun(SRC, status=PairStatus.SUCCEEDED, permissions=[
        PermissionAssignment(
            "Execs", "c:0t.c|tenant|execs", "Security Group", PermissionObjectType.LIST,
            "Secret", f"{SRC}/Lists/Secret", ["Read", "Contribute"], site_url=SRC,
        ),
    ])
    result = TaskRunResult("r1", "permissions", pair_runs=[record])

    paths = export_csv(result, tmp_path)

    assert [p.name for p in paths] == ["pairs_r1.csv", "permissions_r1.csv"]
    [row] = _read_csv(paths[1])
    assert row["roles"] == "Read, Contribute"
    assert row["object_type"] == "List"


def test_export_list_compare_run(tmp_path):
    record = SitePairRun(SRC, TGT, status=PairStatus.SUCCEEDED, list_comparisons=[
        ListCountComparison(
            "Issues", ListCompareStatus.MISMATCH, "Issues List", 200, 150,
            f"{SRC}/Lists/Issues", f"{TGT}/Lists/Issues",
        ),
    ])
    result = TaskRunResult("r2", "list-compare", pair_runs=[record])

    paths = export_csv(result, tmp_path)

    assert [p.name for p in paths] == ["pairs_r2.csv", "list_comparisons_r2.csv"]
    [row] = _read_csv(paths[1])
    assert row["difference"] == "-50"
    assert row["percent_difference"] == "25.0"
    assert row["status"] == "Mismatch"


# ========================================================================
# Entry point
# ========================================================================


@pytest.mark.asyncio
async def test_credential_commands(tmp_path, capsys):
    creds = str(tmp_path / "creds.json")

    assert await main_async([
        "credential", "--credentials-file", creds, "add-cookies", "Contoso.SharePoint.com",
        "--fedauth", "fa", "--rtfa", "rt", "--expires", "2030-01-01T00:00:00",
    ]) == 0
    assert await main_async([
        "credential", "--credentials-file", creds, "add-certificate", "fabrikam.sharepoint.com",
        "--tenant-id", "t", "--client-id", "c",
    ]) == 0
    assert await main_async(["credential", "--credentials-file", creds, "list"]) == 0
    out = capsys.readouterr().out
    assert "contoso.sharepoint.com" in out
    assert "certificate" in out

    assert await main_async(["credential", "--credentials-file", creds, "remove", "contoso.sharepoint.com"]) == 0
    assert await main_async(["credential", "--credentials-file", creds, "remove", "contoso.sharepoint.com"]) == 1
    assert list(CredentialStore.load(tmp_path / "creds.json").credentials) == ["fabrikam.sharepoint.com"]


@pytest.mark.asyncio
async def test_invalid_expiry_rejected(tmp_path):
    code = await main_async([
        "credential", "--credentials-file", str(tmp_path / "creds.json"),
        "add-cookies", "contoso.sharepoint.com", "--fedauth", "fa", "--rtfa", "rt", "--expires", "soon",
    ])
    assert code == 1


@pytest.mark.asyncio
async def test_run_without_pairs_fails_and_is_saved(tmp_path):
    code = await main_async([
        "compare", "-o", str(tmp_path), "--credentials-file", str(tmp_path / "creds.json"), "--csv",
    ])
    assert code == 1

    [saved] = (tmp_path / "results" / "compare-default").glob("*.json")
    data = json.loads(saved.read_text(encoding="utf-8"))
    assert data["status"] == "Failed"
    assert data["error_message"]
    assert list((tmp_path / "results" / "compare-default").glob("pairs_*.csv"))


@pytest.mark.asyncio
async def test_missing_pairs_file_exits_with_config_error(tmp_path):
    code = await main_async(["navigation", "-o", str(tmp_path), "--pairs", str(tmp_path / "nope.txt")])
    assert code == 2


@pytest.mark.asyncio
async def test_invalid_config_run_does_not_hide_resumable_run(tmp_path):
    store = ResultStore(tmp_path / "results")
    prior = TaskRunResult(
        "20240101T000000000000Z", "compare", "compare-default", status=RunStatus.COMPLETED,
        pair_runs=[SitePairRun(SRC, TGT, status=PairStatus.SUCCEEDED, counts={"found": 4})],
    )
    store.save(prior)
    pairs = tmp_path / "pairs.txt"
    pairs.write_text(f"{SRC},{TGT}\n", encoding="utf-8")

    code = await main_async([
        "compare", "-o", str(tmp_path), "--pairs", str(pairs), "--threshold", "5", "--resume",
        "--credentials-file", str(tmp_path / "creds.json"),
    ])

    assert code == 1
    assert len(store.run_files("compare-default")) == 2
    latest = store.latest("compare-default")
    assert latest.run_id == prior.run_id
    assert latest.find_pair(SitePair(SRC, TGT)).status == PairStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_verbose_from_config_file_enables_debug_logging(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"verbose": True}), encoding="utf-8")
    package_logger = logging.getLogger("spo_reconcile_engine")
    try:
        code = await main_async([
            "compare", "-c", str(config_path), "-o", str(tmp_path),
            "--credentials-file", str(tmp_path / "creds.json"),
        ])
        assert code == 1
        assert package_logger.level == logging.DEBUG
    finally:
        package_logger.setLevel(logging.NOTSET)
