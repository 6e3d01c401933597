"""
SPO Reconcile Engine — Command-line entry point

Usage:
    python -m spo_reconcile_engine compare --pairs pairs.txt
    python -m spo_reconcile_engine compare --pairs pairs.txt --threshold 0.3 --resume
    python -m spo_reconcile_engine list-compare --pairs pairs.txt --threshold-type count --threshold-value 5
    python -m spo_reconcile_engine permissions --sites sites.txt --items
    python -m spo_reconcile_engine navigation --pairs pairs.txt [--apply]

Credential management:
    python -m spo_reconcile_engine credential add-cookies <domain> --fedauth ... --rtfa ...
    python -m spo_reconcile_engine credential add-certificate <domain> --tenant-id ... --client-id ...
    python -m spo_reconcile_engine credential list
    python -m spo_reconcile_engine credential remove <domain>

Pairs files hold one ``source_url,target_url`` per line; sites files one URL
per line. Blank lines and lines starting with ``#`` are ignored.

Reads only, except ``navigation --apply``, which writes web navigation flags.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone
from getpass import getpass
from pathlib import Path

from . import __version__
from .auth.provider import CredentialProvider
from .cache.store import EnumerationCache
from .config import ConfigurationError, EngineConfig, utc_run_id
from .credentials import CertificateCredential, CookieCredential, CredentialStore, DomainCredential
from .models import PairStatus, RunStatus, SitePair, SitePairRun, TaskRunResult
from .orchestrator import (
    DocumentCompareWork,
    ListCompareWork,
    NavigationSettingsWork,
    PairWork,
    PermissionAuditWork,
    TaskOrchestrator,
)
from .reporting import export_csv
from .safety.guardian import SafetyGuardian
from .sharepoint.throttle import CancellationToken
from .store.results import ResultStore


# ---------------------------------------------------------------------------
# Credential management sub-commands
# ---------------------------------------------------------------------------

def _cmd_credential(args: argparse.Namespace) -> int:
    """Handle `credential add-cookies|add-certificate|list|remove` sub-commands."""
    action = args.credential_action
    store = CredentialStore.load(args.credentials_file)

    if action == "list":
        return _credential_list(store)
    elif action == "add-cookies":
        return _credential_add_cookies(store, args)
    elif action == "add-certificate":
        return _credential_add_certificate(store, args)
    elif action == "remove":
        if store.remove(args.domain):
            print(f"  ✅ Credential for '{args.domain}' removed.")
            return 0
        print(f"  ❌ No credential stored for '{args.domain}'.")
        return 1
    return 0


def _credential_list(store: CredentialStore) -> int:
    credentials = store.list_credentials()
    if not credentials:
        print("No credentials configured. Add one with:\n")
        print("  python -m spo_reconcile_engine credential add-cookies <domain> --fedauth ... --rtfa ...")
        return 0

    print(f"\n  {'Domain':<40s} {'Kind':<12s} {'Status':<10s} {'Notes'}")
    print(f"  {'─'*40} {'─'*12} {'─'*10} {'─'*20}")
    for c in credentials:
        if c.cookies:
            status = "valid" if c.cookies.is_valid else "expired"
        else:
            status = "-"
        print(f"  {c.domain:<40s} {c.kind:<12s} {status:<10s} {c.notes}")
    print()
    return 0


def _credential_add_cookies(store: CredentialStore, args: argparse.Namespace) -> int:
    fed_auth = args.fedauth or getpass("FedAuth cookie: ")
    rt_fa = args.rtfa or getpass("rtFa cookie: ")
    expires = None
    if args.expires:
        try:
            expires = datetime.fromisoformat(args.expires)
        except ValueError:
            print(f"  ❌ Invalid --expires value '{args.expires}' (use ISO 8601).")
            return 1
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)

    if store.get(args.domain):
        print(f"  Credential for '{args.domain}' already exists. It will be overwritten.")
    store.add(DomainCredential(
        domain=args.domain,
        cookies=CookieCredential(fed_auth=fed_auth, rt_fa=rt_fa, expires_at=expires),
        notes=args.notes or "",
    ))
    print(f"  ✅ Cookie credential for '{args.domain}' saved.")
    return 0


def _credential_add_certificate(store: CredentialStore, args: argparse.Namespace) -> int:
    if store.get(args.domain):
        print(f"  Credential for '{args.domain}' already exists. It will be overwritten.")
    store.add(DomainCredential(
        domain=args.domain,
        certificate=CertificateCredential(
            tenant_id=args.tenant_id,
            client_id=args.client_id,
            cert_path=args.cert_path or "./base64.txt",
        ),
        notes=args.notes or "",
    ))
    print(f"  ✅ Certificate credential for '{args.domain}' saved.")
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="spo_reconcile_engine",
        description="SharePoint Online migration reconciliation and permission audit",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")
    common.add_argument("--output-dir", "-o", type=Path, help="Output directory (default: ./spo_reconcile_output)")
    common.add_argument("--task-name", "-t", default=None, help="Task name grouping runs for resume/history")
    common.add_argument("--credentials-file", type=Path, default=None, help="Credential store path")
    common.add_argument("--resume", action="store_true", help="Skip pairs that succeeded in the latest run of this task")
    common.add_argument("--csv", action="store_true", help="Also write CSV exports of the run")
    common.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # compare
    cmp_p = subparsers.add_parser("compare", parents=[common], help="Compare document libraries across site pairs")
    cmp_p.add_argument("--pairs", type=Path, help="File of source_url,target_url lines")
    cmp_p.add_argument("--threshold", type=float, default=None, help="Size-issue ratio (target < ratio × source)")
    cmp_p.add_argument("--include-aspx", action="store_true", help="Include .aspx pages")
    cmp_p.add_argument("--use-cache", action="store_true", help="Reuse recent library snapshots")

    # list-compare
    lc_p = subparsers.add_parser("list-compare", parents=[common], help="Compare list item counts across site pairs")
    lc_p.add_argument("--pairs", type=Path, help="File of source_url,target_url lines")
    lc_p.add_argument("--threshold-type", choices=["percentage", "count"], default=None,
                      help="Measure count drift as a percentage or an absolute number")
    lc_p.add_argument("--threshold-value", type=float, default=None, help="Allowed drift (default: 10 percent)")
    lc_p.add_argument("--include-site-assets", action="store_true", help="Compare the Site Assets library too")
    lc_p.add_argument("--hidden", action="store_true", help="Include hidden lists")
    lc_p.add_argument("--exclude", action="append", default=[], metavar="TITLE", help="Extra list title to skip (repeatable)")

    # permissions
    perm_p = subparsers.add_parser("permissions", parents=[common], help="Audit unique permissions on sites")
    perm_p.add_argument("--sites", type=Path, help="File of site URLs, one per line")
    perm_p.add_argument("--no-site", action="store_true", help="Skip web-level assignments")
    perm_p.add_argument("--no-lists", action="store_true", help="Skip list-level assignments")
    perm_p.add_argument("--folders", action="store_true", help="Scan folders for unique permissions")
    perm_p.add_argument("--items", action="store_true", help="Scan items for unique permissions (slow)")
    perm_p.add_argument("--inherited", action="store_true", help="Also report inherited site/list assignments")
    perm_p.add_argument("--hidden", action="store_true", help="Include hidden lists")

    # navigation
    nav_p = subparsers.add_parser("navigation", parents=[common], help="Compare navigation settings")
    nav_p.add_argument("--pairs", type=Path, help="File of source_url,target_url lines")
    nav_p.add_argument("--apply", action="store_true", help="Write source settings to mismatched targets")

    # credential
    cred_p = subparsers.add_parser("credential", help="Manage per-domain credentials")
    cred_p.add_argument("--credentials-file", type=Path, default=None, help="Credential store path")
    cred_sub = cred_p.add_subparsers(dest="credential_action", help="Credential actions")

    ck_p = cred_sub.add_parser("add-cookies", help="Store FedAuth/rtFa cookies for a domain")
    ck_p.add_argument("domain", help="e.g. contoso.sharepoint.com")
    ck_p.add_argument("--fedauth", help="FedAuth cookie value (prompted if omitted)")
    ck_p.add_argument("--rtfa", help="rtFa cookie value (prompted if omitted)")
    ck_p.add_argument("--expires", help="Cookie expiry, ISO 8601")
    ck_p.add_argument("--notes", help="Optional admin notes")

    ct_p = cred_sub.add_parser("add-certificate", help="Store app certificate credentials for a domain")
    ct_p.add_argument("domain", help="e.g. contoso.sharepoint.com")
    ct_p.add_argument("--tenant-id", required=True, help="Azure AD tenant ID (GUID)")
    ct_p.add_argument("--client-id", required=True, help="App registration client ID (GUID)")
    ct_p.add_argument("--cert-path", default="./base64.txt", help="Path to base64-encoded PFX (default: ./base64.txt)")
    ct_p.add_argument("--notes", help="Optional admin notes")

    cred_sub.add_parser("list", help="List stored credentials")

    rm_p = cred_sub.add_parser("remove", help="Remove a domain's credential")
    rm_p.add_argument("domain", help="Domain to remove")

    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Input files and configuration
# ---------------------------------------------------------------------------

def _input_lines(path: Path) -> list[str]:
    lines = []
    with open(path, "r", encoding="utf-8-sig") as fh:
        for raw in fh:
            line = raw.strip()
            if line and not line.startswith("#"):
                lines.append(line)
    return lines


def read_pairs_file(path: Path) -> list[SitePair]:
    """Parse ``source,target`` lines. A line with one URL has no target."""
    pairs = []
    for line in _input_lines(path):
        parts = [p.strip() for p in line.split(",")]
        source = parts[0]
        target = parts[1] if len(parts) > 1 and parts[1] else None
        pairs.append(SitePair(source, target))
    return pairs


def read_sites_file(path: Path) -> list[SitePair]:
    return [SitePair(line.split(",")[0].strip()) for line in _input_lines(path)]


def build_config(args: argparse.Namespace) -> EngineConfig:
    """Build engine configuration from a config file plus CLI overrides."""
    config = EngineConfig.from_file(args.config) if args.config else EngineConfig()

    if args.output_dir:
        config.output.base_dir = str(args.output_dir)
    if args.task_name:
        config.output.task_name = args.task_name
    config.verbose = config.verbose or args.verbose

    if args.command == "compare":
        if args.threshold is not None:
            config.compare.size_issue_threshold = args.threshold
        config.compare.include_aspx_pages = config.compare.include_aspx_pages or args.include_aspx
        config.compare.use_cache = config.compare.use_cache or args.use_cache
    elif args.command == "list-compare":
        lists = config.list_compare
        if args.threshold_type:
            lists.threshold_type = args.threshold_type
        if args.threshold_value is not None:
            lists.threshold_value = args.threshold_value
        lists.include_site_assets = lists.include_site_assets or args.include_site_assets
        lists.include_hidden_lists = lists.include_hidden_lists or args.hidden
        lists.excluded_lists.extend(args.exclude)
    elif args.command == "permissions":
        scope = config.permissions
        scope.include_site = scope.include_site and not args.no_site
        scope.include_lists = scope.include_lists and not args.no_lists
        scope.include_folders = scope.include_folders or args.folders
        scope.include_items = scope.include_items or args.items
        scope.include_inherited = scope.include_inherited or args.inherited
        scope.include_hidden_lists = scope.include_hidden_lists or args.hidden
    elif args.command == "navigation":
        config.navigation.apply = config.navigation.apply or args.apply
    return config


def resolve_pairs(args: argparse.Namespace, config: EngineConfig) -> list[SitePair]:
    if args.command == "permissions" and args.sites:
        return read_sites_file(args.sites)
    if args.command != "permissions" and args.pairs:
        return read_pairs_file(args.pairs)
    return [SitePair(s, t) for s, t in config.site_pairs]


def build_work(args: argparse.Namespace, config: EngineConfig, run_id: str) -> PairWork:
    if args.command == "compare":
        cache = EnumerationCache(config.output.cache_dir, ttl_hours=config.compare.cache_ttl_hours)
        cache.clear_expired()
        return DocumentCompareWork(config.compare, cache=cache, run_id=run_id)
    if args.command == "list-compare":
        return ListCompareWork(config.list_compare)
    if args.command == "permissions":
        return PermissionAuditWork(
            config.permissions,
            csom_batch_size=config.csom_batch_size,
            page_size=config.compare.page_size,
        )
    return NavigationSettingsWork(apply=config.navigation.apply)


# ---------------------------------------------------------------------------
# Console output
# ---------------------------------------------------------------------------

def _print_progress(index: int, total: int, record: SitePairRun) -> None:
    marker = {
        PairStatus.SUCCEEDED: "✅",
        PairStatus.FAILED: "❌",
        PairStatus.SKIPPED: "⏭ ",
    }.get(record.status, "  ")
    label = record.pair.label
    print(f"  {marker} [{index}/{total}] {label}")
    if record.error_message:
        print(f"      {record.error_message}")
    for err in record.library_errors:
        print(f"      ⚠  {err}")
    if record.counts and record.status == PairStatus.SUCCEEDED:
        shown = ", ".join(f"{k}={v}" for k, v in record.counts.items())
        print(f"      {shown}")


def _print_summary(
    result: TaskRunResult, path: Path, exports: list[Path], client_stats: list[dict]
) -> None:
    print("\n" + "=" * 70)
    print(f" RUN {result.status.value.upper()}")
    print("=" * 70)
    print(f"\n  Run ID:            {result.run_id}")
    print(f"  Pairs:             {len(result.pair_runs)}")
    print(f"  Succeeded:         {result.succeeded_pairs}")
    print(f"  Failed:            {result.failed_pairs}")
    print(f"  Skipped:           {result.skipped_pairs}")
    if result.resumed_from:
        print(f"  Carried forward:   {result.pairs_carried_forward} (from {result.resumed_from})")
    print(f"  Throttle retries:  {result.throttle_retry_count}")
    if result.error_message:
        print(f"  Error:             {result.error_message}")
    for key, value in result.totals().items():
        print(f"    {key:30s} {value}")
    for stats in client_stats:
        print(
            f"  🌐 {stats['domain']}: {stats['total_requests']} requests, "
            f"{stats['throttle_events']} throttled"
        )
    print(f"\n  📄 JSON:  {path}")
    for p in exports:
        print(f"  📊 CSV:   {p}")
    print()


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

def configure_logging(verbose: bool) -> None:
    """Console logging; a config file may turn on debug output as well as -v."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    logging.getLogger("spo_reconcile_engine").setLevel(logging.DEBUG if verbose else logging.INFO)


def _install_interrupt(cancel: CancellationToken) -> bool:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.cancel)
    except (NotImplementedError, RuntimeError):
        # Windows: Ctrl+C raises KeyboardInterrupt instead
        return False
    return True


async def run_task(args: argparse.Namespace) -> int:
    try:
        config = build_config(args)
        pairs = resolve_pairs(args, config)
    except (ConfigurationError, OSError) as e:
        print(f"\n❌ {e}")
        return 2
    configure_logging(config.verbose)

    allow_writes = args.command == "navigation" and config.navigation.apply
    guardian = SafetyGuardian(allow_writes=allow_writes)
    guardian.print_banner(allow_writes)

    print("=" * 70)
    print(f" SPO Reconcile Engine v{__version__} — {args.command}")
    print("=" * 70)

    task_name = f"{args.command}-{config.output.task_name}"
    store = ResultStore(config.output.results_dir)
    previous = None
    if args.resume:
        previous = store.latest(task_name)
        if previous is None:
            print("\n  No previous run found; starting fresh.")
        else:
            print(f"\n  Resuming from run {previous.run_id} ({previous.status.value})")

    run_id = utc_run_id()
    print(f"\n📋 Run ID:  {run_id}")
    print(f"📂 Output:  {Path(config.output.base_dir).resolve()}")
    print(f"🔗 Pairs:   {len(pairs)}\n")

    cancel = CancellationToken()
    handled = _install_interrupt(cancel)
    credentials = CredentialStore.load(args.credentials_file)
    work = build_work(args, config, run_id)

    async with CredentialProvider(
        credentials, guardian, policy=config.throttle, cancel=cancel
    ) as provider:
        orchestrator = TaskOrchestrator(work, provider, config=config, task_name=task_name)
        try:
            result = await orchestrator.run(
                pairs, previous=previous, cancel=cancel, progress=_print_progress, run_id=run_id
            )
        finally:
            if handled:
                asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
        client_stats = provider.get_stats()

    path = store.save(result)
    exports = export_csv(result, store.task_dir(task_name)) if args.csv else []
    _print_summary(result, path, exports, client_stats)

    if result.status == RunStatus.COMPLETED:
        return 0
    if result.status == RunStatus.CANCELLED:
        return 130
    return 1


async def main_async(argv: list[str] | None = None) -> int:
    """Async entry point."""
    args = parse_args(argv)

    if args.command == "credential":
        configure_logging(getattr(args, "verbose", False))
        if not getattr(args, "credential_action", None):
            print("Usage: python -m spo_reconcile_engine credential {add-cookies|add-certificate|list|remove}")
            return 0
        return _cmd_credential(args)

    if args.command is None:
        print("Usage: python -m spo_reconcile_engine {compare|list-compare|permissions|navigation|credential} ...")
        return 0

    return await run_task(args)


def main():
    """Synchronous entry point for `python -m spo_reconcile_engine`."""
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
