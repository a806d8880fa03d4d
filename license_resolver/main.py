from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from license_resolver.core.config import (
    DEFAULT_RETRY_STATUSES,
    ConfigurationError,
    PassPolicy,
    ResolveOptions,
    Settings,
    build_pass_policy,
    build_resolve_options,
    get_settings,
    parse_status_list,
)
from license_resolver.core.telemetry import configure_logging, telemetry_session
from license_resolver.schemas.reports import RunReport
from license_resolver.services.catalog import CatalogError, CatalogStore
from license_resolver.services.license_counts import build_license_counts, write_or_check
from license_resolver.services.orchestrator import MultiPassOrchestrator, StopReason
from license_resolver.services.pipeline import PassResult, RunStatus, run_pass
from license_resolver.services.reconcile import ReconcileOptions, reconcile_from_reports
from license_resolver.services.verify import verify_catalog

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_PARTIAL = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="license-resolver",
        description="Resolve missing listing licenses from live pages, archives, aliases and domain consensus.",
    )
    parser.add_argument("--data-root", type=Path, help="Dataset root (default: LR_DATA_ROOT or cwd)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    resolve = commands.add_parser("resolve", help="Run one resolution pass")
    _add_resolve_arguments(resolve)
    resolve.add_argument("--limit", type=int, help="Process only the first N missing rows (dry-run only)")

    exhaustive = commands.add_parser("exhaustive", help="Repeat resolution passes until done or stalled")
    _add_resolve_arguments(exhaustive)
    exhaustive.add_argument("--max-passes", type=int, help="Maximum passes (0 = unlimited, default: 0)")
    exhaustive.add_argument(
        "--stop-after-no-progress-passes",
        type=int,
        help="Stop when mapped=0 for N consecutive passes (default: 3)",
    )
    exhaustive.add_argument("--sleep-seconds", type=float, help="Pause between passes (default: 45)")

    reconcile = commands.add_parser("reconcile", help="Rebuild listing health from accumulated pass reports")
    reconcile.add_argument("--write", action="store_true", help="Persist updates to the listing file")
    reconcile.add_argument(
        "--include-dry-runs",
        action="store_true",
        help="Also replay reports from dry-run passes",
    )

    commands.add_parser("verify", help="Verify dataset invariants and cached counts")

    counts = commands.add_parser("license-counts", help="Regenerate the license count summary")
    counts.add_argument("--check", action="store_true", help="Only report whether the summary is up to date")
    return parser


def _add_resolve_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--write", action="store_true", help="Persist updates to listing and license files")
    parser.add_argument("--concurrency", type=int, help="Parallel workers (default: 6)")
    parser.add_argument("--timeout-seconds", type=float, help="Request timeout (default: 15)")
    parser.add_argument("--retries", type=int, help="Retries for live page and search fetches (default: 2)")
    parser.add_argument("--archive-retries", type=int, help="Retries for archive fetches (default: 2)")
    parser.add_argument(
        "--retry-statuses",
        type=parse_status_list,
        help=f"Retryable HTTP statuses (default: {','.join(map(str, DEFAULT_RETRY_STATUSES))})",
    )
    parser.add_argument("--backoff-base-seconds", type=float, help="Initial retry backoff (default: 0.6)")
    parser.add_argument("--backoff-max-seconds", type=float, help="Max retry backoff (default: 8)")
    parser.add_argument("--progress-every", type=int, help="Log progress every N rows (default: 25)")
    parser.add_argument("--no-archive", action="store_true", help="Disable Wayback fallback")
    parser.add_argument("--no-search-alias", action="store_true", help="Disable search alias fallback")
    parser.add_argument("--no-domain-consensus", action="store_true", help="Disable domain-consensus fallback")
    parser.add_argument("--domain-min-known", type=int, help="Min known rows on a domain (default: 20)")
    parser.add_argument("--domain-min-purity", type=float, help="Min top-license ratio in (0, 1] (default: 1)")


def resolve_options_from_args(args: argparse.Namespace) -> ResolveOptions:
    return build_resolve_options(
        write=args.write,
        limit=getattr(args, "limit", None),
        concurrency=args.concurrency,
        timeout_seconds=args.timeout_seconds,
        retries=args.retries,
        archive_retries=args.archive_retries,
        retry_statuses=args.retry_statuses,
        backoff_base_seconds=args.backoff_base_seconds,
        backoff_max_seconds=args.backoff_max_seconds,
        progress_every=args.progress_every,
        use_archive=not args.no_archive,
        use_search_alias=not args.no_search_alias,
        use_domain_consensus=not args.no_domain_consensus,
        domain_min_known=args.domain_min_known,
        domain_min_purity=args.domain_min_purity,
    )


def pass_policy_from_args(args: argparse.Namespace, options: ResolveOptions) -> PassPolicy:
    policy = build_pass_policy(
        max_passes=args.max_passes,
        stop_after_no_progress_passes=args.stop_after_no_progress_passes,
        sleep_seconds=args.sleep_seconds,
    )
    if not options.write and policy.max_passes == 0:
        raise ConfigurationError("a dry-run exhaustive loop needs --max-passes; it never changes the dataset")
    return policy


async def _run_resolve(settings: Settings, options: ResolveOptions) -> int:
    result = await run_pass(
        CatalogStore.from_settings(settings),
        options,
        settings=settings,
        reports_dir=settings.resolve_path(settings.reports_dir),
    )
    _print_pass(result, settings)
    return EXIT_OK if result.status is RunStatus.COMPLETE else EXIT_PARTIAL


async def _run_exhaustive(settings: Settings, options: ResolveOptions, policy: PassPolicy) -> int:
    store = CatalogStore.from_settings(settings)
    reports_dir = settings.resolve_path(settings.reports_dir)

    async def one_pass(number: int) -> RunReport:
        print(f"\n=== Pass {number} ===")
        result = await run_pass(store, options, settings=settings, reports_dir=reports_dir)
        _print_pass(result, settings)
        return result.report

    outcome = await MultiPassOrchestrator(one_pass, policy).run()
    print("")
    if outcome.stop_reason is StopReason.COMPLETED:
        print("All missing licenses were resolved.")
        return EXIT_OK
    if outcome.stop_reason is StopReason.STALLED:
        print(
            f"Stopping after {policy.stop_after_no_progress_passes} consecutive no-progress passes. "
            "Remaining rows likely need manual handling."
        )
    else:
        print(f"Reached --max-passes={policy.max_passes}. Stopping.")
    print(f"Passes: {len(outcome.passes)}, mapped: {outcome.total_mapped}, missing after: {outcome.missing_after}")
    return EXIT_PARTIAL


def _run_reconcile(settings: Settings, args: argparse.Namespace) -> int:
    result = reconcile_from_reports(
        CatalogStore.from_settings(settings),
        settings.resolve_path(settings.reports_dir),
        options=ReconcileOptions(write=args.write, include_dry_runs=args.include_dry_runs),
    )
    report = result.report
    print(f"Reports scanned: {report.report_count}")
    print(f"Rows touched: {report.changes.rows_touched}")
    print(f"Status updates: {report.changes.status_updates}")
    print(f"Alias URL rewrites: {report.changes.alias_url_rewrites}")
    print(f"License updates: {report.changes.license_updates}")
    print(f"Report: {_relative(result.markdown_path, settings)} and {_relative(result.json_path, settings)}")
    if not args.write:
        print("Dry-run mode: repository files were not modified.")
    return EXIT_OK


def _run_verify(settings: Settings) -> int:
    result = verify_catalog(CatalogStore.from_settings(settings).load())
    print(f"Total URL rows: {result.total_rows}")
    print(f"Visible active rows: {result.visible_active}")
    print(f"Dead rows: {result.status_counts.dead}")
    print(f"Unverified rows: {result.status_counts.unverified}")
    if result.ok:
        print("Verification passed.")
        return EXIT_OK

    print("Verification failed:", file=sys.stderr)
    for failure in result.failures():
        print(f"- {failure}", file=sys.stderr)
    for line in result.details():
        print(line, file=sys.stderr)
    return EXIT_FAILURE


def _run_license_counts(settings: Settings, args: argparse.Namespace) -> int:
    catalog = CatalogStore.from_settings(settings).load()
    payload = build_license_counts(catalog, source=settings.urls_path.as_posix())
    path = settings.resolve_path(settings.license_counts_path)
    up_to_date = write_or_check(path, payload, check=args.check)
    if up_to_date:
        print(f"{path} is already up to date.")
    elif args.check:
        print(f"{path} is out of date.", file=sys.stderr)
        return EXIT_FAILURE
    else:
        print(f"Wrote {path}.")
    print(f"licenses={len(payload['by_bc_id'])} total={payload['total']}")
    return EXIT_OK


def _print_pass(result: PassResult, settings: Settings) -> None:
    summary = result.report.summary
    print("")
    print(f"Mapped: {summary.mapped}/{summary.processed}")
    print(f"Unresolved: {summary.unresolved}/{summary.processed}")
    print(f"Missing after run: {result.report.dataset.missing_after}")
    print(f"Report: {_relative(result.markdown_path, settings)} and {_relative(result.json_path, settings)}")
    if not result.report.written:
        print("Dry-run mode: repository files were not modified.")


def _relative(path: Path, settings: Settings) -> str:
    try:
        return str(path.relative_to(settings.data_root))
    except ValueError:
        return str(path)


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    settings = get_settings()
    if args.data_root is not None:
        settings = settings.model_copy(update={"data_root": args.data_root})

    options: ResolveOptions | None = None
    policy: PassPolicy | None = None
    try:
        if args.command in {"resolve", "exhaustive"}:
            options = resolve_options_from_args(args)
        if args.command == "exhaustive":
            policy = pass_policy_from_args(args, options)
    except ConfigurationError as exc:
        print(f"Invalid options: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        with telemetry_session(settings, command=args.command):
            return _dispatch(args, settings, options, policy)
    except CatalogError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return EXIT_FAILURE


def _dispatch(
    args: argparse.Namespace,
    settings: Settings,
    options: ResolveOptions | None,
    policy: PassPolicy | None,
) -> int:
    if args.command == "resolve":
        return asyncio.run(_run_resolve(settings, options))
    if args.command == "exhaustive":
        return asyncio.run(_run_exhaustive(settings, options, policy))
    if args.command == "reconcile":
        return _run_reconcile(settings, args)
    if args.command == "verify":
        return _run_verify(settings)
    return _run_license_counts(settings, args)


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
