"""Operator CLI for the catalog sync pipeline.

Usage:
    catalog-sync reclaim-claims --dry-run
    catalog-sync export-claim-metrics --pushgateway http://pushgateway:9091
    catalog-sync sync-catalog --inline --page-size 50 --sleep-ms 250
    catalog-sync sync-variants 1234ABCD-5678
"""

import argparse
from collections.abc import Callable, Sequence

import structlog
from rich.console import Console
from rich.table import Table

from catalog_sync.config import Settings, get_settings
from catalog_sync.container import CatalogServices, build_services
from catalog_sync.infrastructure.catalog.client import CatalogError
from catalog_sync.infrastructure.redis import ClaimStoreError
from catalog_sync.log import configure_logging
from catalog_sync.services.chunk_import import STATUS_REQUEUED
from catalog_sync.services.claim_ops import ACTION_FAILED, ACTION_RELEASED, MetricsPushError
from catalog_sync.services.jobs import InlineJobQueue, JobQueue
from catalog_sync.services.variant_sync import VariantSyncStatus

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_FAILURE = 1

ServicesFactory = Callable[[Settings, JobQueue], CatalogServices]


def _celery_queue() -> JobQueue:
    from sync_worker.main import app
    from sync_worker.queue import CeleryJobQueue

    return CeleryJobQueue(app)


# =============================================================================
# Commands
# =============================================================================


def reclaim_claims(args: argparse.Namespace, services: CatalogServices, console: Console) -> int:
    pattern = args.pattern or services.claims.default_pattern
    console.print(f"Scanning claim keys by pattern: [bold]{pattern}[/bold] (using SCAN)")

    report = services.claim_ops.reclaim(pattern, force=args.force, dry_run=args.dry_run)

    table = Table(title="PID claims")
    table.add_column("pid", style="cyan")
    table.add_column("ttl", justify="right")
    table.add_column("owner")
    table.add_column("token")
    table.add_column("action")
    table.add_column("errors", style="red")
    for row in report.rows:
        action_style = {ACTION_RELEASED: "green", ACTION_FAILED: "red"}.get(row.action, "")
        table.add_row(
            row.pid,
            str(row.ttl),
            row.owner or "-",
            row.token or "-",
            f"[{action_style}]{row.action}[/{action_style}]" if action_style else row.action,
            row.error or "",
        )
    console.print(table)

    if report.dry_run:
        console.print("Dry run complete, no keys deleted")
    console.print(
        f"Scanned {report.scanned}, released {report.released}, failed {report.failed}"
    )
    return EXIT_FAILURE if report.failed else EXIT_OK


def export_claim_metrics(args: argparse.Namespace, services: CatalogServices, console: Console) -> int:
    settings = services.settings
    gateway = args.pushgateway or settings.pushgateway_url
    job = args.job or settings.pushgateway_job
    pattern = args.pattern or services.claims.default_pattern

    console.print(f"Scanning claim keys by pattern: [bold]{pattern}[/bold]")
    try:
        report = services.claim_ops.export_metrics(
            pattern, gateway_url=gateway, job=job, dry_run=args.dry_run
        )
    except MetricsPushError as e:
        console.print(f"[red]{e}[/red]")
        return EXIT_FAILURE

    table = Table(title="Claim metrics")
    table.add_column("pattern")
    table.add_column("claims", justify="right")
    table.add_column("pushed")
    table.add_row(report.pattern, str(report.count), report.target or "no")
    console.print(table)

    if not gateway:
        console.print("Pushgateway URL not configured; pass --pushgateway or set PUSHGATEWAY_URL")
    return EXIT_OK


def sync_catalog(args: argparse.Namespace, services: CatalogServices, console: Console) -> int:
    if args.chunk:
        services.dispatcher.chunk_size = max(1, args.chunk)
    if isinstance(services.queue, InlineJobQueue):
        services.queue.bind(services.pipeline)

    filters = {"keyword": args.keyword, "categoryId": args.category_id}
    summary = services.catalog_sync.sync_all(
        start_page=args.page,
        page_size=args.page_size,
        filters={k: v for k, v in filters.items() if v},
        force=args.force,
        max_pages=args.max_pages,
        sleep_ms=args.sleep_ms,
    )

    dispatch = summary.dispatch
    table = Table(title="Catalog sync")
    table.add_column("metric")
    table.add_column("value", justify="right")
    table.add_row("pages", str(summary.pages))
    table.add_row("total pages", str(summary.total_pages))
    table.add_row("items scanned", str(dispatch.scanned))
    table.add_row("dispatched", str(len(dispatch.dispatched)))
    table.add_row("skipped (existing)", str(len(dispatch.skipped_existing)))
    table.add_row("skipped (claimed)", str(len(dispatch.contended)))
    table.add_row("invalid", str(dispatch.invalid))
    table.add_row("chunks", str(dispatch.chunks))

    errors = 0
    if isinstance(services.queue, InlineJobQueue):
        queue = services.queue
        created = sum(len(r.imported.created) for r in queue.results if r.imported)
        updated = sum(len(r.imported.updated) for r in queue.results if r.imported)
        failed = sum(len(r.imported.failed) for r in queue.results if r.imported)
        requeued = sum(1 for r in queue.results if r.status == STATUS_REQUEUED)
        errors = failed + requeued + len(queue.failures) + dispatch.invalid
        table.add_row("created", str(created))
        table.add_row("updated", str(updated))
        table.add_row("failed", str(failed))
        table.add_row("chunks failed", str(requeued + len(queue.failures)))
    console.print(table)

    if dispatch.errors:
        console.print(f"[red]Sample errors:[/red] {dispatch.errors}")
    return EXIT_FAILURE if errors else EXIT_OK


def sync_variants(args: argparse.Namespace, services: CatalogServices, console: Console) -> int:
    result = services.variant_sync.sync(args.pid, attempt=1)

    table = Table(title=f"Variant sync {args.pid}")
    table.add_column("field")
    table.add_column("value")
    for key, value in result.to_dict().items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)

    if result.status is VariantSyncStatus.RATE_LIMITED:
        console.print(f"Rate limited; retry in {result.retry_in}s")
        return EXIT_FAILURE
    return EXIT_OK


# =============================================================================
# Entry point
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="catalog-sync", description="Supplier catalog sync operator tools"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    reclaim = sub.add_parser("reclaim-claims", help="Reclaim stuck PID claims")
    reclaim.add_argument("--pattern", default=None, help="Key pattern (default <prefix>processing:*)")
    reclaim.add_argument("--force", action="store_true", help="Release every matching claim")
    reclaim.add_argument("--dry-run", action="store_true", help="Report only, delete nothing")
    reclaim.set_defaults(handler=reclaim_claims, inline=True)

    metrics = sub.add_parser("export-claim-metrics", help="Count claims and push a gauge")
    metrics.add_argument("--pattern", default=None)
    metrics.add_argument("--pushgateway", default=None, help="Pushgateway base URL")
    metrics.add_argument("--job", default=None, help="Pushgateway job name")
    metrics.add_argument("--dry-run", action="store_true", help="Only print the count")
    metrics.set_defaults(handler=export_claim_metrics, inline=True)

    catalog = sub.add_parser("sync-catalog", help="Scan every catalog page and import")
    catalog.add_argument("--page", type=int, default=1, help="First page")
    catalog.add_argument("--page-size", type=int, default=None)
    catalog.add_argument("--max-pages", type=int, default=None)
    catalog.add_argument("--chunk", type=int, default=None, help="PIDs per chunk job")
    catalog.add_argument("--inline", action="store_true", help="Import in this process, no queue")
    catalog.add_argument("--force", action="store_true", help="Re-import existing products")
    catalog.add_argument("--sleep-ms", type=int, default=None, help="Pause between pages")
    catalog.add_argument("--keyword", default=None)
    catalog.add_argument("--category-id", default=None)
    catalog.set_defaults(handler=sync_catalog)

    variants = sub.add_parser("sync-variants", help="Sync variants of one product now")
    variants.add_argument("pid")
    variants.set_defaults(handler=sync_variants, inline=True)

    return parser


def main(
    argv: Sequence[str] | None = None,
    services_factory: ServicesFactory | None = None,
    console: Console | None = None,
) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings)
    console = console or Console()
    factory = services_factory or build_services

    queue = InlineJobQueue() if args.inline else _celery_queue()
    services = factory(settings, queue)

    try:
        return args.handler(args, services, console)
    except ClaimStoreError as e:
        console.print(f"[red]Claim store unavailable: {e}[/red]")
        return EXIT_FAILURE
    except CatalogError as e:
        console.print(f"[red]Catalog API error ({e.kind.value}): {e.message}[/red]")
        return EXIT_FAILURE


if __name__ == "__main__":
    raise SystemExit(main())
