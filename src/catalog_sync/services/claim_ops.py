"""Operator tooling for PID claims: reclaim stuck claims, export claim counts."""

from dataclasses import dataclass, field
from urllib.parse import quote

import httpx
import structlog

from catalog_sync.infrastructure.redis import ClaimStoreError
from catalog_sync.services.claims import ClaimService
from shared.constants import CLAIM_METRIC_NAME

logger = structlog.get_logger()

ACTION_RELEASED = "released"
ACTION_WOULD_RELEASE = "would_release"
ACTION_KEPT = "kept"
ACTION_FAILED = "failed"

PUSHGATEWAY_CONTENT_TYPE = "text/plain; version=0.0.4"

# TTL reported by the store for a key that exists but never expires.
NO_EXPIRY = -1


class MetricsPushError(Exception):
    """The metrics sink rejected or could not receive the push."""


@dataclass
class ReclaimRow:
    pid: str
    ttl: int
    owner: str | None
    token: str | None
    action: str
    error: str | None = None


@dataclass
class ReclaimReport:
    pattern: str
    force: bool
    dry_run: bool
    rows: list[ReclaimRow] = field(default_factory=list)

    @property
    def scanned(self) -> int:
        return len(self.rows)

    @property
    def released(self) -> int:
        return sum(1 for r in self.rows if r.action == ACTION_RELEASED)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.rows if r.action == ACTION_FAILED)


@dataclass
class MetricsReport:
    pattern: str
    count: int
    pushed: bool = False
    target: str | None = None


def render_claim_metric(count: int) -> str:
    """Prometheus text exposition for the claim gauge."""
    return (
        f"# HELP {CLAIM_METRIC_NAME} Number of CJ claim keys\n"
        f"# TYPE {CLAIM_METRIC_NAME} gauge\n"
        f"{CLAIM_METRIC_NAME} {count}\n"
    )


class ClaimOperations:
    def __init__(self, claims: ClaimService, http_client: httpx.Client | None = None):
        self.claims = claims
        self.http = http_client

    def reclaim(
        self, pattern: str | None = None, force: bool = False, dry_run: bool = False
    ) -> ReclaimReport:
        """
        Release claims that can never self-heal.

        Without ``force`` only claims stored without an expiry are released.
        With ``force`` every matching claim is released. ``dry_run`` reports
        what would happen and changes nothing.
        """
        pattern = pattern or self.claims.default_pattern
        report = ReclaimReport(pattern=pattern, force=force, dry_run=dry_run)

        for info in self.claims.inspect(pattern):
            row = ReclaimRow(
                pid=info.pid,
                ttl=info.ttl_remaining,
                owner=info.owner,
                token=info.token,
                action=ACTION_KEPT,
            )
            report.rows.append(row)

            if not (force or info.ttl_remaining == NO_EXPIRY):
                continue
            if dry_run:
                row.action = ACTION_WOULD_RELEASE
                continue

            try:
                if force:
                    released = self.claims.force_release(info.pid)
                else:
                    released = self.claims.release_observed(info)
            except ClaimStoreError as e:
                row.action = ACTION_FAILED
                row.error = str(e)
                continue
            # Released or re-acquired by someone else since the scan.
            row.action = ACTION_RELEASED if released else ACTION_KEPT

        logger.info(
            "Reclaim finished",
            pattern=pattern,
            force=force,
            dry_run=dry_run,
            scanned=report.scanned,
            released=report.released,
            failed=report.failed,
        )
        return report

    def count_claims(self, pattern: str | None = None) -> int:
        """Live claims matching ``pattern``, not counting owner index keys."""
        return self.claims.count(pattern)

    def export_metrics(
        self,
        pattern: str | None = None,
        gateway_url: str | None = None,
        job: str = "cj_claims",
        dry_run: bool = False,
    ) -> MetricsReport:
        pattern = pattern or self.claims.default_pattern
        report = MetricsReport(pattern=pattern, count=self.count_claims(pattern))
        if dry_run or not gateway_url:
            return report

        report.target = self.push_metric(report.count, gateway_url, job)
        report.pushed = True
        return report

    def push_metric(self, count: int, gateway_url: str, job: str) -> str:
        """POST the gauge to a Prometheus Pushgateway. Returns the target URL."""
        url = f"{gateway_url.rstrip('/')}/metrics/job/{quote(job, safe='')}"
        client = self.http or httpx.Client(timeout=10.0)
        try:
            response = client.post(
                url,
                content=render_claim_metric(count),
                headers={"Content-Type": PUSHGATEWAY_CONTENT_TYPE},
            )
        except httpx.HTTPError as e:
            raise MetricsPushError(f"Error pushing to Pushgateway: {e}") from e
        finally:
            if self.http is None:
                client.close()

        if not response.is_success:
            raise MetricsPushError(
                f"Failed to push to Pushgateway: {response.status_code} {response.text}"
            )
        logger.info("Pushed claim metric", url=url, count=count)
        return url
