"""Progress records for fan-out import runs.

A run is a Redis hash under ``IMPORT_RUN_PREFIX + tracking_key`` holding
counters that chunk jobs increment as they finish individual PIDs. Failed
PIDs go to a companion set and a capped list keeps a few error samples.
"""

import uuid
from datetime import datetime, timezone
from typing import Any

import orjson
import redis
import structlog

from shared.constants import (
    IMPORT_ACTIVE_RUN_PREFIX,
    IMPORT_RUN_PREFIX,
    IMPORT_RUN_TTL_SECONDS,
    MAX_ERROR_SAMPLES,
)

logger = structlog.get_logger()

STATUS_QUEUED = "queued"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_COMPLETED_WITH_FAILURES = "completed_with_failures"
FINISHED_STATUSES = frozenset({STATUS_COMPLETED, STATUS_COMPLETED_WITH_FAILURES})

_INT_FIELDS = ("total", "processed", "success", "failed")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def run_status(total: int, processed: int, failed: int) -> str:
    """Status of a run from its counters."""
    if processed >= total:
        return STATUS_COMPLETED_WITH_FAILURES if failed else STATUS_COMPLETED
    if processed == 0:
        return STATUS_QUEUED
    return STATUS_RUNNING


class ImportTracker:
    """Redis-backed success/failure counters keyed by a tracking key."""

    def __init__(self, client: redis.Redis, ttl_seconds: int = IMPORT_RUN_TTL_SECONDS):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def run_key(tracking_key: str) -> str:
        return f"{IMPORT_RUN_PREFIX}{tracking_key}"

    @classmethod
    def failed_key(cls, tracking_key: str) -> str:
        return f"{cls.run_key(tracking_key)}:failed"

    @classmethod
    def errors_key(cls, tracking_key: str) -> str:
        return f"{cls.run_key(tracking_key)}:errors"

    @staticmethod
    def active_key(user_id: str) -> str:
        return f"{IMPORT_ACTIVE_RUN_PREFIX}{user_id}"

    def start(self, pids: list[str], context: str = "catalog", user_id: str | None = None) -> str:
        """Create a run record for ``pids`` and return its tracking key."""
        tracking_key = uuid.uuid4().hex
        key = self.run_key(tracking_key)

        pipe = self.client.pipeline(transaction=True)
        pipe.hset(
            key,
            mapping={
                "context": context,
                "user_id": user_id or "",
                "total": len(pids),
                "processed": 0,
                "success": 0,
                "failed": 0,
                "started_at": _now_iso(),
            },
        )
        pipe.expire(key, self.ttl_seconds)
        if user_id:
            pipe.set(self.active_key(user_id), tracking_key, ex=self.ttl_seconds)
        pipe.execute()

        logger.info("Import run started", tracking_key=tracking_key, total=len(pids), context=context)
        return tracking_key

    def mark_success(self, tracking_key: str, pid: str) -> None:
        self._mark(tracking_key, pid, ok=True)

    def mark_failure(self, tracking_key: str, pid: str, error: str | None = None) -> None:
        self._mark(tracking_key, pid, ok=False, error=error)

    def _mark(self, tracking_key: str, pid: str, ok: bool, error: str | None = None) -> None:
        key = self.run_key(tracking_key)

        pipe = self.client.pipeline(transaction=True)
        pipe.hincrby(key, "processed", 1)
        pipe.hincrby(key, "success" if ok else "failed", 1)
        pipe.hget(key, "total")
        pipe.hsetnx(key, "started_at", _now_iso())
        pipe.expire(key, self.ttl_seconds)
        if not ok:
            pipe.sadd(self.failed_key(tracking_key), pid)
            pipe.expire(self.failed_key(tracking_key), self.ttl_seconds)
            pipe.rpush(self.errors_key(tracking_key), orjson.dumps({"pid": pid, "error": error}))
            pipe.ltrim(self.errors_key(tracking_key), 0, MAX_ERROR_SAMPLES - 1)
            pipe.expire(self.errors_key(tracking_key), self.ttl_seconds)
        processed, _, total, *_ = pipe.execute()

        total = int(total or 0)
        if total and int(processed) >= total:
            # Status itself is derived on read, so concurrent marks never race on it.
            if self.client.hsetnx(key, "finished_at", _now_iso()):
                logger.info("Import run finished", tracking_key=tracking_key, total=total)

    def get(self, tracking_key: str) -> dict[str, Any] | None:
        raw = self.client.hgetall(self.run_key(tracking_key))
        if not raw:
            return None

        record: dict[str, Any] = dict(raw)
        for name in _INT_FIELDS:
            record[name] = int(record.get(name) or 0)
        record["status"] = run_status(record["total"], record["processed"], record["failed"])
        record["user_id"] = record.get("user_id") or None
        record["finished_at"] = record.get("finished_at") or None
        record["tracking_key"] = tracking_key
        record["failed_pids"] = sorted(self.client.smembers(self.failed_key(tracking_key)) or ())
        record["errors"] = [
            orjson.loads(item) for item in self.client.lrange(self.errors_key(tracking_key), 0, -1)
        ]
        return record

    def pop(self, tracking_key: str) -> dict[str, Any] | None:
        """Read a run record and discard it."""
        record = self.get(tracking_key)
        if record is not None:
            self.client.delete(
                self.run_key(tracking_key),
                self.failed_key(tracking_key),
                self.errors_key(tracking_key),
            )
        return record

    def get_active_key(self, user_id: str) -> str | None:
        """Tracking key of the user's latest run while it is still in progress."""
        tracking_key = self.client.get(self.active_key(user_id))
        if not tracking_key:
            return None
        record = self.get(tracking_key)
        if record is None or record["status"] in FINISHED_STATUSES:
            return None
        return tracking_key
