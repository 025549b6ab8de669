"""Distributed PID claims.

A claim grants one worker exclusive ownership of an upstream product id (PID)
for a bounded lease. Claims live in the shared claim store under
``<prefix>processing:<pid>`` with a ``token|owner`` value and a TTL, so a
crashed worker's PIDs become claimable again once the lease expires.

All mutation goes through two atomic primitives of the store: set-if-absent
(acquire) and compare-token-and-delete (release).
"""

import hmac
import secrets
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

import structlog

from catalog_sync.infrastructure.redis import ClaimStore, ClaimStoreError
from shared.constants import (
    CLAIM_NAMESPACE,
    CLAIM_OWNER_NAMESPACE,
    CLAIM_VALUE_SEPARATOR,
    DEFAULT_CLAIM_PREFIX,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class ClaimInfo:
    """A live claim as seen by a scan of the claim store."""

    pid: str
    ttl_remaining: int
    owner: str | None
    token: str | None


def split_claim_value(value: str | None) -> tuple[str | None, str | None]:
    """Split a stored ``token|owner`` value."""
    if value is None:
        return None, None
    token, sep, owner = value.partition(CLAIM_VALUE_SEPARATOR)
    return token, (owner if sep else None)


class ClaimService:
    """Acquire, release and inspect PID claims."""

    def __init__(
        self,
        store: ClaimStore,
        owner: str,
        ttl_seconds: int,
        prefix: str = DEFAULT_CLAIM_PREFIX,
    ):
        self.store = store
        self.owner = owner
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    @property
    def claim_prefix(self) -> str:
        return f"{self.prefix}{CLAIM_NAMESPACE}"

    @property
    def default_pattern(self) -> str:
        return f"{self.claim_prefix}*"

    def claim_key(self, pid: str) -> str:
        return f"{self.claim_prefix}{pid}"

    def owner_index_key(self, owner: str) -> str:
        return f"{self.claim_prefix}{CLAIM_OWNER_NAMESPACE}{owner}"

    def is_owner_index_key(self, key: str) -> bool:
        return key.startswith(f"{self.claim_prefix}{CLAIM_OWNER_NAMESPACE}")

    def pid_from_key(self, key: str) -> str:
        return key[len(self.claim_prefix):] if key.startswith(self.claim_prefix) else key

    # -------------------------------------------------------------------------
    # Acquire / release
    # -------------------------------------------------------------------------

    def acquire(self, pid: str, ttl_seconds: int | None = None) -> str | None:
        """
        Try to claim a PID.

        Returns a fresh token on success, or None when another live claim exists
        or the store is unreachable. None means "skip this PID this round".
        """
        ttl = ttl_seconds or self.ttl_seconds
        token = secrets.token_hex(16)
        value = f"{token}{CLAIM_VALUE_SEPARATOR}{self.owner}"

        try:
            acquired = self.store.set_if_absent(self.claim_key(pid), value, ttl)
        except ClaimStoreError as e:
            logger.warning("Claim store unavailable, claim not acquired", pid=pid, error=str(e))
            return None

        if not acquired:
            logger.debug("PID already claimed", pid=pid)
            return None

        try:
            self.store.index_add(self.owner_index_key(self.owner), pid, ttl)
        except ClaimStoreError as e:
            # The claim itself is held; only the owner bookkeeping is missing.
            logger.warning("Failed to index claim by owner", pid=pid, error=str(e))

        return token

    def release(self, pid: str, token: str) -> bool:
        """Release a claim only if ``token`` still owns it."""
        if not token:
            return False

        try:
            released = self.store.compare_and_delete(self.claim_key(pid), token)
        except ClaimStoreError as e:
            logger.warning("Failed to release claim", pid=pid, error=str(e))
            return False

        if released:
            self._unindex(self.owner, pid)
        return released

    def force_release(self, pid: str) -> bool:
        """Delete a claim regardless of token. Operator tooling only."""
        key = self.claim_key(pid)
        _, owner = split_claim_value(self.store.get(key))
        deleted = self.store.delete(key)
        if owner:
            self._unindex(owner, pid)
        return deleted

    def release_observed(self, info: ClaimInfo) -> bool:
        """
        Release a claim seen by a scan, only if it still carries the scanned token.

        Store errors propagate so operator tooling can report them.
        """
        if not info.token:
            return False
        released = self.store.compare_and_delete(self.claim_key(info.pid), info.token)
        if released and info.owner:
            self._unindex(info.owner, info.pid)
        return released

    def holds(self, pid: str, token: str | None) -> bool:
        """Whether ``token`` is the current owner of the PID's claim."""
        if not token:
            return False
        try:
            current, _ = split_claim_value(self.store.get(self.claim_key(pid)))
        except ClaimStoreError as e:
            logger.warning("Claim store unavailable, treating claim as lost", pid=pid, error=str(e))
            return False
        return current is not None and hmac.compare_digest(current, token)

    @contextmanager
    def claimed(self, pid: str) -> Iterator[str | None]:
        """Hold a claim for the duration of the block; yields None on contention."""
        token = self.acquire(pid)
        try:
            yield token
        finally:
            if token:
                self.release(pid, token)

    def release_all_for_owner(self, owner: str | None = None) -> int:
        """Release every PID in an owner's index that the owner still holds."""
        owner = owner or self.owner
        index_key = self.owner_index_key(owner)
        released = 0
        for pid in self.store.index_members(index_key):
            key = self.claim_key(pid)
            token, current_owner = split_claim_value(self.store.get(key))
            # The PID may have expired and been re-claimed by someone else.
            if current_owner != owner or not token:
                continue
            if self.store.compare_and_delete(key, token):
                released += 1
        self.store.delete(index_key)
        logger.info("Released claims for owner", owner=owner, released=released)
        return released

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def iter_claim_keys(self, pattern: str | None = None) -> Iterator[str]:
        """Claim keys matching ``pattern``, excluding owner index keys."""
        for key in self.store.scan(pattern or self.default_pattern):
            if not key or self.is_owner_index_key(key):
                continue
            yield key

    def inspect(self, pattern: str | None = None) -> list[ClaimInfo]:
        claims: list[ClaimInfo] = []
        for key in self.iter_claim_keys(pattern):
            ttl = self.store.ttl(key)
            value = self.store.get(key)
            if value is None:
                # Expired between SCAN and GET.
                continue
            token, owner = split_claim_value(value)
            claims.append(
                ClaimInfo(pid=self.pid_from_key(key), ttl_remaining=ttl, owner=owner, token=token)
            )
        return claims

    def count(self, pattern: str | None = None) -> int:
        return sum(1 for _ in self.iter_claim_keys(pattern))

    def _unindex(self, owner: str, pid: str) -> None:
        try:
            self.store.index_remove(self.owner_index_key(owner), pid)
        except ClaimStoreError as e:
            logger.warning("Failed to unindex claim", pid=pid, owner=owner, error=str(e))
