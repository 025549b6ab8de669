"""Redis infrastructure: shared client and the PID claim store."""

from collections.abc import Iterator
from typing import Protocol

import redis
import structlog
from redis.exceptions import RedisError

from catalog_sync.config import get_settings
from shared.constants import CLAIM_SCAN_COUNT, CLAIM_VALUE_SEPARATOR

logger = structlog.get_logger()

_redis_client: redis.Redis | None = None

# Deletes KEYS[1] only when the token part of its "token|owner" value equals ARGV[1].
_COMPARE_AND_DELETE = """
local current = redis.call('GET', KEYS[1])
if not current then
    return 0
end
local token = current
local sep = string.find(current, ARGV[2], 1, true)
if sep then
    token = string.sub(current, 1, sep - 1)
end
if token == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


def create_redis_client(url: str | None = None) -> redis.Redis:
    """Create a synchronous Redis client with short socket timeouts."""
    settings = get_settings()
    return redis.Redis.from_url(
        url or settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=settings.redis_socket_timeout,
        socket_timeout=settings.redis_socket_timeout,
        retry_on_timeout=True,
    )


def get_redis_client() -> redis.Redis:
    """Get or create the process-wide Redis client."""
    global _redis_client
    if _redis_client is None:
        _redis_client = create_redis_client()
        logger.info("Redis client created")
    return _redis_client


def close_redis() -> None:
    """Close the Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        _redis_client.close()
        _redis_client = None


def ping_redis(client: redis.Redis | None) -> bool:
    if client is None:
        return False
    try:
        return bool(client.ping())
    except RedisError as e:
        logger.warning("Redis ping failed", error=str(e))
        return False


class ClaimStoreError(Exception):
    """The claim store could not be reached or rejected the command."""


class ClaimStore(Protocol):
    """Key/value store with atomic conditional set and TTL."""

    def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool: ...

    def get(self, key: str) -> str | None: ...

    def ttl(self, key: str) -> int: ...

    def compare_and_delete(self, key: str, token: str) -> bool: ...

    def delete(self, key: str) -> bool: ...

    def scan(self, pattern: str) -> Iterator[str]: ...

    def index_add(self, index_key: str, member: str, ttl_seconds: int) -> None: ...

    def index_remove(self, index_key: str, member: str) -> None: ...

    def index_members(self, index_key: str) -> set[str]: ...


class RedisClaimStore:
    """ClaimStore backed by Redis SET NX EX and a Lua compare-and-delete."""

    def __init__(self, client: redis.Redis, scan_count: int = CLAIM_SCAN_COUNT):
        self.client = client
        self.scan_count = scan_count
        self._compare_and_delete = client.register_script(_COMPARE_AND_DELETE)

    def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        try:
            return bool(self.client.set(key, value, ex=ttl_seconds, nx=True))
        except RedisError as e:
            raise ClaimStoreError(str(e)) from e

    def get(self, key: str) -> str | None:
        try:
            return self.client.get(key)
        except RedisError as e:
            raise ClaimStoreError(str(e)) from e

    def ttl(self, key: str) -> int:
        try:
            return int(self.client.ttl(key))
        except RedisError as e:
            raise ClaimStoreError(str(e)) from e

    def compare_and_delete(self, key: str, token: str) -> bool:
        try:
            deleted = self._compare_and_delete(
                keys=[key], args=[token, CLAIM_VALUE_SEPARATOR]
            )
        except RedisError as e:
            raise ClaimStoreError(str(e)) from e
        return int(deleted or 0) == 1

    def delete(self, key: str) -> bool:
        try:
            return int(self.client.delete(key)) == 1
        except RedisError as e:
            raise ClaimStoreError(str(e)) from e

    def scan(self, pattern: str) -> Iterator[str]:
        # SCAN is incremental; KEYS would block the server on large keyspaces.
        try:
            yield from self.client.scan_iter(match=pattern, count=self.scan_count)
        except RedisError as e:
            raise ClaimStoreError(str(e)) from e

    def index_add(self, index_key: str, member: str, ttl_seconds: int) -> None:
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.sadd(index_key, member)
            pipe.expire(index_key, ttl_seconds)
            pipe.execute()
        except RedisError as e:
            raise ClaimStoreError(str(e)) from e

    def index_remove(self, index_key: str, member: str) -> None:
        try:
            self.client.srem(index_key, member)
        except RedisError as e:
            raise ClaimStoreError(str(e)) from e

    def index_members(self, index_key: str) -> set[str]:
        try:
            return set(self.client.smembers(index_key) or ())
        except RedisError as e:
            raise ClaimStoreError(str(e)) from e
