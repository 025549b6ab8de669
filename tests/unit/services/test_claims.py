"""Unit tests for PID claims."""

import pytest

from catalog_sync.services.claims import ClaimService, split_claim_value
from fakes import InMemoryClaimStore


def _make_worker(store: InMemoryClaimStore, owner: str, ttl: int = 1800) -> ClaimService:
    return ClaimService(store, owner=owner, ttl_seconds=ttl)


class TestAcquire:
    def test_acquire_returns_token_and_stores_owner(
        self, claims: ClaimService, claim_store: InMemoryClaimStore
    ) -> None:
        token = claims.acquire("CJ123")

        assert token is not None
        assert len(token) == 32
        assert claim_store.get("cj:processing:CJ123") == f"{token}|worker-a"
        assert claim_store.ttl("cj:processing:CJ123") == 1800

    def test_tokens_are_unique_per_acquire(self, claims: ClaimService) -> None:
        first = claims.acquire("CJ1")
        claims.release("CJ1", first)
        second = claims.acquire("CJ1")

        assert first != second

    def test_second_acquire_is_contention(self, claim_store: InMemoryClaimStore) -> None:
        a = _make_worker(claim_store, "worker-a")
        b = _make_worker(claim_store, "worker-b")

        assert a.acquire("CJ123") is not None
        assert b.acquire("CJ123") is None

    def test_store_unavailable_fails_closed(
        self, claims: ClaimService, claim_store: InMemoryClaimStore
    ) -> None:
        claim_store.unavailable = True

        assert claims.acquire("CJ123") is None

    def test_custom_ttl(self, claims: ClaimService, claim_store: InMemoryClaimStore) -> None:
        claims.acquire("CJ123", ttl_seconds=60)

        assert claim_store.ttl("cj:processing:CJ123") == 60


class TestMutualExclusion:
    def test_exactly_one_of_two_workers_wins(self, claim_store: InMemoryClaimStore) -> None:
        a = _make_worker(claim_store, "worker-a")
        b = _make_worker(claim_store, "worker-b")

        tokens = [a.acquire("CJ123"), b.acquire("CJ123")]

        assert sum(t is not None for t in tokens) == 1

    def test_loser_release_is_noop(self, claim_store: InMemoryClaimStore) -> None:
        a = _make_worker(claim_store, "worker-a")
        b = _make_worker(claim_store, "worker-b")
        token_a = a.acquire("CJ123")
        assert b.acquire("CJ123") is None

        assert b.release("CJ123", "") is False
        assert b.release("CJ123", "not-the-token") is False
        assert a.holds("CJ123", token_a)


class TestRelease:
    def test_release_with_matching_token(self, claims: ClaimService, claim_store: InMemoryClaimStore) -> None:
        token = claims.acquire("CJ123")

        assert claims.release("CJ123", token) is True
        assert claim_store.get("cj:processing:CJ123") is None

    def test_stale_token_cannot_release_reacquired_claim(self, claim_store: InMemoryClaimStore) -> None:
        a = _make_worker(claim_store, "worker-a", ttl=60)
        b = _make_worker(claim_store, "worker-b", ttl=60)
        token_a = a.acquire("CJ123")

        claim_store.advance(61)
        token_b = b.acquire("CJ123")
        assert token_b is not None

        assert a.release("CJ123", token_a) is False
        assert b.holds("CJ123", token_b)

    def test_release_after_expiry_is_noop(self, claims: ClaimService, claim_store: InMemoryClaimStore) -> None:
        token = claims.acquire("CJ123", ttl_seconds=10)
        claim_store.advance(11)

        assert claims.release("CJ123", token) is False

    def test_release_swallows_store_errors(self, claims: ClaimService, claim_store: InMemoryClaimStore) -> None:
        token = claims.acquire("CJ123")
        claim_store.unavailable = True

        assert claims.release("CJ123", token) is False

    def test_force_release_ignores_token(self, claim_store: InMemoryClaimStore) -> None:
        a = _make_worker(claim_store, "worker-a")
        ops = _make_worker(claim_store, "operator")
        a.acquire("CJ123")

        assert ops.force_release("CJ123") is True
        assert a.acquire("CJ123") is not None


class TestSelfHeal:
    def test_claim_becomes_acquirable_after_ttl(self, claim_store: InMemoryClaimStore) -> None:
        a = _make_worker(claim_store, "worker-a", ttl=120)
        b = _make_worker(claim_store, "worker-b", ttl=120)
        a.acquire("CJ123")

        claim_store.advance(119)
        assert b.acquire("CJ123") is None

        claim_store.advance(1)
        assert b.acquire("CJ123") is not None


class TestHolds:
    def test_holds_only_with_current_token(self, claims: ClaimService) -> None:
        token = claims.acquire("CJ123")

        assert claims.holds("CJ123", token) is True
        assert claims.holds("CJ123", "other") is False
        assert claims.holds("CJ123", None) is False
        assert claims.holds("CJ999", token) is False

    def test_holds_is_false_when_store_down(self, claims: ClaimService, claim_store: InMemoryClaimStore) -> None:
        token = claims.acquire("CJ123")
        claim_store.unavailable = True

        assert claims.holds("CJ123", token) is False


class TestClaimedContext:
    def test_releases_on_exit(self, claims: ClaimService, claim_store: InMemoryClaimStore) -> None:
        with claims.claimed("CJ123") as token:
            assert token is not None
            assert claim_store.get("cj:processing:CJ123") is not None

        assert claim_store.get("cj:processing:CJ123") is None

    def test_releases_on_exception(self, claims: ClaimService, claim_store: InMemoryClaimStore) -> None:
        with pytest.raises(RuntimeError):
            with claims.claimed("CJ123"):
                raise RuntimeError("boom")

        assert claim_store.get("cj:processing:CJ123") is None

    def test_yields_none_on_contention(self, claim_store: InMemoryClaimStore) -> None:
        a = _make_worker(claim_store, "worker-a")
        b = _make_worker(claim_store, "worker-b")
        token_a = a.acquire("CJ123")

        with b.claimed("CJ123") as token:
            assert token is None

        assert a.holds("CJ123", token_a)


class TestOwnerIndex:
    def test_acquire_indexes_pid_under_owner(self, claims: ClaimService, claim_store: InMemoryClaimStore) -> None:
        claims.acquire("CJ1")
        claims.acquire("CJ2")

        assert claim_store.index_members("cj:processing:owner:worker-a") == {"CJ1", "CJ2"}

    def test_release_removes_from_index(self, claims: ClaimService, claim_store: InMemoryClaimStore) -> None:
        token = claims.acquire("CJ1")
        claims.release("CJ1", token)

        assert claim_store.index_members("cj:processing:owner:worker-a") == set()

    def test_release_all_for_owner(self, claim_store: InMemoryClaimStore) -> None:
        a = _make_worker(claim_store, "worker-a")
        b = _make_worker(claim_store, "worker-b")
        a.acquire("CJ1")
        a.acquire("CJ2")
        b.acquire("CJ3")

        assert a.release_all_for_owner() == 2
        assert claim_store.get("cj:processing:CJ1") is None
        assert claim_store.get("cj:processing:CJ3") is not None
        assert claim_store.index_members("cj:processing:owner:worker-a") == set()

    def test_release_all_skips_pids_reclaimed_by_others(self, claim_store: InMemoryClaimStore) -> None:
        a = _make_worker(claim_store, "worker-a", ttl=60)
        b = _make_worker(claim_store, "worker-b", ttl=600)
        a.acquire("CJ1")
        claim_store.sets["cj:processing:owner:worker-a"] = ({"CJ1"}, None)
        claim_store.advance(61)
        b.acquire("CJ1")

        assert a.release_all_for_owner() == 0
        assert claim_store.get("cj:processing:CJ1") is not None

    def test_release_all_keeps_claim_reacquired_after_read(
        self, claim_store: InMemoryClaimStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        a = _make_worker(claim_store, "worker-a", ttl=60)
        b = _make_worker(claim_store, "worker-b", ttl=600)
        a.acquire("CJ1")
        read = claim_store.get

        def get_then_expire(key: str) -> str | None:
            value = read(key)
            claim_store.advance(61)
            b.acquire("CJ1")
            return value

        monkeypatch.setattr(claim_store, "get", get_then_expire)

        assert a.release_all_for_owner() == 0
        assert read("cj:processing:CJ1").endswith("|worker-b")


class TestInspect:
    def test_inspect_lists_claims_without_owner_keys(self, claims: ClaimService) -> None:
        token = claims.acquire("CJ1")
        claims.acquire("CJ2")

        found = {c.pid: c for c in claims.inspect()}

        assert set(found) == {"CJ1", "CJ2"}
        assert found["CJ1"].owner == "worker-a"
        assert found["CJ1"].token == token
        assert found["CJ1"].ttl_remaining == 1800

    def test_count_excludes_owner_index(self, claims: ClaimService) -> None:
        for pid in ("CJ1", "CJ2", "CJ3"):
            claims.acquire(pid)

        assert claims.count() == 3
        assert claims.count("cj:processing:CJ1") == 1


class TestSplitClaimValue:
    def test_token_and_owner(self) -> None:
        assert split_claim_value("abc|host:1") == ("abc", "host:1")

    def test_owner_missing(self) -> None:
        assert split_claim_value("abc") == ("abc", None)

    def test_none(self) -> None:
        assert split_claim_value(None) == (None, None)
