"""Unit tests for claim inspection endpoints."""

from fastapi.testclient import TestClient

from catalog_sync.services.claims import ClaimService
from fakes import InMemoryClaimStore


def test_list_claims_hides_tokens(client: TestClient, claim_store: InMemoryClaimStore) -> None:
    """Test that listed claims carry pid, ttl and owner only."""
    ClaimService(claim_store, owner="worker-b", ttl_seconds=600).acquire("CJ1")

    response = client.get("/api/v1/claims")
    assert response.status_code == 200

    assert response.json() == [{"pid": "CJ1", "ttl": 600, "owner": "worker-b"}]


def test_count_claims(client: TestClient, claim_store: InMemoryClaimStore) -> None:
    """Test counting claims, owner index keys excluded."""
    worker = ClaimService(claim_store, owner="worker-b", ttl_seconds=600)
    worker.acquire("CJ1")
    worker.acquire("CJ2")

    data = client.get("/api/v1/claims/count").json()
    assert data == {"pattern": "cj:processing:*", "count": 2}


def test_pattern_outside_claim_namespace(client: TestClient) -> None:
    """Test that patterns must stay inside the claim namespace."""
    response = client.get("/api/v1/claims", params={"pattern": "*"})
    assert response.status_code == 400


def test_claim_store_unavailable(client: TestClient, claim_store: InMemoryClaimStore) -> None:
    """Test that a store outage surfaces as 503."""
    claim_store.unavailable = True

    assert client.get("/api/v1/claims").status_code == 503
    assert client.get("/api/v1/claims/count").status_code == 503
