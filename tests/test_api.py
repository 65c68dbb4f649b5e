# tests/test_api.py

from unittest.mock import MagicMock

import numpy as np
import pytest
from fastapi.testclient import TestClient

import api
from grounding.application.context_packer import NO_GROUNDING_MESSAGE
from grounding.application.indexing_service import IndexingService
from grounding.application.retrieval_service import RetrievalService
from grounding.domain.errors import StoreUnavailable
from grounding.infrastructure.memory_store import InMemoryCorpusStore


QUERY = np.array([1.0, 0.0, 0.0], dtype=np.float32)


@pytest.fixture
def client():
    """API wired to an in-memory store and a fake embedding model."""
    engine = MagicMock()
    engine.encode_single.return_value = QUERY
    engine.encode.side_effect = lambda texts: np.stack([QUERY] * len(texts))
    engine.model_name = "test-model"
    store = InMemoryCorpusStore()

    api.app.dependency_overrides[api.get_embedding_engine] = lambda: engine
    api.app.dependency_overrides[api.get_store] = lambda: store
    api.app.dependency_overrides[api.get_retrieval_service] = lambda: RetrievalService(engine, store)
    api.app.dependency_overrides[api.get_indexing_service] = lambda: IndexingService(engine, store)
    yield TestClient(api.app)
    api.app.dependency_overrides.clear()


def test_index_then_retrieve(client):
    response = client.put(
        "/scopes/alice/documents",
        json={"fragment_id": "doc-1", "title": "Harbour", "body": "Tide tables for the ferry."},
    )
    assert response.status_code == 200
    assert response.json() == {"indexed": ["doc-1"], "embedded": ["doc-1"]}

    response = client.post("/retrieve", json={"query": "ferry", "scope_id": "alice"})

    assert response.status_code == 200
    body = response.json()
    assert body["grounded"] is True
    assert [s["id"] for s in body["sources"]] == ["doc-1"]
    assert body["sources"][0]["strategy"] == "vector"
    assert body["sources"][0]["relevance"] == "100.0%"
    assert body["grounding"].startswith("Context from user's documents:")
    assert client.get("/scopes/alice/count").json()["documents"] == 1


def test_other_scope_sees_nothing(client):
    client.put(
        "/scopes/alice/documents",
        json={"fragment_id": "doc-1", "title": "Harbour", "body": "Tide tables."},
    )

    body = client.post("/retrieve", json={"query": "tide", "scope_id": "bob"}).json()

    assert body["grounded"] is False
    assert body["sources"] == []
    assert body["grounding"] == NO_GROUNDING_MESSAGE


def test_delete_document(client):
    client.put(
        "/scopes/alice/documents",
        json={"fragment_id": "doc-1", "title": "Harbour", "body": "Tide tables."},
    )

    assert client.delete("/scopes/alice/documents/doc-1").status_code == 200
    assert client.get("/scopes/alice/count").json()["documents"] == 0


def test_blank_scope_is_unprocessable(client):
    response = client.post("/retrieve", json={"query": "tide", "scope_id": "  "})

    assert response.status_code == 422


def test_unknown_preset_is_unprocessable(client):
    response = client.post(
        "/retrieve", json={"query": "tide", "scope_id": "alice", "preset": "poetry"}
    )

    assert response.status_code == 422
    assert "Unknown retrieval preset" in response.json()["detail"]


def test_store_outage_is_service_unavailable(client):
    failing = MagicMock()
    failing.retrieve.side_effect = StoreUnavailable("store offline")
    api.app.dependency_overrides[api.get_retrieval_service] = lambda: failing

    response = client.post("/retrieve", json={"query": "tide", "scope_id": "alice"})

    assert response.status_code == 503
    assert response.json()["detail"] == "store offline"


def test_status_reports_model_and_store(client):
    response = client.get("/status")

    assert response.status_code == 200
    body = response.json()
    assert body["is_ready"] is True
    assert body["embedding_model"] == "test-model"
    assert body["store"] == "InMemoryCorpusStore"


def test_status_is_service_unavailable_when_store_cannot_start(client):
    def broken_store():
        raise StoreUnavailable("database locked")

    api.app.dependency_overrides[api.get_store] = broken_store

    response = client.get("/status")

    assert response.status_code == 503
    assert response.json()["detail"] == "database locked"
