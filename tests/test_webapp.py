from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from src.inbox_categorizer.config import Settings
from src.inbox_categorizer.models import ClassificationResult
from src.inbox_categorizer.orchestrator import ClassificationOrchestrator
from src.inbox_categorizer.registry import CategoryRegistry
from src.inbox_categorizer.store import InMemoryCategoryStore
from src.inbox_categorizer.webapp import create_app, get_registry


def _client():
    """App wired to an in-memory, rules-only registry."""

    app = create_app()
    registry = CategoryRegistry(
        "user-1",
        store=InMemoryCategoryStore(),
        orchestrator=ClassificationOrchestrator(
            settings=Settings(_env_file=None, groq_api_key=None)
        ),
    )
    app.dependency_overrides[get_registry] = lambda: registry
    return TestClient(app), registry


def test_health() -> None:
    """Health endpoint returns ok."""

    app = create_app()
    client = TestClient(app)

    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_user_id_is_required() -> None:
    client = TestClient(create_app())

    resp = client.get("/api/categories")
    assert resp.status_code == 422


def test_list_categories_returns_builtins() -> None:
    client, _ = _client()

    resp = client.get("/api/categories", params={"user_id": "user-1"})

    assert resp.status_code == 200
    categories = resp.json()["categories"]
    assert [c["id"] for c in categories] == [
        "important",
        "action",
        "waiting",
        "newsletter",
        "auto-archive",
    ]
    assert categories[0]["isCustom"] is False


def test_create_category_and_duplicate() -> None:
    client, registry = _client()

    resp = client.post(
        "/api/categories",
        params={"user_id": "user-1"},
        json={"name": "Travel", "description": "Flights and hotels"},
    )
    assert resp.status_code == 201
    assert resp.json()["id"] == "travel"
    assert resp.json()["isCustom"] is True

    dup = client.post(
        "/api/categories", params={"user_id": "user-1"}, json={"name": "TRAVEL"}
    )
    assert dup.status_code == 409
    assert dup.json()["error"] == "duplicate_name"


def test_blank_name_is_bad_request() -> None:
    client, _ = _client()

    resp = client.post("/api/categories", params={"user_id": "user-1"}, json={"name": "  "})
    assert resp.status_code == 400


def test_delete_builtin_and_unknown() -> None:
    client, _ = _client()

    protected = client.delete("/api/categories/important", params={"user_id": "user-1"})
    assert protected.status_code == 403
    assert protected.json()["error"] == "protected_category"

    missing = client.delete("/api/categories/missing", params={"user_id": "user-1"})
    assert missing.status_code == 404


def test_classify_returns_partition_and_summary() -> None:
    client, _ = _client()

    resp = client.post(
        "/api/classify",
        params={"user_id": "user-1"},
        json={
            "threads": [
                {"id": "t1", "subject": "Weekly newsletter", "from": "news@example.com"},
                {"id": "t2", "subject": "Lunch?", "from": "bob@example.com", "labelIds": ["INBOX"]},
            ]
        },
    )

    assert resp.status_code == 200
    payload = resp.json()
    assert payload["summary"]["total"] == 2
    assert payload["summary"]["by_model"] == 0
    assert [t["id"] for t in payload["partition"]["Newsletter"]] == ["t1"]
    assert payload["partition"]["Newsletter"][0]["from"] == "news@example.com"
    assert [a["thread_id"] for a in payload["assignments"]] == ["t1", "t2"]


def test_delete_custom_redistributes_posted_threads() -> None:
    client, registry = _client()
    registry.create_category("Travel", "Flights and hotels")

    resp = client.request(
        "DELETE",
        "/api/categories/travel",
        params={"user_id": "user-1"},
        json={
            "threads": [
                {"id": "t1", "subject": "Flight to Lisbon", "category": "Travel"},
                {"id": "t2", "subject": "Weekly newsletter", "category": "Newsletter"},
            ]
        },
    )

    assert resp.status_code == 200
    payload = resp.json()
    assert payload["deleted"]["id"] == "travel"
    assert payload["reassigned_count"] == 1
    assert "Travel" not in payload["partition"]["partition"]
    assert payload["partition"]["summary"]["total"] == 2


def test_classify_forwards_instructions() -> None:
    app = create_app()
    registry = MagicMock()
    registry.classify.return_value = ClassificationResult()
    app.dependency_overrides[get_registry] = lambda: registry
    client = TestClient(app)

    resp = client.post(
        "/api/classify",
        params={"user_id": "user-1"},
        json={"threads": [], "instructions": "Airline mail is Travel."},
    )

    assert resp.status_code == 200
    assert registry.classify.call_args.kwargs["instructions"] == "Airline mail is Travel."


def test_internal_value_error_is_a_server_error() -> None:
    """Only caller input errors map to 400; broken invariants are 500s."""

    app = create_app()
    registry = MagicMock()
    registry.classify.side_effect = ValueError("Partition does not cover thread t1")
    app.dependency_overrides[get_registry] = lambda: registry
    client = TestClient(app, raise_server_exceptions=False)

    resp = client.post("/api/classify", params={"user_id": "user-1"}, json={"threads": []})

    assert resp.status_code == 500
