"""
Tests for the category registry and redistribution.
"""

from unittest.mock import MagicMock

import pytest

from src.inbox_categorizer.config import DEFAULT_CUSTOM_COLOR, BuiltinCategory, Settings
from src.inbox_categorizer.errors import (
    DuplicateNameError,
    NotFoundError,
    ProtectedCategoryError,
)
from src.inbox_categorizer.models import AssignmentSource, Thread, ThreadAssignment
from src.inbox_categorizer.orchestrator import ClassificationOrchestrator
from src.inbox_categorizer.registry import CategoryRegistry
from src.inbox_categorizer.store import InMemoryCategoryStore


def _settings():
    return Settings(_env_file=None, groq_api_key=None, inter_batch_delay_seconds=0.0)


@pytest.fixture
def store():
    return InMemoryCategoryStore()


@pytest.fixture
def registry(store):
    """Registry without a model: classification is rules-only."""
    return CategoryRegistry(
        "user-1", store=store, orchestrator=ClassificationOrchestrator(settings=_settings())
    )


@pytest.fixture
def threads():
    return [
        Thread(id="t1", subject="Travel itinerary for Lisbon", sender="agent@trips.example"),
        Thread(id="t2", subject="Weekly newsletter", snippet="Unsubscribe"),
        Thread(id="t3", subject="Your travel receipt", sender="noreply@trips.example"),
        Thread(id="t4", subject="Lunch?", sender="bob@example.com"),
    ]


class TestCategories:
    """Tests for listing and creating categories."""

    def test_builtins_materialized_on_first_access(self, registry, store):
        names = [c.name for c in registry.categories]

        assert names == [member.value for member in BuiltinCategory]
        assert all(not c.is_custom for c in registry.categories)
        assert [c.name for c in store.load("user-1")] == names

    def test_create_category(self, registry, store):
        category = registry.create_category("  Travel ", "Flights and hotels")

        assert category.id == "travel"
        assert category.name == "Travel"
        assert category.is_custom is True
        assert category.color == DEFAULT_CUSTOM_COLOR
        assert [c.name for c in registry.custom_categories] == ["Travel"]
        assert store.load("user-1")[-1].id == "travel"

    def test_create_category_persists_across_instances(self, registry, store):
        registry.create_category("Travel", color="#123456")

        reloaded = CategoryRegistry(
            "user-1", store=store, orchestrator=ClassificationOrchestrator(settings=_settings())
        )
        assert reloaded.get_category("travel").color == "#123456"

    def test_duplicate_names_are_rejected(self, registry):
        registry.create_category("Travel")

        with pytest.raises(DuplicateNameError):
            registry.create_category("travel")
        with pytest.raises(DuplicateNameError):
            registry.create_category("IMPORTANT")
        assert len(registry.categories) == 6

    def test_blank_name_is_rejected(self, registry):
        with pytest.raises(ValueError):
            registry.create_category("   ")

    def test_id_collision_gets_suffix(self, registry):
        category = registry.create_category("Auto Archive")
        assert category.id == "auto-archive-2"

    def test_get_unknown_category(self, registry):
        with pytest.raises(NotFoundError):
            registry.get_category("missing")


class TestDeleteCategory:
    """Tests for deletion and redistribution."""

    def test_builtin_is_protected(self, registry, store, threads):
        registry.create_category("Travel", "Flights and hotels")
        classified = registry.classify(threads)
        stored = store.load("user-1")

        with pytest.raises(ProtectedCategoryError):
            registry.delete_category("important")

        assert registry.last_result is classified
        assert [a.category for a in registry.last_result.assignments] == [
            a.category for a in classified.assignments
        ]
        assert store.load("user-1") == stored
        assert len(registry.categories) == 6

    def test_unknown_category(self, registry):
        with pytest.raises(NotFoundError):
            registry.delete_category("missing")

    def test_delete_without_model_uses_default_category(self, registry, store, threads):
        registry.create_category("Travel", "Flights and hotels")
        registry.create_category("Groceries", "Supermarket orders")
        classified = registry.classify(threads)
        travel_ids = [t.id for t in classified.partition["Travel"]]
        assert "t1" in travel_ids

        outcome = registry.delete_category("travel")

        assert outcome.deleted.name == "Travel"
        assert outcome.degraded is True
        assert outcome.reassigned_count == len(travel_ids)
        assert "Travel" not in outcome.partition.partition
        assert all(outcome.partition.category_of(i) == "Can Wait" for i in travel_ids)
        for assignment in outcome.partition.assignments:
            if assignment.thread_id in travel_ids:
                assert assignment.source == AssignmentSource.DEFAULT
            else:
                assert assignment.source == AssignmentSource.PREVIOUS
                assert assignment.category == classified.category_of(assignment.thread_id)
        assert [c.id for c in store.load("user-1")] == [
            "important",
            "action",
            "waiting",
            "newsletter",
            "auto-archive",
            "groceries",
        ]

    def test_delete_last_custom_rescores_by_rules(self, registry, threads):
        registry.create_category("Travel", "Flights and hotels")
        registry.classify(threads)

        outcome = registry.delete_category("travel")

        assert outcome.degraded is False
        assert {a.source for a in outcome.partition.assignments} == {AssignmentSource.RULES}
        assert outcome.partition.category_of("t2") == "Newsletter"
        assert sum(outcome.partition.counts().values()) == len(threads)

    def test_delete_with_model_reclassifies_everything(self, store, threads):
        categorizer = MagicMock()
        categorizer.classify_batch.side_effect = lambda batch, categories, **kwargs: [
            ThreadAssignment(
                thread_id=t.id, category=categories[-1].name, source=AssignmentSource.MODEL
            )
            for t in batch
        ]
        registry = CategoryRegistry(
            "user-1",
            store=store,
            orchestrator=ClassificationOrchestrator(
                settings=_settings(), categorizer=categorizer
            ),
        )
        registry.create_category("Travel")
        registry.create_category("Receipts")

        previous = [t.model_copy(update={"category": "Travel"}) for t in threads[:2]]
        previous += [t.model_copy(update={"category": "Receipts"}) for t in threads[2:]]

        outcome = registry.delete_category("travel", threads=previous)

        assert outcome.degraded is False
        assert outcome.reassigned_count == 2
        assert outcome.partition.counts()["Receipts"] == len(threads)
        assert registry.last_result is outcome.partition

    def test_delete_without_threads(self, registry):
        registry.create_category("Travel")

        outcome = registry.delete_category("travel")

        assert outcome.reassigned_count == 0
        assert sum(outcome.partition.counts().values()) == 0
        assert [c.name for c in registry.custom_categories] == []
