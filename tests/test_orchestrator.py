"""
Tests for the classification orchestrator.
"""

from unittest.mock import MagicMock, patch

import pytest

from src.inbox_categorizer.config import Settings, builtin_category_specs
from src.inbox_categorizer.errors import UpstreamUnavailableError
from src.inbox_categorizer.models import AssignmentSource, Category, Thread, ThreadAssignment
from src.inbox_categorizer.orchestrator import ClassificationOrchestrator


def _settings(**overrides):
    values = {
        "_env_file": None,
        "groq_api_key": None,
        "model_batch_size": 2,
        "model_thread_cap": 50,
        "inter_batch_delay_seconds": 0.0,
    }
    values.update(overrides)
    return Settings(**values)


def _model_categorizer(category_name, source=AssignmentSource.MODEL):
    """Categorizer mock assigning every thread to ``category_name``."""
    categorizer = MagicMock()
    categorizer.classify_batch.side_effect = lambda threads, categories, **kwargs: [
        ThreadAssignment(thread_id=t.id, category=category_name, source=source)
        for t in threads
    ]
    return categorizer


@pytest.fixture
def builtins():
    return [Category.model_validate(spec) for spec in builtin_category_specs()]


@pytest.fixture
def with_custom(builtins):
    return builtins + [Category(name="Travel", description="Flights and hotels")]


@pytest.fixture
def threads():
    return [Thread(id=f"t{i}", subject=f"Message {i}") for i in range(1, 6)]


def test_partition_is_total_and_ordered(builtins, threads):
    """Every thread lands in exactly one category, in input order."""
    orchestrator = ClassificationOrchestrator(settings=_settings())

    result = orchestrator.classify(threads, builtins)

    assert list(result.partition) == [c.name for c in builtins]
    assert sum(result.counts().values()) == len(threads)
    assert [t.id for t in result.threads] == [t.id for t in threads]
    assert all(t.category for t in result.threads)


def test_no_custom_categories_skip_model(builtins, threads):
    categorizer = _model_categorizer("Important")
    orchestrator = ClassificationOrchestrator(settings=_settings(), categorizer=categorizer)

    result = orchestrator.classify(threads, builtins)

    categorizer.classify_batch.assert_not_called()
    assert {a.source for a in result.assignments} == {AssignmentSource.RULES}


def test_model_cap_and_batches(with_custom, threads):
    """Only the first model_thread_cap threads go to the model, in batches."""
    categorizer = _model_categorizer("Travel")
    orchestrator = ClassificationOrchestrator(
        settings=_settings(model_thread_cap=3), categorizer=categorizer
    )

    result = orchestrator.classify(threads, with_custom)

    batches = [call.args[0] for call in categorizer.classify_batch.call_args_list]
    assert [[t.id for t in b] for b in batches] == [["t1", "t2"], ["t3"]]
    assert [a.source for a in result.assignments] == [AssignmentSource.MODEL] * 3 + [
        AssignmentSource.RULES
    ] * 2


def test_instructions_are_passed_to_every_batch(with_custom, threads):
    categorizer = _model_categorizer("Travel")
    orchestrator = ClassificationOrchestrator(settings=_settings(), categorizer=categorizer)

    orchestrator.classify(threads, with_custom, instructions="Prefer Travel.")

    assert [
        call.kwargs["instructions"] for call in categorizer.classify_batch.call_args_list
    ] == ["Prefer Travel."] * 3


def test_inter_batch_delay(with_custom, threads):
    categorizer = _model_categorizer("Travel")
    orchestrator = ClassificationOrchestrator(
        settings=_settings(inter_batch_delay_seconds=0.5), categorizer=categorizer
    )

    with patch("src.inbox_categorizer.orchestrator.time.sleep") as sleep:
        orchestrator.classify(threads, with_custom)

    # 5 threads in batches of 2 -> 3 batches -> 2 pauses
    assert sleep.call_count == 2
    sleep.assert_called_with(0.5)


def test_deadline_scores_remaining_by_rules(with_custom, threads):
    categorizer = _model_categorizer("Travel")
    orchestrator = ClassificationOrchestrator(settings=_settings(), categorizer=categorizer)

    clock = iter([0.0, 0.0, 100.0])
    with patch(
        "src.inbox_categorizer.orchestrator.time.monotonic",
        side_effect=lambda: next(clock, 100.0),
    ):
        result = orchestrator.classify(threads, with_custom, timeout=10)

    assert categorizer.classify_batch.call_count == 1
    assert [a.source for a in result.assignments] == [AssignmentSource.MODEL] * 2 + [
        AssignmentSource.DEADLINE_FALLBACK
    ] * 3
    assert sum(result.counts().values()) == len(threads)


def test_deadline_passing_during_pause_stops_next_batch(with_custom, threads):
    categorizer = _model_categorizer("Travel")
    orchestrator = ClassificationOrchestrator(
        settings=_settings(model_batch_size=1, inter_batch_delay_seconds=0.5),
        categorizer=categorizer,
    )
    now = [0.0]

    def _sleep(seconds):
        now[0] += seconds

    with patch(
        "src.inbox_categorizer.orchestrator.time.monotonic", side_effect=lambda: now[0]
    ), patch("src.inbox_categorizer.orchestrator.time.sleep", side_effect=_sleep):
        result = orchestrator.classify(threads[:3], with_custom, timeout=0.2)

    assert categorizer.classify_batch.call_count == 1
    assert [a.source for a in result.assignments] == [AssignmentSource.MODEL] + [
        AssignmentSource.DEADLINE_FALLBACK
    ] * 2


def test_batch_fallback_is_tolerated_by_default(with_custom, threads):
    categorizer = _model_categorizer("Can Wait", AssignmentSource.BATCH_FALLBACK)
    orchestrator = ClassificationOrchestrator(settings=_settings(), categorizer=categorizer)

    result = orchestrator.classify(threads, with_custom)
    assert len(result.assignments) == len(threads)


def test_strict_mode_raises_on_batch_fallback(with_custom, threads):
    categorizer = _model_categorizer("Can Wait", AssignmentSource.BATCH_FALLBACK)
    orchestrator = ClassificationOrchestrator(settings=_settings(), categorizer=categorizer)

    with pytest.raises(UpstreamUnavailableError):
        orchestrator.classify(threads, with_custom, require_model=True)


def test_without_api_key_uses_rules(with_custom, threads):
    orchestrator = ClassificationOrchestrator(settings=_settings())

    assert orchestrator.categorizer is None
    result = orchestrator.classify(threads, with_custom)
    assert {a.source for a in result.assignments} == {AssignmentSource.RULES}

    with pytest.raises(UpstreamUnavailableError):
        orchestrator.classify(threads, with_custom, require_model=True)


def test_api_key_builds_categorizer():
    with patch("src.inbox_categorizer.categorizer.Groq") as mock_groq:
        orchestrator = ClassificationOrchestrator(settings=_settings(groq_api_key="key"))

    assert orchestrator.categorizer is not None
    mock_groq.assert_called_once()


def test_empty_inputs(builtins):
    orchestrator = ClassificationOrchestrator(settings=_settings())

    with pytest.raises(ValueError):
        orchestrator.classify([Thread(id="t1")], [])

    result = orchestrator.classify([], builtins)
    assert result.counts() == {c.name: 0 for c in builtins}
