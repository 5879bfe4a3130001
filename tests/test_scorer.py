"""
Tests for the rule-based scorer.
"""

import pytest

from src.inbox_categorizer.config import builtin_category_specs
from src.inbox_categorizer.models import AssignmentSource, Category, Thread
from src.inbox_categorizer.scorer import (
    RuleBasedScorer,
    ScoringWeights,
    default_category,
    description_keywords,
    description_phrases,
    name_words,
)


@pytest.fixture
def builtins():
    """The five built-in categories."""
    return [Category.model_validate(spec) for spec in builtin_category_specs()]


@pytest.fixture
def scorer():
    return RuleBasedScorer()


def _scores(scorer, thread, categories):
    return {s.category.name: s.score for s in scorer.score(thread, categories)}


class TestHelpers:
    """Tests for text helpers."""

    def test_description_keywords_skip_short_words(self):
        """Words shorter than four characters are ignored."""
        assert description_keywords("Flights, hotels and car rentals") == [
            "flights",
            "hotels",
            "rentals",
        ]

    def test_description_phrases_split_on_commas_and_periods(self):
        assert description_phrases("Flights, hotels. Car") == ["flights", "hotels"]

    def test_name_words_split_on_hyphen(self):
        assert name_words("Auto-Archive") == ["auto", "archive"]

    def test_name_words_skip_short_words(self):
        assert name_words("To Do") == []


class TestDefaultCategory:
    """Tests for default_category."""

    def test_prefers_wait(self, builtins):
        assert default_category(builtins).name == "Can Wait"

    def test_low_priority_description(self):
        categories = [
            Category(name="Alpha", description="stuff"),
            Category(name="Later", description="Low priority items"),
        ]
        assert default_category(categories).name == "Later"

    def test_first_builtin_then_first(self):
        custom = Category(name="Alpha")
        builtin = Category(name="Beta", is_custom=False)
        assert default_category([custom, builtin]).name == "Beta"
        assert default_category([custom]).name == "Alpha"

    def test_empty_raises(self):
        with pytest.raises(ValueError):
            default_category([])


class TestRuleBasedScorer:
    """Tests for scoring and selection."""

    def test_builtin_newsletter(self, scorer, builtins):
        """A newsletter wins through name, domain and whole-word bonuses."""
        thread = Thread(
            id="t1",
            subject="Weekly newsletter: this week in Python",
            snippet="Unsubscribe at any time",
            sender="news@python.org",
        )

        scores = _scores(scorer, thread, builtins)
        assert scores["Newsletter"] == 10 + 8 + 50
        assert scorer.classify(thread, builtins).name == "Newsletter"

    def test_exact_word_match_wins(self, scorer, builtins):
        """A custom name appearing as a whole word wins outright."""
        travel = Category(name="Travel", description="Flights, hotels and itineraries")
        categories = builtins + [travel]
        thread = Thread(
            id="t1",
            subject="Travel itinerary attached",
            snippet="Your booking details",
            sender="agent@trips.example",
        )

        scores = _scores(scorer, thread, categories)
        # substring + custom name word + participation + whole word
        assert scores["Travel"] == 10 + 8 + 3 + 50
        assert scorer.classify(thread, categories).name == "Travel"

    def test_custom_preferred_within_ratio(self, scorer, builtins):
        """A custom category beats a higher built-in within 40% of its score."""
        receipts = Category(name="Receipts", description="Order confirmations and invoices")
        categories = builtins + [receipts]
        thread = Thread(
            id="t1",
            subject="Your invoices for March",
            snippet="See updates or unsubscribe",
            sender="billing@shop.example",
        )

        scores = _scores(scorer, thread, categories)
        assert scores["Newsletter"] == 2 + 8
        assert scores["Receipts"] == 2 + 3 + 3
        assert scorer.classify(thread, categories).name == "Receipts"

    def test_custom_not_preferred_below_ratio(self, builtins):
        """A weak custom score loses when it is below the preference ratio."""
        scorer = RuleBasedScorer(ScoringWeights(custom_preference_ratio=0.9))
        receipts = Category(name="Receipts", description="Order confirmations and invoices")
        thread = Thread(
            id="t1",
            subject="Your invoices for March",
            snippet="See updates or unsubscribe",
            sender="billing@shop.example",
        )

        assert scorer.classify(thread, builtins + [receipts]).name == "Newsletter"

    def test_system_sender_domain_bonus(self, scorer, builtins):
        thread = Thread(
            id="t1",
            subject="Your password was changed",
            sender="Security <alerts@bank.example>",
        )

        scores = _scores(scorer, thread, builtins)
        assert scores["Auto-Archive"] == 8
        assert scorer.classify(thread, builtins).name == "Auto-Archive"

    def test_no_signal_goes_to_default(self, scorer, builtins):
        thread = Thread(id="t1", subject="hello", snippet="lunch?", sender="bob@example.com")

        assert set(_scores(scorer, thread, builtins).values()) == {0}
        assert scorer.classify(thread, builtins).name == "Can Wait"

    def test_ties_go_to_first_declared(self, scorer):
        categories = [
            Category(name="Alpha", description="project"),
            Category(name="Beta", description="project"),
        ]
        thread = Thread(id="t1", subject="project update")

        scores = _scores(scorer, thread, categories)
        assert scores["Alpha"] == scores["Beta"]
        assert scorer.classify(thread, categories).name == "Alpha"

    def test_deterministic(self, scorer, builtins):
        categories = builtins + [Category(name="Travel", description="Flights")]
        thread = Thread(id="t1", subject="Flights to Lisbon", snippet="Action required")

        first = scorer.classify(thread, categories)
        second = scorer.classify(thread, categories)
        assert first == second

    def test_assign_wraps_decision(self, scorer, builtins):
        thread = Thread(id="t9", subject="hello")

        assignment = scorer.assign(thread, builtins, AssignmentSource.ITEM_FALLBACK)
        assert assignment.thread_id == "t9"
        assert assignment.category == "Can Wait"
        assert assignment.source == AssignmentSource.ITEM_FALLBACK

    def test_empty_categories_raise(self, scorer):
        with pytest.raises(ValueError):
            scorer.classify(Thread(id="t1"), [])
