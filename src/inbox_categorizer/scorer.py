"""Deterministic keyword scorer.

Objective:
    Pick a category for a :class:`src.inbox_categorizer.models.Thread` without
    any I/O. The scorer is the baseline classifier when only built-in
    categories exist, the per-item and per-batch fallback of the model path,
    and the offline fallback when Groq is not configured.

Scoring (per category, over the lowercased ``subject + snippet + sender``):
    1. +10 when the category name appears as a substring.
    2. +2 per description keyword (words longer than 3 characters) present.
    3. +8 per semantic group (urgency, newsletter, system notification) whose
       trigger terms are present, for categories whose name belongs to the
       group.
    4. Custom categories only: +8 per name word present, +3 extra per
       keyword match, +10 per description clause found verbatim, +3 flat.
    5. +50 when any name word (longer than 2 characters) matches a whole word.

Selection:
    - Any score at or above the exact-match threshold wins outright.
    - Otherwise the best custom category wins if it reaches 40% of the best
      overall score.
    - Otherwise the best overall score wins; ties go to the first-declared
      category.
    - A winning score of 0 selects :func:`default_category`.

High-level call tree:
    - :class:`RuleBasedScorer`
        - :meth:`RuleBasedScorer.classify`
            - :meth:`RuleBasedScorer.score`
                - :func:`thread_text`
                - :meth:`RuleBasedScorer._score_category`
            - :meth:`RuleBasedScorer.select`
                - :func:`default_category`
        - :meth:`RuleBasedScorer.assign`

Operational notes:
    - All point values live in :class:`ScoringWeights` so they can be tuned
      without touching the algorithm.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict

from .models import AssignmentSource, Category, Thread, ThreadAssignment
from .sanitizer import is_system_sender

logger = logging.getLogger(__name__)


class ScoringWeights(BaseModel):
    """Point values and thresholds used by :class:`RuleBasedScorer`.

    The defaults were chosen empirically; treat them as a starting policy.
    """

    model_config = ConfigDict(frozen=True)

    name_substring: int = 10
    keyword: int = 2
    domain_bonus: int = 8
    custom_name_word: int = 8
    custom_keyword_extra: int = 3
    custom_phrase: int = 10
    custom_participation: int = 3
    exact_word: int = 50
    exact_threshold: int = 50
    custom_preference_ratio: float = 0.4
    min_keyword_length: int = 4
    min_name_word_length: int = 3


DEFAULT_WEIGHTS = ScoringWeights()


@dataclass(frozen=True)
class DomainGroup:
    """A built-in semantic group awarding the domain bonus.

    Attributes:
        label: Group name used in debug logs.
        name_pattern: Matches category names belonging to the group.
        terms: Trigger terms searched in the thread text.
        system_sender: Whether an automated sender also triggers the group.
    """

    label: str
    name_pattern: "re.Pattern[str]"
    terms: tuple[str, ...]
    system_sender: bool = False


DOMAIN_GROUPS: tuple[DomainGroup, ...] = (
    DomainGroup(
        label="urgency",
        name_pattern=re.compile(r"important|action|urgent"),
        terms=(
            "urgent",
            "asap",
            "as soon as possible",
            "immediately",
            "important",
            "action required",
            "action needed",
            "deadline",
            "time-sensitive",
            "time sensitive",
            "critical",
            "respond by",
            "please reply",
            "please respond",
        ),
    ),
    DomainGroup(
        label="newsletter",
        name_pattern=re.compile(r"newsletter|updates|subscription"),
        terms=(
            "newsletter",
            "unsubscribe",
            "subscription",
            "subscribe",
            "digest",
            "weekly update",
            "monthly update",
            "this week in",
            "view in browser",
            "edition",
        ),
    ),
    DomainGroup(
        label="system",
        name_pattern=re.compile(r"auto|archive|notification"),
        terms=(
            "no-reply",
            "noreply",
            "donotreply",
            "do not reply",
            "notification",
            "alert",
            "automated message",
        ),
        system_sender=True,
    ),
)

_WORD_RE = re.compile(r"\s+")
_NAME_SPLIT_RE = re.compile(r"[\s\-_/]+")
_PUNCTUATION_RE = re.compile(r"[^\w]")
_CLAUSE_SPLIT_RE = re.compile(r"[,.]")


@dataclass(frozen=True)
class CategoryScore:
    """Score of one category for one thread."""

    category: Category
    score: int


def thread_text(thread: Thread) -> str:
    """Lowercased concatenation of subject, snippet and sender."""
    return f"{thread.subject} {thread.snippet} {thread.sender}".lower()


def description_keywords(description: str, min_length: int = 4) -> list[str]:
    """Extract scoring keywords from a category description.

    Args:
        description: Category description.
        min_length: Minimum keyword length after stripping punctuation.

    Returns:
        list[str]: Lowercased keywords, de-duplicated, in order.
    """
    keywords: list[str] = []
    for raw in _WORD_RE.split(description.lower()):
        word = _PUNCTUATION_RE.sub("", raw)
        if len(word) >= min_length and word not in keywords:
            keywords.append(word)
    return keywords


def description_phrases(description: str, min_length: int = 4) -> list[str]:
    """Split a description into comma/period-delimited clauses.

    Args:
        description: Category description.
        min_length: Minimum clause length after trimming.

    Returns:
        list[str]: Lowercased clauses, de-duplicated, in order.
    """
    phrases: list[str] = []
    for raw in _CLAUSE_SPLIT_RE.split(description.lower()):
        phrase = " ".join(raw.split())
        if len(phrase) >= min_length and phrase not in phrases:
            phrases.append(phrase)
    return phrases


def name_words(name: str, min_length: int = 3) -> list[str]:
    """Split a category name into lowercased words.

    Names are split on whitespace, hyphens, underscores and slashes, so
    ``Auto-Archive`` yields ``auto`` and ``archive``.
    """
    words: list[str] = []
    for raw in _NAME_SPLIT_RE.split(name.lower()):
        word = _PUNCTUATION_RE.sub("", raw)
        if len(word) >= min_length and word not in words:
            words.append(word)
    return words


def default_category(categories: Sequence[Category]) -> Category:
    """Pick the category used when no signal matched at all.

    Preference order: first name containing "wait", first description
    mentioning "low priority", first built-in, first category.

    Args:
        categories: Categories in declaration order.

    Returns:
        Category: The default category.

    Raises:
        ValueError: If ``categories`` is empty.
    """
    if not categories:
        raise ValueError("At least one category is required")

    for category in categories:
        if "wait" in category.name.lower():
            return category
    for category in categories:
        if "low priority" in category.description.lower():
            return category
    for category in categories:
        if not category.is_custom:
            return category
    return categories[0]


def _first_max(scores: Sequence[CategoryScore]) -> CategoryScore:
    # max() keeps the first maximal element, which is the declaration-order tie-break.
    return max(scores, key=lambda s: s.score)


class RuleBasedScorer:
    """
    Pure keyword scorer.

    Instances hold only immutable weights, so a single scorer can be shared
    freely between runs and users.

    Attributes:
        weights: Point values and thresholds.
    """

    def __init__(self, weights: Optional[ScoringWeights] = None) -> None:
        self.weights = weights or DEFAULT_WEIGHTS

    def _domain_bonus(self, category: Category, text: str, sender: str) -> int:
        """Domain bonus for the semantic groups ``category`` belongs to."""
        name = category.name.lower()
        bonus = 0
        for group in DOMAIN_GROUPS:
            if not group.name_pattern.search(name):
                continue
            triggered = any(term in text for term in group.terms)
            if not triggered and group.system_sender:
                triggered = is_system_sender(sender)
            if triggered:
                bonus += self.weights.domain_bonus
        return bonus

    def _score_category(self, category: Category, text: str, sender: str) -> int:
        """Score a single category against precomputed thread text."""
        w = self.weights
        name = category.name.lower().strip()
        score = 0

        if name and name in text:
            score += w.name_substring

        keywords = description_keywords(category.description, w.min_keyword_length)
        keyword_hits = sum(1 for kw in keywords if kw in text)
        score += keyword_hits * w.keyword

        score += self._domain_bonus(category, text, sender)

        words = name_words(category.name, w.min_name_word_length)

        if category.is_custom:
            score += sum(w.custom_name_word for word in words if word in text)
            score += keyword_hits * w.custom_keyword_extra
            phrases = description_phrases(category.description, w.min_keyword_length)
            score += sum(w.custom_phrase for phrase in phrases if phrase in text)
            score += w.custom_participation

        if any(re.search(rf"\b{re.escape(word)}\b", text) for word in words):
            score += w.exact_word

        return score

    def score(
        self, thread: Thread, categories: Sequence[Category]
    ) -> list[CategoryScore]:
        """Score every category for ``thread``.

        Args:
            thread: Thread to score.
            categories: Categories in declaration order.

        Returns:
            list[CategoryScore]: One score per category, same order.
        """
        text = thread_text(thread)
        return [
            CategoryScore(category, self._score_category(category, text, thread.sender))
            for category in categories
        ]

    def select(
        self, scores: Sequence[CategoryScore], categories: Sequence[Category]
    ) -> Category:
        """Apply the selection policy to a score table.

        Args:
            scores: Output of :meth:`score`.
            categories: The categories that were scored.

        Returns:
            Category: Winning category.
        """
        if not scores:
            raise ValueError("At least one category is required")

        exact = [s for s in scores if s.score >= self.weights.exact_threshold]
        if exact:
            return _first_max(exact).category

        best = _first_max(scores)
        custom_scores = [s for s in scores if s.category.is_custom]
        if custom_scores:
            best_custom = _first_max(custom_scores)
            threshold = self.weights.custom_preference_ratio * best.score
            if best_custom.score > 0 and best_custom.score >= threshold:
                return best_custom.category

        if best.score == 0:
            return default_category(categories)
        return best.category

    def classify(self, thread: Thread, categories: Sequence[Category]) -> Category:
        """Pick the category for ``thread``.

        Args:
            thread: Thread to classify.
            categories: Categories in declaration order (non-empty).

        Returns:
            Category: Winning category.

        Raises:
            ValueError: If ``categories`` is empty.
        """
        if not categories:
            raise ValueError("At least one category is required")

        scores = self.score(thread, categories)
        winner = self.select(scores, categories)
        logger.debug(
            "Scored thread %s: %s -> %s",
            thread.id,
            {s.category.name: s.score for s in scores},
            winner.name,
        )
        return winner

    def assign(
        self,
        thread: Thread,
        categories: Sequence[Category],
        source: AssignmentSource = AssignmentSource.RULES,
    ) -> ThreadAssignment:
        """Classify ``thread`` and wrap the decision as an assignment."""
        category = self.classify(thread, categories)
        return ThreadAssignment(thread_id=thread.id, category=category.name, source=source)
