"""Pydantic data models used across the application.

Objective:
    Centralize all strongly-typed data structures representing:
    - Category definitions (built-in and custom)
    - Mail threads supplied by the caller
    - Per-thread classification decisions
    - The partition returned by a classification run
    - The outcome of deleting a category

Design notes:
    - Models use Pydantic aliases to match the wire format used by the
      dashboard (e.g. ``isCustom`` -> :attr:`Category.is_custom`,
      ``from`` -> :attr:`Thread.sender`).
    - ``model_config = ConfigDict(populate_by_name=True)`` is used to allow
      constructing models with either alias names or pythonic field names.

High-level structure:
    - :class:`Category`
    - :class:`Thread`
    - :class:`AssignmentSource` / :class:`ThreadAssignment`
    - :class:`ClassificationResult`
    - :class:`DeletionResult`

Call tree usage:
    - :mod:`src.inbox_categorizer.scorer` reads :class:`Thread` and
      :class:`Category`.
    - :class:`src.inbox_categorizer.categorizer.ThreadCategorizer` returns
      :class:`ThreadAssignment` lists.
    - :class:`src.inbox_categorizer.orchestrator.ClassificationOrchestrator`
      returns :class:`ClassificationResult`.
    - :class:`src.inbox_categorizer.registry.CategoryRegistry` returns
      :class:`DeletionResult`.
"""

import re
from enum import Enum
from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .config import DEFAULT_CUSTOM_COLOR


def derive_category_id(name: str) -> str:
    """Derive a category id from its display name.

    Args:
        name: Category display name.

    Returns:
        str: Lowercased name with whitespace runs replaced by hyphens.
    """
    return re.sub(r"\s+", "-", name.strip().lower())


class Category(BaseModel):
    """
    Category definition.

    Attributes:
        id: Stable identifier, derived from the name unless assigned.
        name: Display name, unique per user (case-insensitive).
        description: Free text used for UI and as classifier signal.
        is_custom: False for built-ins, True for user-created categories.
        color: Presentation-only hex color.
    """

    id: str = ""
    name: str
    description: str = ""
    is_custom: bool = Field(default=True, alias="isCustom")
    color: str = DEFAULT_CUSTOM_COLOR

    model_config = ConfigDict(populate_by_name=True)

    def model_post_init(self, __context: object) -> None:
        if not self.id:
            self.id = derive_category_id(self.name)


class Thread(BaseModel):
    """
    Mail thread supplied by the thread source.

    Only the fields below are read; provider-specific fields (labels, raw
    payloads) are ignored.

    Attributes:
        id: Provider-assigned thread id.
        subject: Subject line of the latest message.
        sender: From header of the latest message.
        snippet: Short plain-text excerpt.
        date: Optional date header, passed through untouched.
        category: Assigned category name, absent until classified.
    """

    id: str
    subject: str = ""
    sender: str = Field(default="", alias="from")
    snippet: str = ""
    date: Optional[str] = None
    category: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AssignmentSource(str, Enum):
    """How a thread's category was decided."""

    MODEL = "model"
    RULES = "rules"
    ITEM_FALLBACK = "item_fallback"
    BATCH_FALLBACK = "batch_fallback"
    DEADLINE_FALLBACK = "deadline_fallback"
    DEFAULT = "default"
    PREVIOUS = "previous"


class ThreadAssignment(BaseModel):
    """
    Category decision for a single thread.

    Attributes:
        thread_id: Thread id.
        category: Assigned category name.
        source: Which path produced the decision.
    """

    thread_id: str
    category: str
    source: AssignmentSource = AssignmentSource.RULES


class ClassificationResult(BaseModel):
    """
    Partition of a thread set by category name.

    ``partition`` holds one entry per registry category, in registry order,
    each listing its threads in input order. ``assignments`` holds one entry
    per input thread, in input order.
    """

    partition: dict[str, list[Thread]] = Field(default_factory=dict)
    assignments: list[ThreadAssignment] = Field(default_factory=list)

    @classmethod
    def from_assignments(
        cls,
        threads: Sequence[Thread],
        categories: Sequence[Category],
        assignments: Sequence[ThreadAssignment],
    ) -> "ClassificationResult":
        """Build a partition and check that it is total and non-overlapping.

        Args:
            threads: Input threads, in input order.
            categories: Current registry categories.
            assignments: Exactly one assignment per input thread, same order.

        Returns:
            ClassificationResult: The validated partition.

        Raises:
            ValueError: If assignments do not line up with threads or name a
                category absent from ``categories``.
        """
        if len(assignments) != len(threads):
            raise ValueError(
                f"Expected {len(threads)} assignments, got {len(assignments)}"
            )

        partition: dict[str, list[Thread]] = {c.name: [] for c in categories}
        for thread, assignment in zip(threads, assignments):
            if assignment.thread_id != thread.id:
                raise ValueError(
                    f"Assignment for '{assignment.thread_id}' does not match thread '{thread.id}'"
                )
            if assignment.category not in partition:
                raise ValueError(
                    f"Thread '{thread.id}' assigned to unknown category '{assignment.category}'"
                )
            partition[assignment.category].append(
                thread.model_copy(update={"category": assignment.category})
            )

        return cls(partition=partition, assignments=list(assignments))

    @property
    def threads(self) -> list[Thread]:
        """All categorized threads, in input order.

        Returns:
            list[Thread]: Threads with :attr:`Thread.category` populated.
        """
        by_id: dict[str, list[Thread]] = {}
        for items in self.partition.values():
            for thread in items:
                by_id.setdefault(thread.id, []).append(thread)

        ordered = []
        for assignment in self.assignments:
            ordered.append(by_id[assignment.thread_id].pop(0))
        return ordered

    def category_of(self, thread_id: str) -> Optional[str]:
        """Return the category assigned to ``thread_id`` (first match)."""
        for assignment in self.assignments:
            if assignment.thread_id == thread_id:
                return assignment.category
        return None

    def counts(self) -> dict[str, int]:
        return {name: len(items) for name, items in self.partition.items()}


class DeletionResult(BaseModel):
    """
    Outcome of deleting a custom category.

    Attributes:
        deleted: The category that was removed.
        partition: New partition over the previously-classified threads.
        reassigned_count: Threads that were assigned to the deleted category.
        degraded: True when the default-category fallback was used.
    """

    deleted: Category
    partition: ClassificationResult
    reassigned_count: int = 0
    degraded: bool = False
