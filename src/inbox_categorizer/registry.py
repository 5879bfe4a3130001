"""Per-user category registry.

Objective:
    Own one user's category definitions: the five built-ins plus any custom
    categories, with creation, protected deletion and redistribution.

Responsibilities:
    - Materialize the built-in categories the first time a user is seen.
    - Enforce case-insensitive name uniqueness and derive stable ids.
    - Refuse to delete built-in categories.
    - Persist every change through a :class:`CategoryStore`, reloading and
      re-applying the change when another writer got there first.
    - Remember the last classified thread set so a deletion can redistribute
      it without the caller resending threads.

High-level call tree:
    - :class:`CategoryRegistry`
        - :attr:`CategoryRegistry.categories` -> :meth:`_load`
        - :meth:`CategoryRegistry.create_category` -> :meth:`_commit`
        - :meth:`CategoryRegistry.delete_category` -> :meth:`_commit`
            - :func:`src.inbox_categorizer.redistribution.redistribute`
        - :meth:`CategoryRegistry.classify`
            - :meth:`ClassificationOrchestrator.classify`

Operational notes:
    - A registry instance belongs to one user session and is not thread-safe;
      create one per request or guard it externally.
"""

import logging
import time
from typing import Callable, Optional, Sequence

from .config import DEFAULT_CUSTOM_COLOR, builtin_category_specs
from .errors import (
    CategoryConflictError,
    CategoryStoreError,
    DuplicateNameError,
    InvalidInputError,
    NotFoundError,
    ProtectedCategoryError,
)
from .models import Category, ClassificationResult, DeletionResult, Thread, derive_category_id
from .orchestrator import ClassificationOrchestrator
from .redistribution import redistribute
from .store import CategoryStore, InMemoryCategoryStore

logger = logging.getLogger(__name__)


class CategoryRegistry:
    """
    Category definitions for a single user.

    Attributes:
        user_id: Owner of the categories.
        store: Persistence backend.
        orchestrator: Orchestrator used by :meth:`classify` and redistribution.
    """

    def __init__(
        self,
        user_id: str,
        store: Optional[CategoryStore] = None,
        orchestrator: Optional[ClassificationOrchestrator] = None,
    ) -> None:
        """
        Initialize the registry.

        Args:
            user_id: Owner of the categories.
            store: Persistence backend (in-memory if None).
            orchestrator: Classification orchestrator (built from the
                environment if None).
        """
        if not user_id:
            raise InvalidInputError("user_id is required")

        self.user_id = user_id
        self.store = store or InMemoryCategoryStore()
        self.orchestrator = orchestrator or ClassificationOrchestrator()
        self._categories: Optional[list[Category]] = None
        self._last_result: Optional[ClassificationResult] = None
        self.max_conflict_retries = 5

    def _load(self) -> list[Category]:
        """Load categories, materializing the built-ins on first access."""
        if self._categories is None:
            stored = self.store.load(self.user_id)
            if not stored:
                builtins = [Category.model_validate(spec) for spec in builtin_category_specs()]
                try:
                    self.store.save(self.user_id, builtins)
                    stored = builtins
                    logger.info(
                        "Initialized %s built-in categories for user %s",
                        len(stored),
                        self.user_id,
                    )
                except CategoryConflictError:
                    # Another writer initialized this user first
                    stored = self.store.load(self.user_id) or builtins
            self._categories = list(stored)
        return self._categories

    def _commit(
        self, mutate: Callable[[list[Category]], list[Category]]
    ) -> list[Category]:
        """
        Apply ``mutate`` to the current categories and persist the result.

        When the store reports a concurrent change the categories are
        reloaded and ``mutate`` runs again on the fresh list, so validation
        inside ``mutate`` always sees the latest state.

        Args:
            mutate: Returns the new category list for a given current list.

        Returns:
            list[Category]: The persisted list.

        Raises:
            CategoryStoreError: If conflicts persist after every attempt.
        """
        for attempt in range(self.max_conflict_retries):
            updated = mutate(list(self._load()))
            try:
                self.store.save(self.user_id, updated)
            except CategoryConflictError:
                logger.warning(
                    "Categories changed concurrently; reloading (user_id=%s, attempt=%s)",
                    self.user_id,
                    attempt + 1,
                )
                self._categories = None
                time.sleep(0.2 * (attempt + 1))
                continue
            self._categories = updated
            return updated

        raise CategoryStoreError(
            f"Failed to save categories for user '{self.user_id}' due to repeated conflicts"
        )

    @property
    def categories(self) -> list[Category]:
        """Current categories in declaration order (a copy)."""
        return list(self._load())

    @property
    def custom_categories(self) -> list[Category]:
        return [c for c in self._load() if c.is_custom]

    @property
    def last_result(self) -> Optional[ClassificationResult]:
        """Partition produced by the most recent :meth:`classify` or deletion."""
        return self._last_result

    def get_category(self, category_id: str) -> Category:
        """
        Look up a category by id.

        Raises:
            NotFoundError: If no category has that id.
        """
        for category in self._load():
            if category.id == category_id:
                return category
        raise NotFoundError(category_id)

    def _unique_id(self, name: str, existing: Sequence[Category]) -> str:
        """Derive an id from ``name``, suffixing ``-2``, ``-3``... on collision."""
        base = derive_category_id(name)
        taken = {c.id for c in existing}
        candidate = base
        suffix = 2
        while candidate in taken:
            candidate = f"{base}-{suffix}"
            suffix += 1
        return candidate

    def create_category(
        self, name: str, description: str = "", color: Optional[str] = None
    ) -> Category:
        """
        Create and persist a custom category.

        Args:
            name: Display name (unique, case-insensitive).
            description: Free text used as classifier signal.
            color: Optional hex color.

        Returns:
            Category: The new custom category.

        Raises:
            InvalidInputError: If the name is blank.
            DuplicateNameError: If the name collides with an existing category.
        """
        name = (name or "").strip()
        if not name:
            raise InvalidInputError("Category name must not be empty")

        lowered = name.lower()

        def _append(current: list[Category]) -> list[Category]:
            if any(c.name.lower() == lowered for c in current):
                raise DuplicateNameError(name)
            category = Category(
                id=self._unique_id(name, current),
                name=name,
                description=(description or "").strip(),
                is_custom=True,
                color=color or DEFAULT_CUSTOM_COLOR,
            )
            return current + [category]

        category = self._commit(_append)[-1]

        logger.info(f"Created custom category '{category.name}' (id={category.id})")
        return category

    def delete_category(
        self,
        category_id: str,
        threads: Optional[Sequence[Thread]] = None,
        timeout: Optional[float] = None,
    ) -> DeletionResult:
        """
        Delete a custom category and redistribute its threads.

        Args:
            category_id: Id of the custom category to delete.
            threads: Previously classified threads (each carrying its
                :attr:`Thread.category`). Defaults to the threads of the last
                partition produced by this registry.
            timeout: Optional deadline in seconds for re-classification.

        Returns:
            DeletionResult: New partition and the number of reassigned threads.

        Raises:
            NotFoundError: If the category does not exist.
            ProtectedCategoryError: If the category is built-in.
        """
        target = self.get_category(category_id)
        if not target.is_custom:
            raise ProtectedCategoryError(category_id)

        if threads is None:
            threads = self._last_result.threads if self._last_result else []

        def _remove(current: list[Category]) -> list[Category]:
            if not any(c.id == category_id for c in current):
                raise NotFoundError(category_id)
            return [c for c in current if c.id != category_id]

        remaining = self._commit(_remove)
        logger.info(f"Deleted custom category '{target.name}' (id={target.id})")

        result = redistribute(
            threads, target, remaining, self.orchestrator, timeout=timeout
        )
        self._last_result = result.partition
        return result

    def classify(
        self,
        threads: Sequence[Thread],
        timeout: Optional[float] = None,
        instructions: Optional[str] = None,
    ) -> ClassificationResult:
        """
        Classify threads against this user's categories.

        Args:
            threads: Threads to classify, newest first.
            timeout: Optional deadline in seconds.
            instructions: Optional caller guidance for the model prompt.

        Returns:
            ClassificationResult: Total partition.
        """
        result = self.orchestrator.classify(
            threads, self.categories, timeout=timeout, instructions=instructions
        )
        self._last_result = result
        return result
