"""Exception types raised by the classification engine.

Registry-level errors (:class:`DuplicateNameError`, :class:`NotFoundError`,
:class:`ProtectedCategoryError`, :class:`InvalidInputError`) are terminal and
reported to the caller.
Classifier-level errors (:class:`RateLimitError`,
:class:`ModelResponseParseError`) are recovered inside a batch and never
escape :meth:`ClassificationOrchestrator.classify`.
"""

from typing import Optional


class CategorizerError(Exception):
    """Base exception for all inbox categorizer errors."""

    pass


class DuplicateNameError(CategorizerError):
    """Raised when a category name collides (case-insensitively) with an existing one."""

    def __init__(self, name: str):
        super().__init__(f"A category named '{name}' already exists")
        self.name = name


class NotFoundError(CategorizerError):
    """Raised when a category id is not present in the registry."""

    def __init__(self, category_id: str):
        super().__init__(f"Category not found: {category_id}")
        self.category_id = category_id


class ProtectedCategoryError(CategorizerError):
    """Raised when attempting to delete a built-in category."""

    def __init__(self, category_id: str):
        super().__init__(f"Built-in category '{category_id}' cannot be deleted")
        self.category_id = category_id


class InvalidInputError(CategorizerError, ValueError):
    """Raised when caller-supplied input is invalid (for example a blank name).

    Subclasses :class:`ValueError` so plain ``except ValueError`` callers keep
    working; the HTTP API maps only this type to 400.
    """

    pass


class RateLimitError(CategorizerError):
    """Raised when an upstream API answers with a rate-limit (429) response.

    The model classifier recovers from this with a single retry after a
    cool-down; it is never surfaced from a classification run.
    """

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class ModelResponseParseError(CategorizerError):
    """Raised when a model reply contains no usable assignments."""

    pass


class UpstreamUnavailableError(CategorizerError):
    """Raised when the model path is required but could not be used.

    Only surfaces from strict orchestrator runs (``require_model=True``),
    which redistribution uses to decide on its default-category fallback.
    """

    pass


class CategoryStoreError(CategorizerError):
    """Raised when category definitions cannot be loaded or persisted."""

    pass


class CategoryConflictError(CategoryStoreError):
    """Raised when a save loses an optimistic-concurrency race.

    The stored document changed since it was loaded. The caller must reload
    and re-apply its change; :class:`CategoryRegistry` does this itself.
    """

    def __init__(self, user_id: str):
        super().__init__(f"Categories for user '{user_id}' were modified concurrently")
        self.user_id = user_id
