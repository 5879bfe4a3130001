"""FastAPI JSON API for the inbox categorizer.

Objective:
    Expose the classification engine to the dashboard. This module only
    handles HTTP request parsing, error mapping and response shaping; all
    category and classification logic lives in
    :class:`src.inbox_categorizer.registry.CategoryRegistry`.

High-level call tree:
    - :func:`create_app`:
        - defines routes:
            - ``GET /health`` -> :func:`health`
            - ``GET /api/categories`` -> :func:`list_categories`
            - ``POST /api/categories`` -> :func:`create_category`
            - ``DELETE /api/categories/{category_id}`` -> :func:`delete_category`
            - ``POST /api/classify`` -> :func:`classify`
        - maps registry errors to HTTP status codes
    - :func:`get_registry`:
        - returns a per-request :class:`CategoryRegistry` for ``user_id``.

Data flow:
    - HTTP request -> registry operation -> JSON response.

Operational notes:
    - A fresh registry is built for every request, so no category state is
      shared between concurrent requests; persistence goes through the
      configured category store.
    - Served with uvicorn:
      ``python -m uvicorn src.inbox_categorizer.webapp:app``.
    - For tests, :func:`get_registry` is overridden via
      ``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import get_settings
from .errors import (
    CategoryStoreError,
    DuplicateNameError,
    InvalidInputError,
    NotFoundError,
    ProtectedCategoryError,
)
from .models import AssignmentSource, ClassificationResult, Thread
from .orchestrator import ClassificationOrchestrator
from .registry import CategoryRegistry
from .store import get_category_store


class ClassifyRequest(BaseModel):
    """Body of ``POST /api/classify``."""

    threads: list[Thread] = Field(default_factory=list)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)
    instructions: Optional[str] = Field(default=None, max_length=4000)


class CreateCategoryRequest(BaseModel):
    """Body of ``POST /api/categories``."""

    name: str = Field(..., min_length=1)
    description: str = ""
    color: Optional[str] = None


class DeleteCategoryRequest(BaseModel):
    """Optional body of ``DELETE /api/categories/{category_id}``."""

    threads: Optional[list[Thread]] = None


def get_registry(user_id: str = Query(..., min_length=1)) -> CategoryRegistry:
    """Build a :class:`CategoryRegistry` for the requesting user.

    This function exists primarily to support FastAPI dependency injection and
    testing.

    Args:
        user_id: Identity of the user owning the categories.

    Returns:
        CategoryRegistry: A new registry instance.
    """
    settings = get_settings()
    return CategoryRegistry(
        user_id,
        store=get_category_store(settings),
        orchestrator=ClassificationOrchestrator(settings=settings),
    )


def serialize_result(result: ClassificationResult) -> dict[str, Any]:
    """Shape a partition for JSON responses."""
    payload = result.model_dump(mode="json", by_alias=True)
    model_count = sum(1 for a in result.assignments if a.source == AssignmentSource.MODEL)
    payload["summary"] = {
        "total": len(result.assignments),
        "by_model": model_count,
        "by_rules": len(result.assignments) - model_count,
        "counts": result.counts(),
    }
    return payload


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Routes:
        - ``GET /health``: Basic liveness check.
        - ``GET /api/categories``: List the user's categories.
        - ``POST /api/categories``: Create a custom category.
        - ``DELETE /api/categories/{category_id}``: Delete a custom category
          and redistribute its threads.
        - ``POST /api/classify``: Partition threads by category.

    Returns:
        FastAPI: FastAPI app.
    """

    app = FastAPI(title="Inbox Categorizer")

    def _error(status_code: int, code: str, exc: Exception) -> JSONResponse:
        return JSONResponse({"error": code, "message": str(exc)}, status_code=status_code)

    @app.exception_handler(DuplicateNameError)
    def duplicate_name(request: Request, exc: DuplicateNameError) -> JSONResponse:
        return _error(409, "duplicate_name", exc)

    @app.exception_handler(NotFoundError)
    def not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(404, "not_found", exc)

    @app.exception_handler(ProtectedCategoryError)
    def protected(request: Request, exc: ProtectedCategoryError) -> JSONResponse:
        return _error(403, "protected_category", exc)

    @app.exception_handler(CategoryStoreError)
    def store_failure(request: Request, exc: CategoryStoreError) -> JSONResponse:
        return _error(503, "category_store_unavailable", exc)

    @app.exception_handler(InvalidInputError)
    def bad_request(request: Request, exc: InvalidInputError) -> JSONResponse:
        return _error(400, "bad_request", exc)

    @app.get("/health")
    def health() -> dict[str, str]:
        """Health check endpoint.

        This is intentionally simple and should not perform external calls.

        Returns:
            dict[str, str]: Health payload.
        """

        return {"status": "ok"}

    @app.get("/api/categories")
    def list_categories(
        registry: CategoryRegistry = Depends(get_registry),
    ) -> dict[str, Any]:
        return {
            "categories": [c.model_dump(by_alias=True) for c in registry.categories],
        }

    @app.post("/api/categories", status_code=201)
    def create_category(
        payload: CreateCategoryRequest,
        registry: CategoryRegistry = Depends(get_registry),
    ) -> dict[str, Any]:
        """Create a custom category.

        Returns:
            dict[str, Any]: The created category (wire field names).
        """

        category = registry.create_category(
            payload.name, payload.description, color=payload.color
        )
        return category.model_dump(by_alias=True)

    @app.delete("/api/categories/{category_id}")
    def delete_category(
        category_id: str,
        payload: Optional[DeleteCategoryRequest] = Body(default=None),
        registry: CategoryRegistry = Depends(get_registry),
    ) -> dict[str, Any]:
        """Delete a custom category and redistribute its threads.

        The request body may carry the previously classified threads (each
        with its ``category``); without it there is nothing to redistribute.

        Returns:
            dict[str, Any]: Deleted category, new partition and reassigned count.
        """

        threads = payload.threads if payload and payload.threads is not None else []
        result = registry.delete_category(category_id, threads=threads)
        return {
            "deleted": result.deleted.model_dump(by_alias=True),
            "partition": serialize_result(result.partition),
            "reassigned_count": result.reassigned_count,
            "degraded": result.degraded,
        }

    @app.post("/api/classify")
    def classify(
        payload: ClassifyRequest,
        registry: CategoryRegistry = Depends(get_registry),
    ) -> dict[str, Any]:
        """Partition the posted threads by category.

        Returns:
            dict[str, Any]: Partition, per-thread assignments and a summary.
        """

        result = registry.classify(
            payload.threads,
            timeout=payload.timeout_seconds,
            instructions=payload.instructions,
        )
        return serialize_result(result)

    return app


app = create_app()
