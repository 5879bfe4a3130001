"""Persistence for per-user category definitions.

Objective:
    Keep each user's categories across process restarts. The registry owns
    the semantics (built-ins, uniqueness, protection); stores only load and
    save a user's full category list as one JSON document.

Backends:
    - :class:`InMemoryCategoryStore`: process-local, used by tests and the
      ``memory`` backend.
    - :class:`FileCategoryStore`: one JSON file per user, replaced atomically.
    - :class:`BlobCategoryStore`: one blob per user in Azure Blob Storage,
      written with ETag-based optimistic concurrency.

High-level call tree:
    - :func:`get_category_store` -> selects a backend from settings
    - :class:`CategoryStore`
        - :meth:`CategoryStore.load`
        - :meth:`CategoryStore.save`

Operational notes:
    - Saves replace the whole document, so a deletion is atomic from the
      caller's point of view.
    - The blob backend uses DefaultAzureCredential (Managed Identity in Azure).
    - Only the blob backend detects concurrent writers. Conflict retries
      live in :class:`CategoryRegistry`, which re-applies its change to a
      fresh load.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple
from urllib.parse import quote

from azure.core.exceptions import (
    ResourceExistsError,
    ResourceModifiedError,
    ResourceNotFoundError,
)
from azure.identity import DefaultAzureCredential
from azure.storage.blob import BlobClient

from .config import Settings
from .errors import CategoryConflictError, CategoryStoreError
from .models import Category

logger = logging.getLogger(__name__)


def serialize_categories(categories: Sequence[Category]) -> str:
    """Serialize categories to the stored JSON document."""
    payload = {"categories": [c.model_dump(by_alias=True) for c in categories]}
    return json.dumps(payload, indent=2)


def deserialize_categories(payload: str) -> list[Category]:
    """Parse a stored JSON document back into categories.

    Raises:
        CategoryStoreError: If the document is not valid.
    """
    try:
        data = json.loads(payload)
        return [Category.model_validate(item) for item in data["categories"]]
    except Exception as exc:
        raise CategoryStoreError(f"Invalid category document: {exc}") from exc


class CategoryStore(ABC):
    """Interface implemented by every category store."""

    @abstractmethod
    def load(self, user_id: str) -> Optional[list[Category]]:
        """Return the user's categories, or None if nothing was stored yet."""

    @abstractmethod
    def save(self, user_id: str, categories: Sequence[Category]) -> None:
        """Replace the user's stored categories."""


class InMemoryCategoryStore(CategoryStore):
    """Process-local store keyed by user id."""

    def __init__(self) -> None:
        self._documents: dict[str, str] = {}

    def load(self, user_id: str) -> Optional[list[Category]]:
        payload = self._documents.get(user_id)
        if payload is None:
            return None
        return deserialize_categories(payload)

    def save(self, user_id: str, categories: Sequence[Category]) -> None:
        self._documents[user_id] = serialize_categories(categories)


class FileCategoryStore(CategoryStore):
    """Store one JSON document per user inside a directory.

    Attributes:
        directory: Root directory for category documents.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path_for(self, user_id: str) -> Path:
        return self.directory / f"{quote(user_id, safe='')}.json"

    def load(self, user_id: str) -> Optional[list[Category]]:
        path = self._path_for(user_id)
        if not path.exists():
            return None
        try:
            payload = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CategoryStoreError(f"Failed to read {path}: {exc}") from exc
        return deserialize_categories(payload)

    def save(self, user_id: str, categories: Sequence[Category]) -> None:
        """Write the document to a temp file and atomically replace the target."""
        path = self._path_for(user_id)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(serialize_categories(categories))
                os.replace(tmp_path, path)
            except BaseException:
                Path(tmp_path).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise CategoryStoreError(f"Failed to write {path}: {exc}") from exc
        logger.debug("Saved %s categories to %s", len(categories), path)


@dataclass(frozen=True)
class BlobCategoryLocation:
    """Location of the category blobs.

    Args:
        account_url: Storage account blob endpoint URL.
        container_name: Blob container name.
        prefix: Blob name prefix; ``<user_id>.json`` is appended.
    """

    account_url: str
    container_name: str
    prefix: str = "categories/"


class BlobCategoryStore(CategoryStore):
    """Store and retrieve category documents from Azure Blob Storage.

    Writes use ETag-based optimistic concurrency: a save based on a stale
    load raises :class:`CategoryConflictError` instead of overwriting.
    """

    def __init__(self, location: BlobCategoryLocation) -> None:
        """Initialize the blob category store.

        Args:
            location: Target blob location.
        """
        self._location = location
        self._etags: dict[str, Optional[str]] = {}
        self._credential = DefaultAzureCredential(exclude_interactive_browser_credential=True)

    def _get_blob_client(self, user_id: str) -> BlobClient:
        """Create a BlobClient for one user's document."""
        return BlobClient(
            account_url=self._location.account_url,
            container_name=self._location.container_name,
            blob_name=f"{self._location.prefix}{quote(user_id, safe='')}.json",
            credential=self._credential,
        )

    def _download(self, user_id: str) -> Tuple[Optional[str], Optional[str]]:
        """Download a user's document and its ETag.

        Returns:
            tuple[Optional[str], Optional[str]]: (payload, etag). If the blob
            does not exist, returns (None, None).
        """
        client = self._get_blob_client(user_id)
        try:
            data = client.download_blob().readall()
            etag = client.get_blob_properties().etag
        except ResourceNotFoundError:
            return None, None
        payload = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else str(data)
        return payload, etag

    def load(self, user_id: str) -> Optional[list[Category]]:
        try:
            payload, etag = self._download(user_id)
        except Exception as exc:
            raise CategoryStoreError(f"Failed to download categories blob: {exc}") from exc

        self._etags[user_id] = etag
        if payload is None:
            return None
        return deserialize_categories(payload)

    def save(self, user_id: str, categories: Sequence[Category]) -> None:
        """Upload the document if the blob is unchanged since the last load.

        A stale write is never forced over the blob: when the ETag no longer
        matches (or another writer created the blob first) the save fails
        with :class:`CategoryConflictError` and the caller re-applies its
        change to a fresh load.

        Raises:
            CategoryConflictError: If the blob changed since it was loaded.
            CategoryStoreError: If the blob cannot be written.
        """
        client = self._get_blob_client(user_id)
        data = serialize_categories(categories).encode("utf-8")
        etag = self._etags.get(user_id)

        try:
            if etag is None:
                # Create only if it doesn't exist
                client.upload_blob(data, overwrite=False)
            else:
                client.upload_blob(data, overwrite=True, if_match=etag)
            self._etags[user_id] = client.get_blob_properties().etag
        except (ResourceModifiedError, ResourceExistsError) as exc:
            logger.warning("Categories blob ETag conflict (user_id=%s)", user_id)
            raise CategoryConflictError(user_id) from exc
        except Exception as exc:
            raise CategoryStoreError(f"Failed to upload categories blob: {exc}") from exc


def get_category_store(settings: Settings) -> CategoryStore:
    """Build the category store selected by ``settings.category_store_backend``.

    Incomplete blob settings fall back to the file store with a warning.

    Args:
        settings: Application settings.

    Returns:
        CategoryStore: Configured store.
    """
    backend = (settings.category_store_backend or "file").strip().lower()

    if backend == "memory":
        return InMemoryCategoryStore()

    if backend == "azure_blob":
        account_url = (settings.category_store_blob_account_url or "").strip()
        container = (settings.category_store_blob_container or "").strip()
        if account_url and container:
            return BlobCategoryStore(
                BlobCategoryLocation(
                    account_url=account_url,
                    container_name=container,
                    prefix=settings.category_store_blob_prefix,
                )
            )
        logger.warning(
            "category_store_backend=azure_blob but blob settings are incomplete; falling back to file store"
        )
    elif backend != "file":
        logger.warning("Unknown category_store_backend=%s; using file store", backend)

    return FileCategoryStore(settings.category_store_path)
