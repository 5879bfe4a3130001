"""Gmail API client for fetching threads to classify.

Objective:
    Provide a thin wrapper around the Gmail threads endpoints. This module
    centralizes HTTP request construction, the bearer token header and the
    conversion of thread metadata into
    :class:`src.inbox_categorizer.models.Thread` models.

Responsibilities:
    - Issue authenticated HTTP requests to Gmail (via :mod:`requests`).
    - List recent threads and fetch each thread's metadata headers.
    - Reduce a thread to its latest message (subject, sender, date, snippet).

High-level call tree:
    - Public API:
        - :meth:`GmailThreadSource.fetch_threads` -> list of :class:`Thread`
    - Internal helpers:
        - :meth:`GmailThreadSource._make_request` (auth + error handling)
        - :meth:`GmailThreadSource._to_thread`

Gmail endpoints used:
    - ``GET /users/me/threads``
    - ``GET /users/me/threads/{id}?format=metadata``

Error handling:
    - 429 responses raise :class:`src.inbox_categorizer.errors.RateLimitError`.
    - Other HTTP errors are logged and raised as :class:`requests.HTTPError`.
    - Individual threads that fail validation are skipped with a warning.

Operational notes:
    - Obtaining the OAuth access token is the caller's responsibility.
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import requests

from .config import Settings
from .errors import RateLimitError
from .models import Thread
from .sanitizer import unescape_entities

logger = logging.getLogger(__name__)

# Upper bound on threads requested in one run.
MAX_THREADS_PER_FETCH = 200


class GmailThreadSource:
    """
    Client for reading Gmail threads.

    Attributes:
        settings: Application settings.
        access_token: OAuth access token with a Gmail read scope.
    """

    GMAIL_BASE_URL = "https://gmail.googleapis.com/gmail/v1"

    def __init__(self, access_token: str, settings: Settings) -> None:
        """
        Initialize the thread source.

        Args:
            access_token: OAuth access token.
            settings: Application settings.
        """
        if not access_token:
            raise ValueError("A Gmail access token is required")
        self.access_token = access_token
        self.settings = settings

    def _make_request(self, endpoint: str, params: Optional[Any] = None) -> dict:
        """Make an authenticated GET request to the Gmail API.

        Args:
            endpoint: API endpoint path.
            params: Query parameters.

        Returns:
            dict: Response JSON data.

        Raises:
            RateLimitError: On a 429 response.
            requests.HTTPError: If the request fails otherwise.
        """
        url = f"{self.GMAIL_BASE_URL}{endpoint}"
        headers = {"Authorization": f"Bearer {self.access_token}"}

        response = requests.get(url, headers=headers, params=params, timeout=30)

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            logger.warning("Gmail API rate limit reached")
            raise RateLimitError(
                "Gmail API rate limit reached",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )

        if not response.ok:
            logger.error(f"Gmail API error: {response.status_code} - {response.text}")
            response.raise_for_status()

        return response.json()

    def _to_thread(self, data: dict) -> Thread:
        """Convert a Gmail thread resource into a :class:`Thread`.

        The latest message (by ``internalDate``) supplies subject, sender,
        date and snippet.
        """
        messages = data.get("messages") or []
        latest: dict = {}
        if messages:
            latest = max(messages, key=lambda m: int(m.get("internalDate") or 0))

        headers = {
            h.get("name", "").lower(): h.get("value", "")
            for h in (latest.get("payload") or {}).get("headers", [])
        }

        return Thread(
            id=data["id"],
            subject=headers.get("subject") or "(No Subject)",
            sender=headers.get("from", ""),
            date=headers.get("date") or None,
            snippet=unescape_entities(latest.get("snippet") or data.get("snippet") or ""),
        )

    def fetch_threads(self, max_results: Optional[int] = None) -> list[Thread]:
        """Fetch the most recent threads, newest first.

        Args:
            max_results: Threads to fetch (``settings.gmail_max_results`` if
                None, capped at :data:`MAX_THREADS_PER_FETCH`).

        Returns:
            list[Thread]: Threads in the order Gmail lists them.
        """
        limit = min(max_results or self.settings.gmail_max_results, MAX_THREADS_PER_FETCH)

        logger.debug(f"Fetching up to {limit} Gmail threads")
        listing = self._make_request("/users/me/threads", params={"maxResults": limit})

        refs = listing.get("threads") or []
        if not refs:
            logger.info("No Gmail threads found")
            return []

        threads = []
        for ref in refs:
            thread_id = quote(str(ref["id"]), safe="")
            details = self._make_request(
                f"/users/me/threads/{thread_id}",
                params=[
                    ("format", "metadata"),
                    ("metadataHeaders", "Subject"),
                    ("metadataHeaders", "From"),
                    ("metadataHeaders", "Date"),
                ],
            )
            try:
                threads.append(self._to_thread(details))
            except Exception as e:
                logger.warning(f"Failed to parse thread {ref.get('id')}: {e}")
                continue

        logger.info(f"Retrieved {len(threads)} Gmail threads")
        return threads
