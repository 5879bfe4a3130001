"""Application configuration and settings.

Objective:
    Provide a single source of truth for runtime configuration used across the
    classification engine (Groq, batching and retry behavior, category
    storage, Gmail fetching).

Responsibilities:
    - Define the fixed set of built-in categories (:class:`BuiltinCategory`).
    - Load environment-driven settings via :class:`Settings` (Pydantic
      BaseSettings).
    - Provide small convenience helpers for derived settings.

High-level call tree:
    - :func:`get_settings` -> returns :class:`Settings`
    - :func:`builtin_category_specs` -> ordered built-in definitions

Operational notes:
    - ``Settings`` loads from ``.env`` by default via ``pydantic-settings``.
    - Most modules accept a ``Settings`` object explicitly to enable testing;
      entrypoints fall back to :func:`get_settings` when not provided.
"""

from enum import Enum
from typing import Optional
import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Color assigned to custom categories created without an explicit color.
DEFAULT_CUSTOM_COLOR = "#64748B"


class BuiltinCategory(str, Enum):
    """The five built-in categories every user starts with.

    The Enum values are the user-facing category names. Declaration order is
    significant: the scorer breaks ties by first-declared order.
    """

    IMPORTANT = "Important"
    ACTION_REQUIRED = "Action Required"
    CAN_WAIT = "Can Wait"
    NEWSLETTER = "Newsletter"
    AUTO_ARCHIVE = "Auto-Archive"


_BUILTIN_DETAILS: dict[BuiltinCategory, tuple[str, str, str]] = {
    BuiltinCategory.IMPORTANT: (
        "important",
        "Critical emails that require immediate attention, such as urgent "
        "requests or time-sensitive information.",
        "#EF4444",
    ),
    BuiltinCategory.ACTION_REQUIRED: (
        "action",
        "Emails that need you to do something, like reply, make a decision, "
        "or complete a task.",
        "#F59E0B",
    ),
    BuiltinCategory.CAN_WAIT: (
        "waiting",
        "Lower priority emails that don't need immediate attention and can be "
        "handled later.",
        "#10B981",
    ),
    BuiltinCategory.NEWSLETTER: (
        "newsletter",
        "Subscriptions, updates, and regular communications from websites, "
        "companies, or organizations.",
        "#6366F1",
    ),
    BuiltinCategory.AUTO_ARCHIVE: (
        "auto-archive",
        "Automated notifications, receipts, confirmations, and other emails "
        "that don't need further action.",
        "#8B5CF6",
    ),
}


def builtin_category_specs() -> list[dict[str, object]]:
    """Return the built-in category definitions in declaration order.

    The registry validates these into :class:`~src.inbox_categorizer.models.Category`
    objects. Plain dicts are returned to keep this module free of model
    imports.

    Returns:
        list[dict[str, object]]: One dict per built-in category.
    """
    specs = []
    for member in BuiltinCategory:
        category_id, description, color = _BUILTIN_DETAILS[member]
        specs.append(
            {
                "id": category_id,
                "name": member.value,
                "description": description,
                "isCustom": False,
                "color": color,
            }
        )
    return specs


class ResponseFormat(str, Enum):
    """Reply grammar requested from the language model.

    ``lines`` asks for one ``Email <n>: <Category Name>`` line per thread.
    ``json`` asks for a JSON object and enables Groq's JSON mode.
    """

    LINES = "lines"
    JSON = "json"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The settings model is intentionally flat and human-editable via `.env`.
    Every field has a default so the engine can run rules-only without any
    configuration at all.

    Attributes:
        groq_api_key: Groq API key. When missing the model path is disabled.
        groq_model: Model used for the line-oriented reply format.
        groq_json_model: Model used for the JSON reply format.
        groq_response_format: Reply grammar requested from the model.
        model_batch_size: Threads per model request.
        model_thread_cap: Maximum threads routed through the model per run.
        rate_limit_cooldown_seconds: Pause before the single rate-limit retry.
        inter_batch_delay_seconds: Pause between consecutive batches.
        category_store_backend: Where category definitions are persisted.
        log_level: Logging level.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Groq Configuration
    groq_api_key: Optional[str] = Field(
        default=None,
        description="Groq API key. Leave unset to classify with rules only.",
    )
    groq_model: str = Field(
        default="llama-3.1-8b-instant",
        description="Groq model for line-formatted replies",
    )
    groq_json_model: str = Field(
        default="llama-3.3-70b-versatile",
        description="Groq model for JSON-mode replies",
    )
    groq_response_format: ResponseFormat = Field(
        default=ResponseFormat.LINES,
        description="Reply grammar requested from the model ('lines' or 'json')",
    )
    groq_temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    groq_max_tokens: int = Field(default=800, ge=16)
    groq_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Per-request timeout for Groq calls"
    )

    # Batching and retry
    model_batch_size: int = Field(
        default=5, ge=1, le=25, description="Threads per model request"
    )
    model_thread_cap: int = Field(
        default=50,
        ge=0,
        description="Most-recent threads routed through the model per run",
    )
    rate_limit_cooldown_seconds: float = Field(
        default=2.0, ge=0.0, description="Wait before retrying a rate-limited batch"
    )
    inter_batch_delay_seconds: float = Field(
        default=0.5, ge=0.0, description="Pause between consecutive batches"
    )
    per_thread_calls: bool = Field(
        default=False,
        description="Issue one model call per thread instead of one per batch",
    )
    stagger_seconds: float = Field(
        default=0.2,
        ge=0.0,
        description="Pause between per-thread calls inside a batch",
    )
    classification_timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Default deadline for a classification run",
    )

    # Category storage
    category_store_backend: str = Field(
        default="file",
        description=(
            "Category store backend. 'memory' keeps categories in-process, "
            "'file' stores one JSON document per user on disk, "
            "'azure_blob' stores them in Azure Blob Storage."
        ),
    )
    category_store_path: str = Field(
        default=".inbox_categorizer/categories",
        description="Directory used by the file category store",
    )
    category_store_blob_account_url: Optional[str] = Field(
        default=None,
        description="Azure Storage account URL, e.g. https://<account>.blob.core.windows.net",
    )
    category_store_blob_container: Optional[str] = Field(
        default=None,
        description="Azure Blob container name for category documents",
    )
    category_store_blob_prefix: str = Field(
        default="categories/",
        description="Blob name prefix; the user id and '.json' are appended",
    )

    # Gmail
    gmail_max_results: int = Field(
        default=100, ge=1, le=200, description="Threads fetched from Gmail per run"
    )

    log_level: str = Field(default="INFO", description="Logging level")

    @property
    def model_enabled(self) -> bool:
        """Whether the model-assisted path can be used at all.

        Returns:
            bool: True when a non-blank Groq API key is configured.
        """
        return bool((self.groq_api_key or "").strip())


def get_settings() -> Settings:
    """
    Load and return application settings.

    This helper is a convenience for production code. For tests, you typically
    construct a :class:`Settings` instance directly or pass a mocked settings
    object.

    Returns:
        Settings: Application settings instance.

    Raises:
        ValidationError: If environment variables hold invalid values.
    """
    return Settings()
