"""Model-assisted thread categorization.

Objective:
    Classify a small batch of :class:`src.inbox_categorizer.models.Thread`
    objects with one Groq chat completion, returning exactly one
    :class:`src.inbox_categorizer.models.ThreadAssignment` per thread.

Core strategy:
    1. Build a system prompt that ranks custom categories above built-ins.
    2. Build a user prompt listing every category and the numbered threads
       (sender, subject, sanitized snippet).
    3. Call Groq. On a rate limit, wait a fixed cool-down and retry once.
    4. Parse the reply in the requested :class:`ResponseFormat`.
    5. Any thread the reply does not validly assign is scored by
       :class:`src.inbox_categorizer.scorer.RuleBasedScorer`. If the call or
       the parse fails entirely, the whole batch is scored by rules.

High-level call tree:
    - :class:`ThreadCategorizer`
        - :meth:`ThreadCategorizer.classify_batch`
            - :meth:`ThreadCategorizer._classify_chunk`
                - :meth:`ThreadCategorizer._build_system_prompt`
                - :meth:`ThreadCategorizer._build_user_prompt`
                - :meth:`ThreadCategorizer._complete_with_retry`
                    - :meth:`ThreadCategorizer._complete` (Groq call)
                - :meth:`ThreadCategorizer._parse_response`
                    - :meth:`ThreadCategorizer._parse_lines`
                    - :meth:`ThreadCategorizer._parse_json`
                - :meth:`RuleBasedScorer.assign` (fallbacks)

Operational notes:
    - The Groq SDK's own retries are disabled so the single cool-down retry
      here is the only retry.
    - :meth:`classify_batch` never raises because of the model service.
"""

import json
import logging
import re
import time
from typing import Optional, Sequence

from groq import APIStatusError, Groq
from groq import RateLimitError as GroqRateLimitError

from .config import ResponseFormat, Settings
from .errors import ModelResponseParseError, RateLimitError, UpstreamUnavailableError
from .models import AssignmentSource, Category, Thread, ThreadAssignment
from .sanitizer import sanitize_snippet
from .scorer import RuleBasedScorer

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an AI assistant that specializes in email categorization with a "
    "focus on custom categories. Your PRIMARY RESPONSIBILITY is to categorize "
    "emails into user-defined custom categories first, and only use default "
    "categories when there is absolutely no match with custom categories. "
    "Custom categories are marked with IsCustom: YES - these are HIGH PRIORITY "
    "and should be used when there is any reasonable semantic connection "
    "between the email content and the custom category. Consider the meaning "
    "and intent of the email beyond just keyword matching."
)

JSON_ONLY_SUFFIX = (
    "\nYou must respond with valid JSON only. No conversation or explanation, only JSON."
)

DEFAULT_GUIDANCE = (
    "Custom categories (IsCustom: YES) take priority over built-in categories whenever\n"
    "there is a reasonable semantic match. Use a built-in category (IsCustom: NO) only\n"
    "when no custom category fits."
)

_LINE_RE = re.compile(r"email\s*#?\s*(\d+)\s*\**\s*[:\-]\s*(.+)", re.IGNORECASE)
_LIST_KEYS = ("categorization", "results", "categories", "assignments")


def _is_rate_limit_error(exc: Exception) -> bool:
    """Detect whether a Groq SDK exception is a rate-limit (429) response."""
    if isinstance(exc, GroqRateLimitError):
        return True
    return isinstance(exc, APIStatusError) and exc.status_code == 429


class ThreadCategorizer:
    """
    Groq-backed batch classifier with rule-based fallbacks.

    This class is instantiated once per orchestrator. It is safe to reuse for
    many batches because it holds no per-run state.

    Attributes:
        settings: Application settings.
        scorer: Rule-based scorer used for fallbacks.
        client: Groq API client.
    """

    def __init__(
        self,
        settings: Settings,
        scorer: Optional[RuleBasedScorer] = None,
    ) -> None:
        """
        Initialize categorizer with settings.

        Args:
            settings: Application settings with the Groq API key.
            scorer: Scorer used for fallbacks (a default one is created if None).
        """
        self.settings = settings
        self.scorer = scorer or RuleBasedScorer()
        self.client = Groq(
            api_key=settings.groq_api_key,
            timeout=settings.groq_timeout_seconds,
            max_retries=0,
        )

    def _model_for(self, response_format: ResponseFormat) -> str:
        if response_format == ResponseFormat.JSON:
            return self.settings.groq_json_model
        return self.settings.groq_model

    def _build_system_prompt(self, response_format: ResponseFormat) -> str:
        """Build the system prompt for the requested reply format.

        Args:
            response_format: Reply grammar.

        Returns:
            str: System prompt.
        """
        if response_format == ResponseFormat.JSON:
            return SYSTEM_PROMPT + JSON_ONLY_SUFFIX
        return SYSTEM_PROMPT

    def _build_user_prompt(
        self,
        threads: Sequence[Thread],
        categories: Sequence[Category],
        response_format: ResponseFormat,
        instructions: Optional[str] = None,
    ) -> str:
        """
        Build the user prompt listing categories and numbered threads.

        Args:
            threads: Threads in the batch (numbered from 1).
            categories: Available categories.
            response_format: Reply grammar to request.
            instructions: Caller-supplied guidance replacing the default
                custom-first paragraph. The category list, the threads and
                the reply format are always included so the reply stays
                parseable.

        Returns:
            str: User prompt.
        """
        category_lines = "\n".join(
            f"- {c.name}: {c.description} (IsCustom: {'YES' if c.is_custom else 'NO'})"
            for c in categories
        )

        thread_blocks = "\n\n".join(
            f"Email {i}:\n"
            f"- From: {t.sender}\n"
            f"- Subject: {t.subject}\n"
            f"- Content: {sanitize_snippet(t.snippet)}"
            for i, t in enumerate(threads, 1)
        )

        if response_format == ResponseFormat.JSON:
            reply_format = (
                "Return a single JSON object in exactly this shape:\n"
                '{"categorization": [{"email": 1, "category": "Category Name"}]}\n'
                f"Include one entry for each of the {len(threads)} emails."
            )
        else:
            reply_format = (
                "Reply with exactly one line per email, in this format and nothing else:\n"
                "Email <n>: <Category Name>\n"
                f"Include one line for each of the {len(threads)} emails."
            )

        guidance = (instructions or "").strip() or DEFAULT_GUIDANCE

        return f"""Categorize each email below into exactly one of these categories:
{category_lines}

{guidance}
Use category names exactly as written above.

{thread_blocks}

{reply_format}
"""

    def _complete(
        self, system_prompt: str, user_prompt: str, response_format: ResponseFormat
    ) -> str:
        """
        Issue one Groq chat completion.

        Args:
            system_prompt: System instruction.
            user_prompt: User prompt.
            response_format: Reply grammar; JSON enables Groq's JSON mode.

        Returns:
            str: Raw reply text.

        Raises:
            RateLimitError: On a 429 from Groq.
            UpstreamUnavailableError: On any other service failure.
            ModelResponseParseError: If the reply has no content.
        """
        request: dict = {
            "model": self._model_for(response_format),
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.settings.groq_temperature,
            "max_tokens": self.settings.groq_max_tokens,
        }
        if response_format == ResponseFormat.JSON:
            request["response_format"] = {"type": "json_object"}

        try:
            response = self.client.chat.completions.create(**request)
        except Exception as e:
            if _is_rate_limit_error(e):
                raise RateLimitError(str(e)) from e
            raise UpstreamUnavailableError(f"Groq request failed: {e}") from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise ModelResponseParseError(f"Unexpected Groq response shape: {e}") from e

        text = (content or "").strip()
        if not text:
            raise ModelResponseParseError("Groq returned an empty reply")

        logger.debug(f"LLM response: {text}")
        return text

    def _complete_with_retry(
        self, system_prompt: str, user_prompt: str, response_format: ResponseFormat
    ) -> str:
        """Call :meth:`_complete`, retrying exactly once after a rate limit."""
        try:
            return self._complete(system_prompt, user_prompt, response_format)
        except RateLimitError:
            cooldown = self.settings.rate_limit_cooldown_seconds
            logger.warning("Groq rate limit hit; retrying once in %.1fs", cooldown)
            time.sleep(cooldown)

        return self._complete(system_prompt, user_prompt, response_format)

    def _resolve_category(
        self, raw: str, categories: Sequence[Category]
    ) -> Optional[str]:
        """Map a category name written by the model onto a registry name.

        Tries an exact match, then a case-insensitive match, then the text
        before an explanation (``Name - reason`` / ``Name (reason)``).

        Returns:
            Optional[str]: Registry category name, or None if unknown.
        """
        value = raw.strip().strip("*`\"'").strip().rstrip(".").strip()
        if not value:
            return None

        candidates = [value]
        for separator in (" (", " - ", " – ", ": "):
            if separator in value:
                candidates.append(value.split(separator, 1)[0].strip().strip("*`\"'"))

        by_name = {c.name: c.name for c in categories}
        by_lower = {c.name.lower(): c.name for c in categories}
        for candidate in candidates:
            if candidate in by_name:
                return by_name[candidate]
            if candidate.lower() in by_lower:
                return by_lower[candidate.lower()]
        return None

    def _parse_lines(
        self,
        response_text: str,
        threads: Sequence[Thread],
        categories: Sequence[Category],
    ) -> dict[int, str]:
        """Parse ``Email <n>: <Category Name>`` lines.

        Returns:
            dict[int, str]: Zero-based batch index -> category name.
        """
        assignments: dict[int, str] = {}
        for line in response_text.splitlines():
            match = _LINE_RE.search(line)
            if not match:
                if line.strip():
                    logger.debug("Ignoring unparseable reply line: %s", line)
                continue

            index = int(match.group(1)) - 1
            if not 0 <= index < len(threads):
                logger.warning("Reply references out-of-range email %s", match.group(1))
                continue

            category = self._resolve_category(match.group(2), categories)
            if category is None:
                logger.warning(
                    "Reply assigned unknown category '%s' (thread_id=%s)",
                    match.group(2).strip(),
                    threads[index].id,
                )
                continue

            assignments.setdefault(index, category)
        return assignments

    def _extract_first_json_object(self, response_text: str) -> Optional[str]:
        """Extract the first decodable JSON object from a model reply.

        Models can wrap JSON in Markdown fences or surrounding prose, so this
        scans from each ``{`` with :meth:`json.JSONDecoder.raw_decode`.

        Args:
            response_text: Raw model response text.

        Returns:
            Optional[str]: JSON object string if found, else None.
        """
        if not response_text:
            return None

        cleaned = re.sub(r"```(?:json)?\s*|```", "", response_text, flags=re.IGNORECASE)

        decoder = json.JSONDecoder()
        start = cleaned.find("{")
        while start != -1:
            try:
                _, end = decoder.raw_decode(cleaned[start:])
                return cleaned[start : start + end]
            except json.JSONDecodeError:
                start = cleaned.find("{", start + 1)
        return None

    def _json_items(self, data: dict) -> list[dict]:
        """Normalize the parsed JSON reply into a list of assignment items."""
        for key in _LIST_KEYS:
            value = data.get(key)
            if isinstance(value, list):
                return [item for item in value if isinstance(item, dict)]

        # {"Email 1": "Travel", "2": "Newsletter"}
        if data and all(isinstance(v, str) for v in data.values()):
            return [{"email": k, "category": v} for k, v in data.items()]
        return []

    def _parse_json(
        self,
        response_text: str,
        threads: Sequence[Thread],
        categories: Sequence[Category],
    ) -> dict[int, str]:
        """Parse a JSON-mode reply.

        Items may reference a thread by batch number (``email``/``index``) or
        by id (``threadId``/``id``).

        Returns:
            dict[int, str]: Zero-based batch index -> category name.

        Raises:
            ModelResponseParseError: If no JSON object can be decoded.
        """
        extracted = self._extract_first_json_object(response_text)
        if extracted is None:
            raise ModelResponseParseError("Reply contained no JSON object")

        try:
            data = json.loads(extracted)
        except json.JSONDecodeError as e:
            raise ModelResponseParseError(f"Reply JSON could not be decoded: {e}") from e

        index_by_id = {t.id: i for i, t in reversed(list(enumerate(threads)))}
        assignments: dict[int, str] = {}

        for item in self._json_items(data):
            index: Optional[int] = None
            thread_ref = item.get("threadId") or item.get("thread_id") or item.get("id")
            number = item.get("email", item.get("index"))

            if thread_ref is not None and str(thread_ref) in index_by_id:
                index = index_by_id[str(thread_ref)]
            elif number is not None:
                digits = re.search(r"\d+", str(number))
                if digits:
                    index = int(digits.group(0)) - 1

            if index is None or not 0 <= index < len(threads):
                logger.warning("Reply item references unknown email: %s", item)
                continue

            raw_category = item.get("category")
            category = (
                self._resolve_category(raw_category, categories)
                if isinstance(raw_category, str)
                else None
            )
            if category is None:
                logger.warning(
                    "Reply assigned unknown category '%s' (thread_id=%s)",
                    raw_category,
                    threads[index].id,
                )
                continue

            assignments.setdefault(index, category)
        return assignments

    def _parse_response(
        self,
        response_text: str,
        threads: Sequence[Thread],
        categories: Sequence[Category],
        response_format: ResponseFormat,
    ) -> dict[int, str]:
        """
        Parse a model reply into batch-index assignments.

        Args:
            response_text: Raw reply.
            threads: Threads in the batch.
            categories: Available categories.
            response_format: Grammar that was requested.

        Returns:
            dict[int, str]: Zero-based batch index -> category name. Threads
            missing from the mapping must be scored by rules.

        Raises:
            ModelResponseParseError: If the reply yields no usable assignment.
        """
        if response_format == ResponseFormat.JSON:
            assignments = self._parse_json(response_text, threads, categories)
        else:
            assignments = self._parse_lines(response_text, threads, categories)

        if not assignments:
            raise ModelResponseParseError("Reply contained no usable assignments")
        return assignments

    def _fallback_all(
        self,
        threads: Sequence[Thread],
        categories: Sequence[Category],
        source: AssignmentSource,
    ) -> list[ThreadAssignment]:
        return [self.scorer.assign(t, categories, source) for t in threads]

    def _classify_chunk(
        self,
        threads: Sequence[Thread],
        categories: Sequence[Category],
        response_format: ResponseFormat,
        instructions: Optional[str] = None,
    ) -> list[ThreadAssignment]:
        """Classify threads with a single model call plus rule fallbacks."""
        system_prompt = self._build_system_prompt(response_format)
        user_prompt = self._build_user_prompt(
            threads, categories, response_format, instructions
        )

        try:
            response_text = self._complete_with_retry(
                system_prompt, user_prompt, response_format
            )
            parsed = self._parse_response(
                response_text, threads, categories, response_format
            )
        except Exception as e:
            logger.warning(
                "Model categorization failed; scoring %s threads by rules (error=%s)",
                len(threads),
                str(e),
            )
            return self._fallback_all(threads, categories, AssignmentSource.BATCH_FALLBACK)

        results = []
        for index, thread in enumerate(threads):
            category = parsed.get(index)
            if category is None:
                results.append(
                    self.scorer.assign(thread, categories, AssignmentSource.ITEM_FALLBACK)
                )
            else:
                results.append(
                    ThreadAssignment(
                        thread_id=thread.id,
                        category=category,
                        source=AssignmentSource.MODEL,
                    )
                )
        return results

    def classify_batch(
        self,
        threads: Sequence[Thread],
        categories: Sequence[Category],
        response_format: ResponseFormat = ResponseFormat.LINES,
        instructions: Optional[str] = None,
    ) -> list[ThreadAssignment]:
        """
        Classify a batch of threads.

        With ``settings.per_thread_calls`` each thread gets its own request,
        separated by ``settings.stagger_seconds``; otherwise the batch is sent
        as one request.

        Args:
            threads: Threads to classify (typically ``model_batch_size``).
            categories: Available categories (non-empty).
            response_format: Reply grammar to request.
            instructions: Optional caller guidance for the user prompt.

        Returns:
            list[ThreadAssignment]: One assignment per thread, same order.
        """
        if not threads:
            return []

        if not self.settings.per_thread_calls:
            results = self._classify_chunk(
                threads, categories, response_format, instructions
            )
        else:
            results = []
            for i, thread in enumerate(threads):
                if i:
                    time.sleep(self.settings.stagger_seconds)
                results.extend(
                    self._classify_chunk([thread], categories, response_format, instructions)
                )

        model_count = sum(1 for r in results if r.source == AssignmentSource.MODEL)
        logger.info(
            "Categorized batch of %s threads (%s by model, %s by rules)",
            len(threads),
            model_count,
            len(threads) - model_count,
        )
        return results
