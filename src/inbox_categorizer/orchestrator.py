"""Classification orchestrator.

Objective:
    Turn a thread set and a category list into a complete, non-overlapping
    :class:`src.inbox_categorizer.models.ClassificationResult`:
    1) Decide whether the model path is worth using (custom categories only)
    2) Route the most recent threads through the model in sequential batches
    3) Score everything else with the rule-based scorer
    4) Merge the per-thread decisions into a partition

Responsibilities:
    - Compose the scorer and the Groq-backed categorizer.
    - Enforce batching discipline (thread cap, batch size, inter-batch pause).
    - Honour a caller deadline between batches.
    - Provide a strict mode for callers that must know whether the model path
      actually worked (redistribution).

High-level call tree:
    - :class:`ClassificationOrchestrator`
        - :meth:`ClassificationOrchestrator.classify`
            - :meth:`RuleBasedScorer.assign` (rules-only path, remainder)
            - :meth:`ClassificationOrchestrator._classify_with_model`
                - :meth:`ThreadCategorizer.classify_batch`
            - :meth:`ClassificationResult.from_assignments`

Operational notes:
    - Threads are expected newest-first (as returned by the thread source);
      the first ``model_thread_cap`` threads are the ones sent to the model.
    - The orchestrator holds no per-run state and may be shared by runs for
      different users.
"""

import logging
import time
from typing import Optional, Sequence

from .categorizer import ThreadCategorizer
from .config import ResponseFormat, Settings, get_settings
from .errors import UpstreamUnavailableError
from .models import (
    AssignmentSource,
    Category,
    ClassificationResult,
    Thread,
    ThreadAssignment,
)
from .scorer import RuleBasedScorer

logger = logging.getLogger(__name__)


class ClassificationOrchestrator:
    """
    Orchestrates a classification run.

    Attributes:
        settings: Application settings.
        scorer: Rule-based scorer.
        categorizer: Groq-backed categorizer, or None when no API key is set.
        response_format: Reply grammar requested from the model.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        scorer: Optional[RuleBasedScorer] = None,
        categorizer: Optional[ThreadCategorizer] = None,
        response_format: Optional[ResponseFormat] = None,
    ) -> None:
        """
        Initialize orchestrator with its components.

        Args:
            settings: Application settings (loads from env if None).
            scorer: Rule-based scorer (default weights if None).
            categorizer: Model categorizer. Built from settings when None and
                a Groq API key is configured.
            response_format: Reply grammar (``settings.groq_response_format``
                if None).
        """
        self.settings = settings or get_settings()
        self.scorer = scorer or RuleBasedScorer()

        if categorizer is None and self.settings.model_enabled:
            categorizer = ThreadCategorizer(self.settings, scorer=self.scorer)
        self.categorizer = categorizer

        self.response_format = response_format or self.settings.groq_response_format

    def _rules(
        self,
        threads: Sequence[Thread],
        categories: Sequence[Category],
        source: AssignmentSource = AssignmentSource.RULES,
    ) -> list[ThreadAssignment]:
        return [self.scorer.assign(t, categories, source) for t in threads]

    def _classify_with_model(
        self,
        threads: Sequence[Thread],
        categories: Sequence[Category],
        deadline: Optional[float],
        require_model: bool,
        instructions: Optional[str] = None,
    ) -> list[ThreadAssignment]:
        """Run the model path over ``threads`` in sequential batches.

        Args:
            threads: Threads routed to the model (already capped).
            categories: Available categories.
            deadline: ``time.monotonic()`` value after which no new batch starts.
            require_model: Raise instead of degrading when a batch falls back.
            instructions: Optional caller guidance passed to the model prompt.

        Returns:
            list[ThreadAssignment]: One assignment per thread, same order.

        Raises:
            UpstreamUnavailableError: In strict mode, when a batch could not
                be classified by the model.
        """
        batch_size = self.settings.model_batch_size
        batches = [threads[i : i + batch_size] for i in range(0, len(threads), batch_size)]

        results: list[ThreadAssignment] = []
        for number, batch in enumerate(batches, 1):
            # Pause first so the deadline check sees the time spent sleeping
            if number > 1 and self.settings.inter_batch_delay_seconds:
                time.sleep(self.settings.inter_batch_delay_seconds)

            if deadline is not None and time.monotonic() >= deadline:
                remaining = threads[len(results) :]
                logger.warning(
                    "Classification deadline reached; scoring %s remaining threads by rules",
                    len(remaining),
                )
                results.extend(
                    self._rules(remaining, categories, AssignmentSource.DEADLINE_FALLBACK)
                )
                break

            logger.info(f"Processing batch {number}/{len(batches)} ({len(batch)} threads)")
            assignments = self.categorizer.classify_batch(
                batch,
                categories,
                response_format=self.response_format,
                instructions=instructions,
            )

            if require_model and any(
                a.source == AssignmentSource.BATCH_FALLBACK for a in assignments
            ):
                raise UpstreamUnavailableError(
                    f"Model classification failed for batch {number}/{len(batches)}"
                )
            results.extend(assignments)

        return results

    def classify(
        self,
        threads: Sequence[Thread],
        categories: Sequence[Category],
        timeout: Optional[float] = None,
        require_model: bool = False,
        instructions: Optional[str] = None,
    ) -> ClassificationResult:
        """Classify threads into a total partition.

        Strategy:
            - Without custom categories every thread is scored by rules.
            - With custom categories the first ``model_thread_cap`` threads go
              through the model in batches of ``model_batch_size``; the rest
              are scored by rules.

        Args:
            threads: Threads to classify, newest first.
            categories: Current category list, in declaration order.
            timeout: Seconds after which no new model batch is started
                (``settings.classification_timeout_seconds`` if None).
            require_model: Raise :class:`UpstreamUnavailableError` instead of
                silently degrading when the model path is needed but fails.
            instructions: Optional caller guidance for the model prompt. Has
                no effect on threads scored by rules.

        Returns:
            ClassificationResult: Partition covering every thread exactly once.

        Raises:
            ValueError: If ``categories`` is empty.
            UpstreamUnavailableError: Only when ``require_model`` is True.
        """
        if not categories:
            raise ValueError("At least one category is required for classification")

        threads = list(threads)
        categories = list(categories)

        if timeout is None:
            timeout = self.settings.classification_timeout_seconds
        deadline = time.monotonic() + timeout if timeout else None

        has_custom = any(c.is_custom for c in categories)
        logger.info(
            "Classifying %s threads into %s categories (custom=%s)",
            len(threads),
            len(categories),
            has_custom,
        )

        if not threads:
            return ClassificationResult.from_assignments([], categories, [])

        if not has_custom:
            assignments = self._rules(threads, categories)
        elif self.categorizer is None:
            if require_model:
                raise UpstreamUnavailableError("No Groq API key configured")
            logger.warning("Groq is not configured; classifying by rules only")
            assignments = self._rules(threads, categories)
        else:
            cap = self.settings.model_thread_cap
            model_threads, remainder = threads[:cap], threads[cap:]
            assignments = self._classify_with_model(
                model_threads, categories, deadline, require_model, instructions
            )
            assignments.extend(self._rules(remainder, categories))

        result = ClassificationResult.from_assignments(threads, categories, assignments)

        fallbacks = sum(
            1
            for a in assignments
            if a.source
            in (
                AssignmentSource.ITEM_FALLBACK,
                AssignmentSource.BATCH_FALLBACK,
                AssignmentSource.DEADLINE_FALLBACK,
            )
        )
        logger.info(
            "Completed: %s threads classified (%s model fallbacks)", len(threads), fallbacks
        )
        return result
