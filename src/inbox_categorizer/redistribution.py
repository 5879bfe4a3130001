"""Thread redistribution after a category is deleted.

Objective:
    When a custom category disappears, every thread previously assigned to it
    must land in one of the remaining categories. The whole previously
    classified thread set is re-run through the orchestrator against the
    reduced category list, so the remaining custom categories get a chance to
    absorb the orphans.

Fallback:
    If the model path is needed but unavailable, orphaned threads go to the
    default category (:func:`src.inbox_categorizer.scorer.default_category`),
    threads whose category still exists keep it, and unclassified or stale
    threads are scored by rules. Deletion never fails because of the model.

High-level call tree:
    - :func:`redistribute`
        - :meth:`ClassificationOrchestrator.classify` (strict)
        - :func:`fallback_partition` on :class:`UpstreamUnavailableError`
"""

import logging
from typing import Optional, Sequence

from .errors import UpstreamUnavailableError
from .models import (
    AssignmentSource,
    Category,
    ClassificationResult,
    DeletionResult,
    Thread,
    ThreadAssignment,
)
from .orchestrator import ClassificationOrchestrator
from .scorer import default_category

logger = logging.getLogger(__name__)


def fallback_partition(
    threads: Sequence[Thread],
    deleted: Category,
    categories: Sequence[Category],
    orchestrator: ClassificationOrchestrator,
) -> ClassificationResult:
    """Partition threads without the model.

    Args:
        threads: Previously classified threads.
        deleted: The removed category.
        categories: Remaining categories.
        orchestrator: Supplies the rule-based scorer for unclassified threads.

    Returns:
        ClassificationResult: Total partition over ``threads``.
    """
    default = default_category(categories)
    names = {c.name for c in categories}

    assignments = []
    for thread in threads:
        if thread.category == deleted.name:
            assignments.append(
                ThreadAssignment(
                    thread_id=thread.id,
                    category=default.name,
                    source=AssignmentSource.DEFAULT,
                )
            )
        elif thread.category in names:
            assignments.append(
                ThreadAssignment(
                    thread_id=thread.id,
                    category=thread.category,
                    source=AssignmentSource.PREVIOUS,
                )
            )
        else:
            assignments.append(orchestrator.scorer.assign(thread, categories))

    return ClassificationResult.from_assignments(threads, categories, assignments)


def redistribute(
    threads: Sequence[Thread],
    deleted: Category,
    categories: Sequence[Category],
    orchestrator: ClassificationOrchestrator,
    timeout: Optional[float] = None,
) -> DeletionResult:
    """Re-classify previously categorized threads after ``deleted`` was removed.

    Args:
        threads: The entire previously classified thread set; each thread's
            :attr:`Thread.category` holds its previous assignment.
        deleted: The category that was removed.
        categories: Remaining categories (must not contain ``deleted``).
        orchestrator: Orchestrator used for re-classification.
        timeout: Optional deadline in seconds for the model path.

    Returns:
        DeletionResult: New partition plus the number of orphaned threads.
    """
    threads = list(threads)
    orphaned = [t for t in threads if t.category == deleted.name]
    logger.info(
        "Redistributing %s threads (%s orphaned by '%s')",
        len(threads),
        len(orphaned),
        deleted.name,
    )

    degraded = False
    try:
        partition = orchestrator.classify(
            threads, categories, timeout=timeout, require_model=True
        )
    except UpstreamUnavailableError as e:
        logger.warning(
            "Model unavailable during redistribution; assigning orphaned threads to default category (error=%s)",
            str(e),
        )
        partition = fallback_partition(threads, deleted, categories, orchestrator)
        degraded = True

    return DeletionResult(
        deleted=deleted,
        partition=partition,
        reassigned_count=len(orphaned),
        degraded=degraded,
    )
