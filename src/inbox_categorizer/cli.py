"""Command-line interface (CLI) entrypoint.

Objective:
    Provide a human-friendly CLI wrapper around
    :class:`src.inbox_categorizer.registry.CategoryRegistry`.

Responsibilities:
    - Parse arguments (subcommand, user, thread source, verbosity).
    - Configure logging (including suppressing noisy HTTP request logs).
    - Load threads from a JSON file or from Gmail.
    - Invoke the registry and print a readable partition summary.

High-level call tree:
    - :func:`main`
        - :func:`setup_logging`
            - installs :class:`_HttpxRequestInfoToDebugFilter`
        - :func:`build_registry`
        - ``classify``:
            - :func:`load_threads` or :meth:`GmailThreadSource.fetch_threads`
            - :meth:`CategoryRegistry.classify`
            - :func:`print_partition`
        - ``categories list|create|delete``:
            - :meth:`CategoryRegistry.create_category`
            - :meth:`CategoryRegistry.delete_category`

Operational notes:
    - This module supports being run both as a package module
      (``python -m src.inbox_categorizer.cli``) and as a script
      (``python src/inbox_categorizer/cli.py``). The import fallback handles
      the script case.
    - ``classify --output FILE`` writes the categorized threads so that a
      later ``categories delete --threads FILE`` can redistribute them.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

try:
    from .config import get_settings
    from .models import AssignmentSource, ClassificationResult, Thread
    from .orchestrator import ClassificationOrchestrator
    from .registry import CategoryRegistry
    from .store import get_category_store
    from .thread_source import GmailThreadSource
except ImportError:  # pragma: no cover
    src_root = Path(__file__).resolve().parents[1]
    if str(src_root) not in sys.path:
        sys.path.insert(0, str(src_root))

    from inbox_categorizer.config import get_settings
    from inbox_categorizer.models import AssignmentSource, ClassificationResult, Thread
    from inbox_categorizer.orchestrator import ClassificationOrchestrator
    from inbox_categorizer.registry import CategoryRegistry
    from inbox_categorizer.store import get_category_store
    from inbox_categorizer.thread_source import GmailThreadSource


class _HttpxRequestInfoToDebugFilter(logging.Filter):
    """Filter to suppress noisy httpx "HTTP Request:" INFO logs.

    The Groq SDK logs each HTTP request through httpx at INFO level. This
    filter hides those messages unless the root logger is in DEBUG mode.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        if record.name.startswith("httpx") and msg.startswith("HTTP Request:"):
            return logging.getLogger().isEnabledFor(logging.DEBUG)
        return True


def setup_logging(level: str = "INFO") -> None:
    """
    Configure logging for the application.

    This sets the root logger level and installs the
    :class:`_HttpxRequestInfoToDebugFilter` on all root handlers.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    root_logger = logging.getLogger()
    downgrade_filter = _HttpxRequestInfoToDebugFilter()
    for handler in root_logger.handlers:
        handler.addFilter(downgrade_filter)


def load_threads(path: str) -> list[Thread]:
    """Read threads from a JSON file.

    Accepted shapes:
        - a list of thread objects
        - ``{"threads": [...]}``
        - a classification output written by ``classify --output``

    Args:
        path: Path to the JSON file.

    Returns:
        list[Thread]: Parsed threads.

    Raises:
        ValueError: If the file does not hold one of the accepted shapes.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))

    if isinstance(data, dict):
        data = data.get("threads", data)
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of threads")

    return [Thread.model_validate(item) for item in data]


def print_partition(result: ClassificationResult, verbose: bool = False) -> None:
    """
    Print a partition to the console.

    Output format:
        - One block per category, in registry order, with thread counts.
        - Sender and subject per thread.
        - The decision source per thread when ``verbose=True``.

    Args:
        result: Classification result.
        verbose: If True, print detailed information.
    """
    total = len(result.assignments)
    if not total:
        print("\nNo threads classified.")
        return

    sources = {a.thread_id: a.source for a in result.assignments}

    print(f"\n{'='*60}")
    print(f"CLASSIFICATION RESULTS: {total} threads")
    print(f"{'='*60}\n")

    for category, items in result.partition.items():
        print(f"\n📁 {category} ({len(items)} threads)")
        print("-" * 40)

        for item in items:
            subject = item.subject[:50] + "..." if len(item.subject) > 50 else item.subject
            prefix = f"{item.sender} " if item.sender else ""
            line = f"  • {prefix}{subject}"
            if verbose:
                line += f"  [{sources[item.id].value}]"
            print(line)

    by_model = sum(1 for a in result.assignments if a.source == AssignmentSource.MODEL)

    print(f"\n{'='*60}")
    print(f"SUMMARY: {by_model} by model, {total - by_model} by rules")
    print(f"{'='*60}\n")


def write_result(result: ClassificationResult, path: str) -> None:
    """Write categorized threads to ``path`` for later redistribution."""
    payload = {"threads": [t.model_dump(mode="json", by_alias=True) for t in result.threads]}
    Path(path).write_text(json.dumps(payload, indent=2), encoding="utf-8")


def build_registry(user_id: str) -> CategoryRegistry:
    settings = get_settings()
    return CategoryRegistry(
        user_id,
        store=get_category_store(settings),
        orchestrator=ClassificationOrchestrator(settings=settings),
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Inbox Categorizer - sort mail threads into built-in and custom categories",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s classify --threads inbox.json          Classify threads from a file
  %(prog)s classify --gmail-token TOKEN           Classify recent Gmail threads
  %(prog)s categories list                        Show categories
  %(prog)s categories create "Travel" -d "Flights, hotels"
  %(prog)s categories delete travel --threads out.json
        """,
    )

    parser.add_argument(
        "--user",
        "-u",
        type=str,
        default="default",
        help="User whose categories are used",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (defaults to LOG_LEVEL from the environment)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    classify = commands.add_parser("classify", help="Classify threads")
    source = classify.add_mutually_exclusive_group(required=True)
    source.add_argument("--threads", "-t", type=str, help="JSON file with threads")
    source.add_argument("--gmail-token", type=str, help="Gmail OAuth access token")
    classify.add_argument(
        "--limit",
        "-l",
        type=int,
        default=None,
        help="Maximum number of Gmail threads to fetch",
    )
    classify.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds after which remaining threads are scored by rules",
    )
    classify.add_argument(
        "--instructions",
        type=str,
        default=None,
        help="Extra guidance for the model (replaces the default custom-first hint)",
    )
    classify.add_argument(
        "--output",
        "-o",
        type=str,
        default=None,
        help="Write categorized threads to this JSON file",
    )

    categories = commands.add_parser("categories", help="Manage categories")
    actions = categories.add_subparsers(dest="action", required=True)

    actions.add_parser("list", help="List categories")

    create = actions.add_parser("create", help="Create a custom category")
    create.add_argument("name", type=str)
    create.add_argument("--description", "-d", type=str, default="")
    create.add_argument("--color", type=str, default=None)

    delete = actions.add_parser("delete", help="Delete a custom category")
    delete.add_argument("category_id", type=str)
    delete.add_argument(
        "--threads",
        "-t",
        type=str,
        default=None,
        help="Previously categorized threads to redistribute",
    )
    delete.add_argument("--output", "-o", type=str, default=None)

    return parser


def _run_classify(parsed_args: argparse.Namespace, registry: CategoryRegistry) -> int:
    if parsed_args.threads:
        threads = load_threads(parsed_args.threads)
    else:
        source = GmailThreadSource(parsed_args.gmail_token, registry.orchestrator.settings)
        threads = source.fetch_threads(max_results=parsed_args.limit)

    result = registry.classify(
        threads, timeout=parsed_args.timeout, instructions=parsed_args.instructions
    )
    print_partition(result, verbose=parsed_args.verbose)

    if parsed_args.output:
        write_result(result, parsed_args.output)
    return 0


def _run_categories(parsed_args: argparse.Namespace, registry: CategoryRegistry) -> int:
    if parsed_args.action == "list":
        for category in registry.categories:
            kind = "custom" if category.is_custom else "built-in"
            print(f"  {category.id:<20} {category.name:<20} [{kind}] {category.description}")
        return 0

    if parsed_args.action == "create":
        category = registry.create_category(
            parsed_args.name, parsed_args.description, color=parsed_args.color
        )
        print(f"\n✅ Created category '{category.name}' (id={category.id})\n")
        return 0

    threads = load_threads(parsed_args.threads) if parsed_args.threads else []
    outcome = registry.delete_category(parsed_args.category_id, threads=threads)
    print(
        f"\n✅ Deleted category '{outcome.deleted.name}', "
        f"{outcome.reassigned_count} threads reassigned\n"
    )
    if outcome.degraded:
        print("⚠️  Model unavailable: orphaned threads moved to the default category\n")
    if threads:
        print_partition(outcome.partition, verbose=parsed_args.verbose)
    if parsed_args.output:
        write_result(outcome.partition, parsed_args.output)
    return 0


def main(args: Optional[list[str]] = None) -> int:
    """
    Main CLI entry point.

    This function is structured to be testable: pass an explicit ``args`` list
    instead of relying on ``sys.argv``.

    Args:
        args: Command line arguments (uses sys.argv if None).

    Returns:
        int: Exit code (0 for success, 1 for error).
    """
    parsed_args = _build_parser().parse_args(args)

    if parsed_args.verbose:
        log_level = "DEBUG"
    else:
        log_level = parsed_args.log_level or get_settings().log_level
    setup_logging(log_level)

    logger = logging.getLogger(__name__)

    try:
        registry = build_registry(parsed_args.user)
        if parsed_args.command == "classify":
            return _run_classify(parsed_args, registry)
        return _run_categories(parsed_args, registry)

    except Exception as e:
        logger.exception("Fatal error")
        print(f"\n❌ Error: {e}\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())
