"""Inbox Categorizer package.

Objective:
    Sort a user's mail threads into a fixed set of built-in categories plus
    any number of user-defined custom categories:
    - Score threads deterministically with keyword and sender rules.
    - Use the Groq LLM when custom categories exist, in small batches, with
      per-thread fallback to the rules when the model misbehaves.
    - Redistribute threads when a custom category is deleted.

Key modules:
    - :mod:`src.inbox_categorizer.config`:
        Settings and the built-in category catalogue.
    - :mod:`src.inbox_categorizer.models`:
        Categories, threads, assignments and partitions.
    - :mod:`src.inbox_categorizer.scorer`:
        Rule-based scoring and selection.
    - :mod:`src.inbox_categorizer.categorizer`:
        Prompt construction, Groq calls, response parsing.
    - :mod:`src.inbox_categorizer.orchestrator`:
        Batching, deadline handling and partition assembly.
    - :mod:`src.inbox_categorizer.registry` /
      :mod:`src.inbox_categorizer.redistribution`:
        Per-user categories, creation and deletion.
    - :mod:`src.inbox_categorizer.store`:
        Category persistence (memory, file, Azure Blob).
    - :mod:`src.inbox_categorizer.thread_source`:
        Gmail thread fetching.
    - :mod:`src.inbox_categorizer.cli` / :mod:`src.inbox_categorizer.webapp`:
        User-facing entrypoints.
"""

__version__ = "0.1.0"
