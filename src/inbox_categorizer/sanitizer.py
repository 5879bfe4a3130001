"""Snippet sanitization and sender heuristics.

Objective:
    Convert thread snippets returned by the mail provider (plain text with
    HTML entities, occasionally raw HTML) into a compact, safe plain-text
    representation suitable for LLM prompting.

Responsibilities:
    - Strip potentially dangerous HTML elements (e.g., ``<script>``).
    - Convert HTML to markdown-ish text to preserve some structure.
    - Normalize and compress whitespace.
    - Provide small utilities for sender inspection used by the rule-based
      scorer (address extraction, no-reply and notification detection).

High-level call tree:
    - :func:`sanitize_snippet`
        - :func:`html_to_markdown` (HTML input)
        - :func:`clean_text`
    - :func:`extract_sender_address`
    - :func:`is_noreply_address`
    - :func:`is_system_sender`

Security notes:
    Sanitization is intended to prevent prompt injection via raw HTML/script
    content, and to reduce noise/tokens sent to the LLM.
"""

import re

from bs4 import BeautifulSoup
from markdownify import markdownify as md

_HTML_TAG_RE = re.compile(r"<\s*/?\s*[a-zA-Z][^>]*>")


def html_to_markdown(html_content: str) -> str:
    """Convert HTML to markdown-like plain text.

    Scripts, styles and document metadata (head/meta/link) are removed with
    BeautifulSoup before calling ``markdownify``.

    Args:
        html_content: Raw HTML string.

    Returns:
        str: Markdown formatted text.
    """
    if not html_content:
        return ""

    soup = BeautifulSoup(html_content, "html.parser")
    for element in soup(["script", "style", "head", "meta", "link"]):
        element.decompose()

    return md(str(soup), heading_style="ATX")


def unescape_entities(text: str) -> str:
    """Decode HTML entities such as ``&#39;`` or ``&amp;``.

    Gmail snippets are plain text but keep HTML entities encoded.

    Args:
        text: Text possibly containing entities.

    Returns:
        str: Text with entities decoded.
    """
    if not text or "&" not in text:
        return text or ""
    return BeautifulSoup(text, "html.parser").get_text()


def clean_text(text: str) -> str:
    """Normalize and compact plain text.

    Removes:
    - HTML tags
    - Markdown links and images
    - Table separators
    - Horizontal rules
    - URLs
    - Multiple newlines and spaces
    - Special characters (except essential punctuation)

    Args:
        text: Raw text to clean.

    Returns:
        str: Cleaned text.
    """
    if not text:
        return ""

    # Remove any remaining HTML tags
    text = re.sub(r"<[^>]*>", "", text)

    # Remove Markdown images like ![alt](image-link)
    text = re.sub(r"!\[[^\]]*\]\([^)]*\)", "", text)

    # Remove Markdown links like [text](link)
    text = re.sub(r"\[([^\]]*)\]\([^)]*\)", r"\1", text)

    text = re.sub(r"\|", " ", text)
    text = re.sub(r"-{3,}", "", text)
    text = re.sub(r"https?://\S+", "", text)

    # Quoted reply lines
    text = re.sub(r"^>.*$", "", text, flags=re.MULTILINE)

    text = re.sub(r"\n+", " ", text)
    text = re.sub(r"[^\w\s.,!?@:;'\"&$%()/-]", "", text)
    text = re.sub(r"\s{2,}", " ", text)

    return text.strip()


def sanitize_snippet(snippet: str, max_length: int = 500) -> str:
    """Sanitize a thread snippet for prompting.

    Behavior:
        - Raw HTML is converted via :func:`html_to_markdown`.
        - Entities are decoded via :func:`unescape_entities`.
        - The result is normalized via :func:`clean_text` and truncated.

    Args:
        snippet: Raw snippet text.
        max_length: Maximum characters kept.

    Returns:
        str: Sanitized text ready for the prompt.
    """
    if not snippet:
        return ""

    if _HTML_TAG_RE.search(snippet):
        text = html_to_markdown(snippet)
    else:
        text = unescape_entities(snippet)

    cleaned = clean_text(text)
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length] + "..."
    return cleaned


def extract_sender_address(sender: str) -> str:
    """Extract the bare address from a From header.

    Handles ``"Name" <user@example.com>`` as well as bare addresses.

    Args:
        sender: Raw From header value.

    Returns:
        str: Lowercased address, or the lowercased input when no address is found.
    """
    if not sender:
        return ""

    match = re.search(r"<([^<>@\s]+@[^<>\s]+)>", sender)
    if match:
        return match.group(1).lower()

    match = re.search(r"[\w.+'-]+@[\w-]+(?:\.[\w-]+)+", sender)
    if match:
        return match.group(0).lower()
    return sender.strip().lower()


def is_noreply_address(email_address: str) -> bool:
    """Check whether an email address looks like a no-reply sender.

    The heuristic is substring-based and intentionally broad.

    Args:
        email_address: Email address to check.

    Returns:
        bool: True if it's a no-reply address.
    """
    if not email_address:
        return False

    noreply_patterns = [
        "noreply",
        "no-reply",
        "no_reply",
        "donotreply",
        "do-not-reply",
        "mailer-daemon",
        "postmaster",
    ]

    email_lower = email_address.lower()
    return any(pattern in email_lower for pattern in noreply_patterns)


def is_system_sender(sender: str) -> bool:
    """Check whether a From header belongs to an automated system.

    Covers no-reply addresses plus notification/alert style mailboxes.

    Args:
        sender: Raw From header value.

    Returns:
        bool: True for automated senders.
    """
    address = extract_sender_address(sender)
    if is_noreply_address(address):
        return True

    local_part = address.split("@", 1)[0]
    return any(
        marker in local_part
        for marker in ("notification", "notify", "alert", "automated", "mailer")
    )
