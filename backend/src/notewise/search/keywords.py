"""Query keyword extraction and result text markup."""

import re

from notewise.constants.search import (
    HIGHLIGHT_CONTEXT_CHARS,
    MIN_KEYWORD_LENGTH,
    STOPWORDS,
)

WORD_PATTERN = re.compile(r"\w+")


def extract_keywords(query: str, max_keywords: int = 10) -> list[str]:
    """Extract matchable keywords from a raw query.

    Lowercases the query, splits it into word tokens, and drops stopwords
    and tokens of MIN_KEYWORD_LENGTH characters or fewer. Repeated tokens
    count once.

    Args:
        query: Raw user query.
        max_keywords: Maximum keywords returned.

    Returns:
        Keywords in query order.
    """
    keywords: list[str] = []
    for token in WORD_PATTERN.findall(query.lower()):
        if len(token) <= MIN_KEYWORD_LENGTH or token in STOPWORDS or token in keywords:
            continue
        keywords.append(token)
        if len(keywords) >= max_keywords:
            break
    return keywords


def highlight_text(text: str, term: str) -> str:
    """Wrap every case-insensitive occurrence of term in **bold** markers."""
    if not term:
        return text
    pattern = re.compile(re.escape(term), re.IGNORECASE)
    return pattern.sub(lambda m: f"**{m.group(0)}**", text)


def extract_highlight(content: str, term: str, context_chars: int = HIGHLIGHT_CONTEXT_CHARS) -> str:
    """Highlighted window of content around the first occurrence of term.

    Returns an empty string when term does not occur.
    """
    index = content.lower().find(term.lower()) if term else -1
    if index == -1:
        return ""

    start = max(0, index - context_chars // 2)
    end = min(len(content), index + len(term) + context_chars // 2)
    window = content[start:end]
    if start > 0:
        window = "..." + window
    if end < len(content):
        window = window + "..."
    return highlight_text(window, term)


def create_excerpt(content: str, query: str, max_length: int) -> str:
    """Excerpt of content centred on the query, or its opening when absent."""
    index = content.lower().find(query.lower()) if query else -1
    if index == -1:
        return content[:max_length] + ("..." if len(content) > max_length else "")

    start = max(0, index - max_length // 2)
    end = min(len(content), start + max_length)
    excerpt = content[start:end]
    if start > 0:
        excerpt = "..." + excerpt
    if end < len(content):
        excerpt = excerpt + "..."
    return excerpt.strip()
