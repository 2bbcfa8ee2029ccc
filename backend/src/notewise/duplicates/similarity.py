"""String and token similarity measures used for duplicate detection.

All measures are symmetric and return values in [0, 1]. Degenerate input
(empty strings, no tokens) yields 0.0 rather than an error.
"""

import re
from collections import Counter

from notewise.constants.duplicates import CONTENT_BIGRAM_WEIGHT, CONTENT_JACCARD_WEIGHT

MARKDOWN_CHARS = re.compile(r"[#*_`~]")
MARKDOWN_LINK = re.compile(r"\[([^\]]+)\]\([^)]+\)")
WHITESPACE = re.compile(r"\s+")
TOKEN = re.compile(r"\w+")


def dice_coefficient(first: str, second: str) -> float:
    """Sørensen-Dice coefficient over character bigrams, ignoring whitespace.

    Bigrams are counted as a multiset, so repeated pairs only match as many
    times as they occur in both strings.
    """
    a = WHITESPACE.sub("", first)
    b = WHITESPACE.sub("", second)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if len(a) < 2 or len(b) < 2:
        return 0.0

    bigrams_a = Counter(a[i : i + 2] for i in range(len(a) - 1))
    bigrams_b = Counter(b[i : i + 2] for i in range(len(b) - 1))
    overlap = sum((bigrams_a & bigrams_b).values())
    return 2.0 * overlap / (len(a) + len(b) - 2)


def jaccard_similarity(first: str, second: str) -> float:
    """Intersection over union of the word-token sets of two texts."""
    tokens_a = set(TOKEN.findall(first))
    tokens_b = set(TOKEN.findall(second))
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


def clean_content(content: str) -> str:
    """Strip markdown markup and normalise whitespace and case."""
    text = MARKDOWN_CHARS.sub("", content)
    text = MARKDOWN_LINK.sub(r"\1", text)
    return WHITESPACE.sub(" ", text).strip().lower()


def title_similarity(first: str, second: str) -> float:
    """Case-insensitive bigram similarity of two titles."""
    return dice_coefficient(first.lower(), second.lower())


def content_similarity(first: str, second: str) -> float:
    """Blend of bigram and token-set similarity over cleaned content."""
    a = clean_content(first)
    b = clean_content(second)
    return CONTENT_BIGRAM_WEIGHT * dice_coefficient(a, b) + CONTENT_JACCARD_WEIGHT * jaccard_similarity(a, b)
