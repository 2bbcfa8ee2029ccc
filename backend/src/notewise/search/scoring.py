"""Lexical relevance scoring for notes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Optional

from notewise.config import settings_or_defaults
from notewise.constants.search import (
    CONTENT_KEYWORD_SCORE,
    CONTENT_PHRASE_SCORE,
    LONG_NOTE_PENALTY,
    LONG_NOTE_WORDS,
    MAX_REASONS,
    RECENCY_SCORE_PER_DAY,
    RECENCY_WINDOW_DAYS,
    SWEET_SPOT_BONUS,
    SWEET_SPOT_MAX_WORDS,
    SWEET_SPOT_MIN_WORDS,
    TAG_MATCH_SCORE,
    TITLE_KEYWORD_SCORE,
    TITLE_PHRASE_SCORE,
)
from notewise.notes.schemas import Note


@dataclass
class ScoreBreakdown:
    """A note's score with the signals that produced it.

    Attributes:
        score: Total score, never negative, rounded to 2 decimals.
        reasons: Human-readable explanations, strongest first, at most MAX_REASONS.
        factors: Points contributed by each signal that fired.
    """

    score: float
    reasons: list[str] = field(default_factory=list)
    factors: dict[str, float] = field(default_factory=dict)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


class TextScorer:
    """Additive multi-signal scorer.

    Signals in decreasing weight: phrase in title, phrase in content,
    keywords in title and content, tag overlap, semantic similarity (passed
    in), recency, length shaping and past ranking feedback. Reasons explain
    a score; they do not affect it.
    """

    def __init__(self, history_weight: Optional[float] = None) -> None:
        self.history_weight = (
            history_weight if history_weight is not None else settings_or_defaults().search.history_weight
        )

    def score(
        self,
        note: Note,
        query: str,
        keywords: list[str],
        semantic_similarity: float = 0.0,
        semantic_points: float = 0.0,
        history_score: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> ScoreBreakdown:
        """Score a note against a query.

        Args:
            note: Note to score.
            query: Raw query string.
            keywords: Keywords extracted from the query.
            semantic_similarity: Best chunk similarity in [0, 1], for the reason text.
            semantic_points: Points the semantic matcher awarded.
            history_score: Most recent ranking score for a matching query, if any.
            now: Reference time for recency, defaults to the current time.

        Returns:
            ScoreBreakdown for the note.
        """
        now = now or datetime.now(UTC)
        title = note.title.lower()
        content = note.content.lower()
        phrase = query.strip().lower()

        signals: list[tuple[str, float, str]] = []

        if phrase and phrase in title:
            signals.append(("title_phrase", TITLE_PHRASE_SCORE, "Exact match in title"))
        if phrase and phrase in content:
            signals.append(("content_phrase", CONTENT_PHRASE_SCORE, "Exact phrase match in content"))

        title_hits = sum(1 for keyword in keywords if keyword in title)
        content_hits = sum(1 for keyword in keywords if keyword in content)
        if title_hits:
            signals.append(
                ("title_keywords", title_hits * TITLE_KEYWORD_SCORE, f"{title_hits} keyword(s) in title")
            )
        if content_hits:
            signals.append(
                (
                    "content_keywords",
                    content_hits * CONTENT_KEYWORD_SCORE,
                    f"{content_hits} keyword(s) in content",
                )
            )

        matched_tags = [tag for tag in note.tags if any(keyword in tag.lower() for keyword in keywords)]
        if matched_tags:
            signals.append(
                ("tags", len(matched_tags) * TAG_MATCH_SCORE, f"Tag matches: {', '.join(matched_tags)}")
            )

        if semantic_points > 0:
            signals.append(
                ("semantic", semantic_points, f"Semantic similarity: {semantic_similarity * 100:.1f}%")
            )

        days = (now - _as_utc(note.updated_at)).days
        if 0 <= days <= RECENCY_WINDOW_DAYS:
            bonus = (RECENCY_WINDOW_DAYS - days) * RECENCY_SCORE_PER_DAY
            if bonus > 0:
                signals.append(("recency", bonus, "Recently updated"))

        words = note.word_count
        if SWEET_SPOT_MIN_WORDS < words < SWEET_SPOT_MAX_WORDS:
            signals.append(("length", SWEET_SPOT_BONUS, "Well-sized note"))
        elif words > LONG_NOTE_WORDS:
            signals.append(("length", -LONG_NOTE_PENALTY, "Very long note"))

        if history_score and history_score > 0:
            signals.append(("history", history_score * self.history_weight, "Previously relevant"))

        total = sum(points for _, points, _ in signals)
        ranked = sorted(signals, key=lambda signal: abs(signal[1]), reverse=True)
        return ScoreBreakdown(
            score=round(max(0.0, total), 2),
            reasons=[reason for _, _, reason in ranked[:MAX_REASONS]],
            factors={name: round(points, 2) for name, points, _ in signals},
        )
