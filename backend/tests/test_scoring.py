"""Lexical scoring and keyword tests."""

from datetime import datetime, timedelta, UTC

from hypothesis import given, settings, strategies as st

from conftest import build_note
from notewise.search.keywords import (
    create_excerpt,
    extract_highlight,
    extract_keywords,
    highlight_text,
)
from notewise.search.scoring import TextScorer


# =============================================================================
# Keywords
# =============================================================================


def test_keywords_drop_stopwords_and_short_tokens():
    assert extract_keywords("The plan for Q1 and the roadmap") == ["plan", "roadmap"]


def test_keywords_are_deduplicated_and_capped():
    query = " ".join(f"term{i}" for i in range(20)) + " term0"

    keywords = extract_keywords(query, max_keywords=10)

    assert len(keywords) == 10
    assert keywords[0] == "term0"
    assert len(set(keywords)) == 10


def test_highlight_marks_every_match_case_insensitively():
    assert highlight_text("Roadmap and roadmap", "roadmap") == "**Roadmap** and **roadmap**"


def test_extract_highlight_windows_first_match():
    content = "x" * 200 + " the roadmap " + "y" * 200

    snippet = extract_highlight(content, "roadmap", context_chars=20)

    assert snippet.startswith("...") and snippet.endswith("...")
    assert "**roadmap**" in snippet


def test_extract_highlight_empty_without_match():
    assert extract_highlight("nothing here", "roadmap") == ""


def test_excerpt_falls_back_to_opening():
    assert create_excerpt("short body", "absent", max_length=50) == "short body"
    assert create_excerpt("a" * 60, "absent", max_length=50) == "a" * 50 + "..."


# =============================================================================
# Scoring
# =============================================================================


def score(note, query, **kwargs):
    scorer = TextScorer(history_weight=0.1)
    return scorer.score(note, query, extract_keywords(query), **kwargs)


def test_title_phrase_outranks_isolated_body_keyword():
    """A note titled with the exact phrase beats one mentioning a single keyword."""
    titled = build_note(1, "Project Roadmap 2024", "Milestones for the year.")
    mentioned = build_note(2, "Misc", "The roadmap is unclear.")

    titled_score = score(titled, "project roadmap")
    mentioned_score = score(mentioned, "project roadmap")

    assert titled_score.score > mentioned_score.score
    assert titled_score.reasons[0] == "Exact match in title"
    assert "title_phrase" in titled_score.factors
    assert "title_phrase" not in mentioned_score.factors


def test_phrase_in_content_beats_keywords_in_content():
    phrase = build_note(1, "Notes", "We reviewed the project roadmap today.", age_days=30)
    scattered = build_note(2, "Notes", "The roadmap of the project.", age_days=30)

    assert score(phrase, "project roadmap").score > score(scattered, "project roadmap").score


def test_tag_matches_add_points():
    tagged = build_note(1, "Weekly sync", tags=["roadmap"], age_days=30)
    untagged = build_note(2, "Weekly sync", age_days=30)

    assert score(tagged, "roadmap").factors["tags"] == 15.0
    assert score(untagged, "roadmap").score == 0.0


def test_recency_bonus_decays_linearly():
    fresh = build_note(1, "roadmap")
    older = build_note(2, "roadmap", age_days=3)
    stale = build_note(3, "roadmap", age_days=10)
    now = datetime.now(UTC) + timedelta(seconds=1)

    assert score(fresh, "roadmap", now=now).factors["recency"] == 14.0
    assert score(older, "roadmap", now=now).factors["recency"] == 8.0
    assert "recency" not in score(stale, "roadmap", now=now).factors


def test_length_shaping():
    sweet = build_note(1, "roadmap", " ".join(["word"] * 200), age_days=30)
    huge = build_note(2, "roadmap", " ".join(["word"] * 2500), age_days=30)

    assert score(sweet, "roadmap").factors["length"] == 5.0
    assert score(huge, "roadmap").factors["length"] == -10.0


def test_history_feedback_is_a_fraction_of_past_score():
    note = build_note(1, "roadmap", age_days=30)

    result = score(note, "roadmap", history_score=120.0)

    assert result.factors["history"] == 12.0
    assert "Previously relevant" in result.reasons


def test_semantic_points_are_folded_in():
    note = build_note(1, "Unrelated title", age_days=30)

    result = score(note, "roadmap", semantic_similarity=0.8, semantic_points=40.0)

    assert result.score == 40.0
    assert result.reasons == ["Semantic similarity: 80.0%"]


def test_zero_semantic_contributes_nothing():
    note = build_note(1, "roadmap", age_days=30)

    assert "semantic" not in score(note, "roadmap", semantic_similarity=0.0, semantic_points=0.0).factors


def test_reasons_are_capped_at_five():
    note = build_note(
        1,
        "project roadmap",
        "the project roadmap " + " ".join(["filler"] * 100),
        tags=["project", "roadmap"],
    )

    result = score(note, "project roadmap", semantic_similarity=0.5, semantic_points=25.0, history_score=50.0)

    assert len(result.factors) > 5
    assert len(result.reasons) == 5


def test_long_note_penalty_never_goes_negative():
    huge = build_note(1, "Unrelated", " ".join(["word"] * 2500), age_days=30)

    assert score(huge, "anything").score == 0.0


def test_naive_timestamps_are_treated_as_utc():
    note = build_note(1, "roadmap").model_copy(update={"updated_at": datetime.now(UTC).replace(tzinfo=None)})

    assert score(note, "roadmap").factors["recency"] == 14.0


@given(
    title=st.text(max_size=40),
    content=st.text(max_size=400),
    query=st.text(max_size=30),
    tags=st.lists(st.text(max_size=10), max_size=5),
    age_days=st.floats(min_value=-1, max_value=400),
    history=st.one_of(st.none(), st.floats(min_value=-100, max_value=1000)),
)
@settings(max_examples=200, deadline=None)
def test_score_is_never_negative(title, content, query, tags, age_days, history):
    note = build_note(1, title, content, tags=tags, age_days=age_days)

    result = score(note, query, history_score=history)

    assert result.score >= 0
    assert len(result.reasons) <= 5
