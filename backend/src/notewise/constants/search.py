"""Search scoring constants.

These weights drive the additive lexical score computed for every candidate
note. Each signal is independent; a note's final score is the sum of the
signals it triggers, so the relative sizes below define the ranking order
of the signals themselves.
"""

# =============================================================================
# Phrase and Keyword Weights
# =============================================================================
# An exact phrase hit in the title is the strongest signal we have, followed
# by a phrase hit in the body. Individual keywords count far less, and a
# keyword in the title counts double one in the body.

TITLE_PHRASE_SCORE = 100.0
CONTENT_PHRASE_SCORE = 80.0
TITLE_KEYWORD_SCORE = 20.0
CONTENT_KEYWORD_SCORE = 10.0
TAG_MATCH_SCORE = 15.0

# =============================================================================
# Recency
# =============================================================================
# Notes updated within RECENCY_WINDOW_DAYS get a linearly decaying boost of
# RECENCY_SCORE_PER_DAY for each day left in the window.

RECENCY_WINDOW_DAYS = 7
RECENCY_SCORE_PER_DAY = 2.0

# =============================================================================
# Length Shaping
# =============================================================================
# Mid-sized notes tend to be the useful ones; very long notes are usually
# dumps that match everything.

SWEET_SPOT_MIN_WORDS = 50
SWEET_SPOT_MAX_WORDS = 1000
SWEET_SPOT_BONUS = 5.0
LONG_NOTE_WORDS = 2000
LONG_NOTE_PENALTY = 10.0

# =============================================================================
# Explainability
# =============================================================================

MAX_REASONS = 5
MAX_HIGHLIGHTS = 3
HIGHLIGHT_CONTEXT_CHARS = 100

# =============================================================================
# Keyword Extraction
# =============================================================================
# Keywords shorter than MIN_KEYWORD_LENGTH + 1 characters and the stopwords
# below are dropped before matching.

MIN_KEYWORD_LENGTH = 2
STOPWORDS = frozenset(
    {"the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by"}
)

# =============================================================================
# Chunk Retrieval
# =============================================================================
# Chunk-level lexical scores feed the chat context. Raw points are divided by
# CHUNK_SCORE_SCALE to land in [0, 1], and chunks under
# CHUNK_MIN_SIMILARITY are not worth a place in the prompt.

CHUNK_PHRASE_SCORE = 10.0
CHUNK_TITLE_PHRASE_SCORE = 8.0
CHUNK_KEYWORD_SCORE = 2.0
CHUNK_TITLE_KEYWORD_SCORE = 3.0
CHUNK_SHORT_BONUS = 1.0
CHUNK_SHORT_CHARS = 500
CHUNK_SCORE_SCALE = 10.0
CHUNK_MIN_SIMILARITY = 0.1

# =============================================================================
# Facets
# =============================================================================

FACET_DATE_BUCKETS = (("last_7_days", 7), ("last_30_days", 30), ("last_90_days", 90))
