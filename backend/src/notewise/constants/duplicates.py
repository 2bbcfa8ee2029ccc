"""Duplicate detection constants."""

# =============================================================================
# Content Similarity Blend
# =============================================================================
# Content similarity mixes a character-bigram measure (sensitive to wording)
# with token Jaccard (sensitive to vocabulary).

CONTENT_BIGRAM_WEIGHT = 0.6
CONTENT_JACCARD_WEIGHT = 0.4

# =============================================================================
# Merging
# =============================================================================

MERGE_SEPARATOR = "\n\n---\n\n"

# Reported similarities are rounded to this many decimals.
SIMILARITY_PRECISION = 3
