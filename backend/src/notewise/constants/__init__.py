"""Configuration constants.

Re-exports all constants for convenient importing:
    from notewise.constants import TITLE_PHRASE_SCORE, STOPWORDS
"""

from notewise.constants.search import *  # noqa: F403
from notewise.constants.duplicates import *  # noqa: F403
from notewise.constants.jobs import *  # noqa: F403
