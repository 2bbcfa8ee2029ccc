"""Background job constants.

Retry policy per job kind mirrors how much partial progress each kind
captures on its own: batch jobs record per-item outcomes, so they run once.
"""

# =============================================================================
# Priorities
# =============================================================================
# Higher numbers run first.

PRIORITY_HIGH = 1
PRIORITY_NORMAL = 0
PRIORITY_LOW = -1

# Delay before a duplicate scan starts; saves within it share one pending scan.
DUPLICATE_SCAN_DELAY_SECONDS = 1.0

# Progress is logged at these percentage steps.
PROGRESS_LOG_STEP = 25
