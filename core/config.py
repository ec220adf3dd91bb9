"""Configuration constants for typesight application."""

WORDS_PER_PHASE = 5           # Attempts per phase before a transition

# Difficulty tiers
TIERS = ['easy', 'medium', 'hard']
DEFAULT_TIER = 'easy'
HARD_ACCURACY_THRESHOLD = 90    # Rolling accuracy at or above this -> hard
MEDIUM_ACCURACY_THRESHOLD = 70  # Rolling accuracy at or above this -> medium
INITIAL_ROLLING_ACCURACY = 100.0

# Offline words used when the word supplier is unavailable
FALLBACK_WORDS = ['cat', 'dog', 'sun', 'tree', 'book']

# UX delays (ms)
WORD_DISPLAY_DELAY_MS = 1000  # Pause before showing a word
FEEDBACK_DELAY_MS = 1600      # Time feedback stays up before the next word
AI_THINKING_DELAY_MS = 2000   # Minimum "analyzing" pause between phases

# Remote call policy
REMOTE_CALL_TIMEOUT_SECONDS = 30
WORD_SUPPLY_ATTEMPTS = 3      # Tries before falling back to an offline word
SAVE_ATTEMPTS = 3             # Tries on the normal completion save
ANALYSIS_ATTEMPTS = 2         # One retry only
RETRY_BACKOFF_MS = 250        # First backoff, doubled on each retry

# Targeted phase
TARGETED_BATCH_SIZE = 5

# Server session registry
FINISHED_SESSION_RETENTION_SECONDS = 600  # Completed/aborted sessions stay readable this long
