"""
Identity Resolution Weights Configuration.

Central configuration for the policy values used in:
- Evidence collection (how much each kind of textual signal counts)
- Confidence tier assignment
- Candidate merging and result caps

Edit this file to tune resolution behavior. None of these values are
structural; tiers stay ordered and monotonic for any thresholds where
HIGH_CONFIDENCE_MIN_COUNT >= MEDIUM_CONFIDENCE_MIN_COUNT.
"""

# =============================================================================
# EVIDENCE WEIGHTS
# =============================================================================

# A whole-word mention of the term in something you wrote ("hey mandy")
MENTION_WEIGHT = 1

# A first-person signal in something you received ("it's Mandy", "-Mandy")
# is a stronger identity signal than you using the name.
SELF_REFERENCE_WEIGHT = 2

# Prefix used on self-reference example snippets
SELF_REFERENCE_TAG = "[Self-reference]"


# =============================================================================
# CONFIDENCE TIERS
# =============================================================================
# count > HIGH_CONFIDENCE_MIN_COUNT -> high
# count > MEDIUM_CONFIDENCE_MIN_COUNT -> medium
# otherwise -> low

HIGH_CONFIDENCE_MIN_COUNT = 10
MEDIUM_CONFIDENCE_MIN_COUNT = 3


# =============================================================================
# MERGING / OUTPUT CAPS
# =============================================================================

# Only the strongest matches from each evidence source are merged
MAX_MATCHES_PER_SOURCE = 5

# Examples kept on a merged candidate (across sources)
MAX_CANDIDATE_EXAMPLES = 10


# =============================================================================
# SEARCH
# =============================================================================

DEFAULT_SEARCH_RESULTS = 20
MAX_SEARCH_RESULTS = 100
MAX_CONTEXT_MESSAGES = 10
DEFAULT_CONVERSATION_MESSAGES = 30

# Markup placed around highlighted terms
HIGHLIGHT_MARKER = "**"

# Result text truncation in API responses
RESULT_TEXT_LENGTH = 500
CONTEXT_TEXT_LENGTH = 200
