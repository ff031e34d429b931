"""
Governance Optimization Engine Constants

This module consolidates the protocol defaults and environment configuration
used throughout the engine. Constants are organized by category for easy
reference and maintenance. Typed, per-deployment overrides live in
govopt/config/loader.py; the values here are the defaults it falls back to.
"""
import ast
from dotenv import dotenv_values

# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================
# Load environment variables once at module import
_config = dotenv_values(".env")

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
    'GOVOPT_LOG_TO_FILE':              'True',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024 # 10MB
LOG_BACKUP_COUNT = 5


# ==================================================================================
# FIXED-POINT ARITHMETIC
# ==================================================================================
BPS_DENOMINATOR = 10_000  # 100.00%
HASH_SIZE = 32            # keccak-256 digest length in bytes


# ==================================================================================
# PROPOSAL CONTEXT LIMITS
# ==================================================================================
MIN_URGENCY_LEVEL = 0
MAX_URGENCY_LEVEL = 10
MAX_REQUIRED_EXPERTISE_DOMAINS = 16
MAX_STAKEHOLDERS = 256
MAX_TARGET_ACTIONS = 32


# ==================================================================================
# VOTING MODULE DEFAULTS
# ==================================================================================
GOVERNANCE_APPROVAL_THRESHOLD_BPS = 5_100        # 51.00% of counted weight
GOVERNANCE_QUORUM_WEIGHT = 1_000                 # Absolute counted weight
GOVERNANCE_QUORUM_URGENCY_DISCOUNT_BPS = 500     # -5% quorum per urgency level
GOVERNANCE_QUORUM_MAX_DISCOUNT_BPS = 5_000       # Never below half the base quorum
GOVERNANCE_VOTING_PERIOD_SECONDS = 7 * 86400
GOVERNANCE_MIN_VOTING_PERIOD_SECONDS = 3600
GOVERNANCE_STAKEHOLDER_BOOST_BPS = 20_000        # 2x for listed stakeholders
GOVERNANCE_EXPERTISE_MAX_BOOST_BPS = 10_000      # Expertise can at most double weight
GOVERNANCE_HYBRID_BLEND_BPS = 5_000              # 50/50 token vs expertise


# ==================================================================================
# MODULE SELECTION DEFAULTS
# ==================================================================================
SELECTION_WEIGHT_SUCCESS = 5
SELECTION_WEIGHT_PARTICIPATION = 3
SELECTION_WEIGHT_EXECUTION_TIME = 2
SELECTION_NEUTRAL_PRIOR_BPS = 5_000
SELECTION_EWMA_ALPHA_BPS = 2_000                 # Newest sample carries 20%
SELECTION_MAX_EXECUTION_TIME_SECONDS = 30 * 86400


# ==================================================================================
# COMMIT-REVEAL DEFAULTS
# ==================================================================================
PRIVACY_COMMIT_PERIOD_SECONDS = 3 * 86400
PRIVACY_REVEAL_PERIOD_SECONDS = 2 * 86400
PRIVACY_MIN_PHASE_SECONDS = 600
PRIVACY_MIN_EXPERTISE_SCORE = 50
PRIVACY_ALLOW_COMMITMENT_OVERWRITE = False


# ==================================================================================
# EXPERTISE DEFAULTS
# ==================================================================================
EXPERTISE_MIN_SCORE = 0
EXPERTISE_MAX_SCORE = 100
EXPERTISE_MIN_VERIFIERS = 2
EXPERTISE_ATTESTATION_WINDOW_SECONDS = 30 * 86400
EXPERTISE_AGGREGATION = "average"                # "average" | "median"
EXPERTISE_DECAY_FLOOR_BPS = 2_500                # 25% of stored score at validUntil


# ==================================================================================
# .ENV-BACKED SETTINGS
# ==================================================================================
def parse_bool(v):
    """
    "True"/"False" in any casing (surrounding whitespace allowed) become a
    bool; anything else is returned unchanged.
    """
    if isinstance(v, str) and v.strip().casefold() in ("true", "false"):
        return ast.literal_eval(v.strip().title())
    return v


class ConfigString(str):
    """A .env string setting that remembers its built-in default."""

    def __new__(cls, value, default):
        obj = super().__new__(cls, value)
        obj._default = default
        return obj

    def default(self):
        return self._default


class ConfigBool(int):
    """A .env boolean setting that remembers its built-in default."""

    def __new__(cls, value, default):
        obj = super().__new__(cls, bool(value))
        obj._default = default
        return obj

    def default(self):
        return self._default

    def __eq__(self, other):
        return bool(self) == other

    __hash__ = int.__hash__

    def __repr__(self):
        return repr(bool(self))

    __str__ = __repr__


def _load_setting(key, default_raw):
    # dotenv_values maps keys without a value to None
    raw = _config.get(key)
    if raw is None:
        raw = default_raw
    value = parse_bool(raw)
    if isinstance(value, bool):
        return ConfigBool(value, parse_bool(default_raw))
    return ConfigString(raw, default_raw)


LOG_LEVEL = _load_setting('LOG_LEVEL', LOGGER_DEFAULTS['LOG_LEVEL'])
LOG_FORMAT = _load_setting('LOG_FORMAT', LOGGER_DEFAULTS['LOG_FORMAT'])
LOG_DATE_FORMAT = _load_setting('LOG_DATE_FORMAT', LOGGER_DEFAULTS['LOG_DATE_FORMAT'])
LOG_CONSOLE_HIGHLIGHTING = _load_setting(
    'LOG_CONSOLE_HIGHLIGHTING', LOGGER_DEFAULTS['LOG_CONSOLE_HIGHLIGHTING']
)
GOVOPT_LOG_TO_FILE = _load_setting('GOVOPT_LOG_TO_FILE', LOGGER_DEFAULTS['GOVOPT_LOG_TO_FILE'])
