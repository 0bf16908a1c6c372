"""Default configuration values for tradeguard.

This module centralizes the hard-coded numbers of the trade security
subsystem (score weights, tier thresholds, constraint tables, penalty
weights, file names) into a single location. Modules import these
constants instead of hard-coding values.

Usage:
    from tradeguard.config.defaults import (
        TRUST_BASE_SCORE,
        TIER_THRESHOLD_LOW_RISK,
        VIOLATION_PENALTY_FAKE,
    )
"""

from __future__ import annotations

# =============================================================================
# Trust Score Defaults
# =============================================================================

TRUST_BASE_SCORE = 50
TRUST_DEFAULT_SCORE = 50  # Returned when a profile cannot be read
TRUST_MIN_SCORE = 0
TRUST_MAX_SCORE = 100

# Account age: +2 per full 30-day month, capped
TRUST_AGE_DAYS_PER_STEP = 30
TRUST_AGE_POINTS_PER_STEP = 2
TRUST_AGE_BONUS_CAP = 15

# Completed trades: +2 each, capped
TRUST_TRADE_POINTS = 2
TRUST_TRADE_BONUS_CAP = 25

# Average rating above the neutral mark: +5 per star
TRUST_RATING_NEUTRAL = 3.0
TRUST_RATING_POINTS_PER_STAR = 5

# Violations counted in the total but not attributed to a kind
TRUST_UNATTRIBUTED_VIOLATION_PENALTY = 5

# Cancellation rate of 1.0 costs the full weight
TRUST_CANCELLATION_WEIGHT = 20

# Label buckets for display
TRUST_LABEL_EXCELLENT = 80
TRUST_LABEL_GOOD = 60
TRUST_LABEL_AVERAGE = 40
TRUST_LABEL_LOW = 20


# =============================================================================
# Risk Tier Defaults
# =============================================================================

# Lowest-score thresholds, evaluated top-down
TIER_THRESHOLD_LOW_RISK = 80
TIER_THRESHOLD_MEDIUM_RISK = 60
TIER_THRESHOLD_HIGH_RISK = 40
TIER_THRESHOLD_VERY_HIGH_RISK = 0

# Max delivery window per tier (days)
TIER_DELIVERY_DAYS_LOW_RISK = 14
TIER_DELIVERY_DAYS_MEDIUM_RISK = 10
TIER_DELIVERY_DAYS_HIGH_RISK = 7
TIER_DELIVERY_DAYS_VERY_HIGH_RISK = 5


# =============================================================================
# Violation Ledger Defaults
# =============================================================================

VIOLATION_PENALTY_NOT_SHIPPED = 15
VIOLATION_PENALTY_WRONG_ITEM = 10
VIOLATION_PENALTY_DAMAGED = 8
VIOLATION_PENALTY_FAKE = 20
VIOLATION_PENALTY_COMMUNICATION_ISSUE = 5


# =============================================================================
# Rating Defaults
# =============================================================================

RATING_MIN = 1
RATING_MAX = 5
RATING_AVERAGE_DECIMALS = 1


# =============================================================================
# Audit Defaults
# =============================================================================

AUDIT_DEFAULT_LEVEL = "INFO"  # "DEBUG", "INFO", "WARN", "ERROR"
AUDIT_DEFAULT_SAMPLE_RATE = 0.1  # 10% sample for DEBUG events


# =============================================================================
# File Names
# =============================================================================

DATA_DIR_NAME = ".tradeguard"
AUDIT_LOG_FILENAME = "audit.jsonl"
TRADES_DB_FILENAME = "trades.db"
