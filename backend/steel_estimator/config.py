"""
Engine configuration — single source of truth for unit conversions,
Bid Coach thresholds, recalculation bounds and runtime environment.

Import from here in all services rather than hardcoding values.
"""
from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()

# ── Units ──────────────────────────────────────────────────────────────────────
# Weights are carried in pounds; one short ton is 2000 lb.
WEIGHT_UNITS_PER_TON: float = 2000.0


# ── Line tagging ───────────────────────────────────────────────────────────────
ALLOWANCE_CATEGORY_TAG: str = "Allowances"
BID_COACH_SUBCATEGORY_TAG: str = "Bid Coach"
STATUS_VOID: str = "Void"
STATUS_ACTIVE: str = "Active"


# ── Bid Coach: labor rate inference ────────────────────────────────────────────
# Used when neither the estimate lines nor company settings carry a positive rate.
FALLBACK_LABOR_RATE: float = 45.0


# ── Bid Coach: target policy ───────────────────────────────────────────────────
PROTECT_BUFFER_FACTOR: float = 1.05      # no history: +5 % over current
WIN_FALLBACK_FACTOR: float = 1.10        # no history: aim 10 % over current
WIN_GAP_CLOSURE: float = 0.5             # close half of the gap in Win Strategy


# ── Bid Coach: confidence ──────────────────────────────────────────────────────
CONFIDENCE_HIGH_MIN_PROJECTS: int = 10
CONFIDENCE_MEDIUM_MIN_PROJECTS: int = 5
# A low-confidence recommendation is promoted to medium above this gap (%)
CONFIDENCE_GAP_UPGRADE_PCT: float = 15.0


# ── Bid Coach: filtering and ranking ───────────────────────────────────────────
MIN_DELTA_PER_TON: float = 0.01          # MH/ton
MATERIAL_GAP_PCT: float = 5.0
MAX_RECOMMENDATIONS: int = 6

# Coach status banding on total recommended hours
COACH_STATUS_WARNING_HOURS: float = 25.0
COACH_STATUS_NEUTRAL_HOURS: float = 10.0


# ── Live recalculation ─────────────────────────────────────────────────────────
EFFICIENCY_MIN: float = 0.5
EFFICIENCY_MAX: float = 2.0
ADJUSTMENT_LOG_LIMIT: int = 50

# Markup percentages a fresh interactive session starts from
DEFAULT_SESSION_MARKUP: dict[str, float] = {
    "overhead_percentage": 10.0,
    "profit_percentage": 10.0,
    "material_waste_percentage": 5.0,
    "labor_waste_percentage": 5.0,
}


# ── Historical fleet ───────────────────────────────────────────────────────────
WON_STATUS: str = "won"
LOST_STATUS: str = "lost"


# ── Runtime environment ────────────────────────────────────────────────────────
DATABASE_URL: str = os.getenv("DATABASE_URL", "")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json").lower()
