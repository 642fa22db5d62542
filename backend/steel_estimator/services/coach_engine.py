"""
Bid Coach — target-adjustment recommendations against historical benchmarks.

Covers:
  1. Labor rate inference (first positive line rate → company rate → fallback)
  2. Target policy per mode (Protect Margin / Win Strategy)
  3. Gap, hours and cost impact with upward-only deltas
  4. Confidence tiers from won/lost sample size and gap size
  5. Inclusion filter, material-gap-first ranking, top-N truncation
  6. Status banner and selected-only summary
  7. Allowance line (commit payload) and the apply lifecycle
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from steel_estimator.config import (
    ALLOWANCE_CATEGORY_TAG,
    BID_COACH_SUBCATEGORY_TAG,
    COACH_STATUS_NEUTRAL_HOURS,
    COACH_STATUS_WARNING_HOURS,
    CONFIDENCE_GAP_UPGRADE_PCT,
    CONFIDENCE_HIGH_MIN_PROJECTS,
    CONFIDENCE_MEDIUM_MIN_PROJECTS,
    FALLBACK_LABOR_RATE,
    MATERIAL_GAP_PCT,
    MAX_RECOMMENDATIONS,
    MIN_DELTA_PER_TON,
    PROTECT_BUFFER_FACTOR,
    STATUS_ACTIVE,
    WIN_FALLBACK_FACTOR,
    WIN_GAP_CLOSURE,
)
from steel_estimator.models.estimate_models import CompanySettings, LineItem, MarkupSettings
from steel_estimator.services.aggregation_engine import (
    METRIC_LABOR_HOURS,
    AggregateTotals,
    LineAggregator,
    active_lines,
)
from steel_estimator.services.benchmark_engine import BenchmarkMaps, compare_categories
from steel_estimator.services.categories import ALLOWANCE, LABOR_CATEGORY_KEYS
from steel_estimator.services.estimate_store import LineItemStore
from steel_estimator.services.line_ids import next_allowance_line_id
from steel_estimator.services.perf_monitor import timed

logger = logging.getLogger("steel-estimator.coach")

MODE_PROTECT = "protect"
MODE_WIN = "win"
MODES = (MODE_PROTECT, MODE_WIN)

MODE_TITLES = {
    MODE_PROTECT: "Protect Margin",
    MODE_WIN: "Win Strategy",
}

EMPTY_SELECTION_MESSAGE = "Select at least one recommendation to apply."
APPLY_FAILED_MESSAGE = "Failed to apply Bid Coach adjustment."


class CommitError(RuntimeError):
    """The store rejected the allowance line; selection is kept for a retry."""


class CommitInProgressError(CommitError):
    """An apply is already in flight for this session."""


class EmptySelectionError(CommitError):
    """Apply was requested with no recommendation selected."""


def check_mode(mode: str) -> str:
    if mode not in MODES:
        raise ValueError(f"mode must be one of {MODES}, got '{mode}'")
    return mode


# ---------------------------------------------------------------------------
# 1. Labor rate inference
# ---------------------------------------------------------------------------

def infer_labor_rate(
    lines: Optional[Iterable[Any]],
    company_settings: Optional[CompanySettings] = None,
) -> float:
    """
    First positive ``laborRate`` among the lines (Void lines included), else
    the first positive company rate, else the fixed fallback.
    """
    for raw in lines or []:
        rate = LineItem.coerce(raw).labor_rate
        if rate > 0:
            return rate
    if company_settings is not None:
        rate = company_settings.first_positive_labor_rate()
        if rate:
            return rate
    return FALLBACK_LABOR_RATE


# ---------------------------------------------------------------------------
# 2–5. Recommendations
# ---------------------------------------------------------------------------

@dataclass
class CoachRecommendation:
    category_key: str
    label: str
    target_label: str
    current_value: float
    target_value: float
    delta_per_ton: float
    total_delta_hours: float
    est_cost_impact: float
    confidence: str
    rationale: str

    @property
    def id(self) -> str:
        return f"rec-{self.category_key}"

    @property
    def gap_pct(self) -> float:
        """(current − target) / target × 100; negative means below target."""
        if self.target_value > 0:
            return (self.current_value - self.target_value) / self.target_value * 100
        return 0.0

    @property
    def is_material_gap(self) -> bool:
        return abs(self.gap_pct) > MATERIAL_GAP_PCT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category_key": self.category_key,
            "label": self.label,
            "target_label": self.target_label,
            "current_value": self.current_value,
            "target_value": self.target_value,
            "delta_per_ton": self.delta_per_ton,
            "total_delta_hours": self.total_delta_hours,
            "est_cost_impact": self.est_cost_impact,
            "confidence": self.confidence,
            "rationale": self.rationale,
        }


def base_confidence(history_count: int) -> str:
    if history_count >= CONFIDENCE_HIGH_MIN_PROJECTS:
        return "high"
    if history_count >= CONFIDENCE_MEDIUM_MIN_PROJECTS:
        return "medium"
    return "low"


def select_target(key: str, current: float, benchmarks: BenchmarkMaps, mode: str):
    """Return ``(target, target_label)`` for one category under the mode policy."""
    win_loss_avg = benchmarks.win_loss_average(key)
    company_avg = benchmarks.all.get(key, 0.0)

    if mode == MODE_PROTECT:
        if win_loss_avg > 0:
            return win_loss_avg, "Won/Lost Avg"
        if company_avg > 0:
            return company_avg, "Company Avg"
        return (current * PROTECT_BUFFER_FACTOR if current > 0 else 0.0), "Suggested Buffer"

    if win_loss_avg > 0:
        hard_target, label = win_loss_avg, "Mid to Won/Lost"
    elif company_avg > 0:
        hard_target, label = company_avg, "Mid to Company"
    else:
        hard_target, label = current * WIN_FALLBACK_FACTOR, "Suggested Adjustment"
    partial = current + (hard_target - current) * WIN_GAP_CLOSURE
    return max(partial, 0.0), label


def _rationale(gap_pct: float, delta_per_ton: float, target_label: str, label: str) -> str:
    if gap_pct < -MATERIAL_GAP_PCT and delta_per_ton > MIN_DELTA_PER_TON:
        return (
            f"Current is {abs(gap_pct):.0f}% below {target_label}. "
            f"This often indicates under-carried hours for {label}."
        )
    return (
        f"Gap to {target_label} is small; treat as a minor adjustment "
        f"or leave as-is if you have known efficiencies."
    )


def _is_retained(rec: CoachRecommendation) -> bool:
    if rec.delta_per_ton > MIN_DELTA_PER_TON:
        return True
    return rec.target_value > 0 and rec.gap_pct < -MATERIAL_GAP_PCT


def recommend(
    current_totals: Union[AggregateTotals, Mapping[str, float]],
    benchmarks: BenchmarkMaps,
    mode: str = MODE_PROTECT,
    current_tons: float = 0.0,
    labor_rate: float = FALLBACK_LABOR_RATE,
) -> List[CoachRecommendation]:
    """
    Ranked recommendations for the current project.

    ``current_totals`` is either an AggregateTotals or a plain
    ``category → per-ton`` map. Only the labor-hours metric is coached;
    cost-metric inputs produce an empty list.
    """
    check_mode(mode)
    if isinstance(current_totals, AggregateTotals):
        if current_totals.metric != METRIC_LABOR_HOURS:
            return []
        current_map: Mapping[str, float] = current_totals.per_ton
    else:
        current_map = current_totals
    if benchmarks.metric != METRIC_LABOR_HOURS:
        return []

    confidence = base_confidence(benchmarks.history_count)
    tons = current_tons if current_tons > 0 else 0.0

    candidates: List[CoachRecommendation] = []
    for row in compare_categories(current_map, benchmarks.all, METRIC_LABOR_HOURS):
        if row.category not in LABOR_CATEGORY_KEYS or row.category == ALLOWANCE.key:
            continue

        current = row.current
        target, target_label = select_target(row.category, current, benchmarks, mode)
        delta_per_ton = max(target - current, 0.0)
        total_delta_hours = delta_per_ton * tons
        gap_pct = (current - target) / target * 100 if target > 0 else 0.0

        rec_confidence = confidence
        if confidence == "low" and abs(gap_pct) > CONFIDENCE_GAP_UPGRADE_PCT:
            rec_confidence = "medium"

        candidates.append(CoachRecommendation(
            category_key=row.category,
            label=row.label,
            target_label=target_label,
            current_value=current,
            target_value=target,
            delta_per_ton=delta_per_ton,
            total_delta_hours=total_delta_hours,
            est_cost_impact=total_delta_hours * labor_rate,
            confidence=rec_confidence,
            rationale=_rationale(gap_pct, delta_per_ton, target_label, row.label),
        ))

    retained = [rec for rec in candidates if _is_retained(rec)]
    retained.sort(key=lambda rec: (not rec.is_material_gap, -rec.total_delta_hours))
    return retained[:MAX_RECOMMENDATIONS]


# ---------------------------------------------------------------------------
# 6. Status and summary
# ---------------------------------------------------------------------------

def coach_status(recommendations: List[CoachRecommendation]) -> Dict[str, str]:
    if not recommendations:
        return {"label": "No strong signal", "tone": "neutral"}
    total_hours = sum(rec.total_delta_hours for rec in recommendations)
    if total_hours >= COACH_STATUS_WARNING_HOURS:
        return {"label": "Likely under-carried hours", "tone": "warning"}
    if total_hours >= COACH_STATUS_NEUTRAL_HOURS:
        return {"label": "Slightly under baseline", "tone": "neutral"}
    return {"label": "Within guardrails", "tone": "good"}


def coach_summary(
    recommendations: List[CoachRecommendation],
    selection: Optional[Mapping[str, bool]] = None,
) -> Optional[Dict[str, float]]:
    """Σ hours and Σ cost over the selected recommendations (unset keys count as selected)."""
    if not recommendations:
        return None
    selection = selection or {}
    chosen = [rec for rec in recommendations if selection.get(rec.category_key) is not False]
    return {
        "total_hours": sum(rec.total_delta_hours for rec in chosen),
        "total_cost": sum(rec.est_cost_impact for rec in chosen),
    }


# ---------------------------------------------------------------------------
# 7. Commit payload
# ---------------------------------------------------------------------------

def format_money(amount: float) -> str:
    return f"-${abs(amount):,.2f}" if amount < 0 else f"${amount:,.2f}"


def build_allowance_line(
    selected: List[CoachRecommendation],
    mode: str,
    existing_lines: Iterable[Any],
    labor_rate: float,
    won_count: int = 0,
    lost_count: int = 0,
) -> LineItem:
    """One synthetic allowance line carrying the summed hours and cost of ``selected``."""
    check_mode(mode)
    total_labor = sum(rec.total_delta_hours for rec in selected)
    labor_cost = total_labor * labor_rate
    breakdown = ", ".join(
        f"{rec.label}: +{rec.total_delta_hours:.1f}h" for rec in selected if rec.total_delta_hours > 0
    )
    notes = (
        f"Auto-added by Bid Coach based on historical {won_count} won / {lost_count} lost projects. "
        f"Total allowance: {total_labor:.1f} hours ({format_money(labor_cost)}). "
        f"Breakdown: {breakdown}. If unused when awarded, this becomes unrealized profit."
    )
    return LineItem(
        line_id=next_allowance_line_id(existing_lines),
        item_description=f"Bid Coach Allowance ({MODE_TITLES[mode]})",
        category=ALLOWANCE_CATEGORY_TAG,
        sub_category=BID_COACH_SUBCATEGORY_TAG,
        work_type="MISC",
        misc_method="DETAILED",
        material_type="Material",
        qty=1,
        total_weight=0,
        labor_rate=labor_rate,
        labor_cost=labor_cost,
        total_labor=total_labor,
        total_cost=labor_cost,
        status=STATUS_ACTIVE,
        notes=notes,
    )


# ---------------------------------------------------------------------------
# Apply lifecycle
# ---------------------------------------------------------------------------

class CoachState(str, Enum):
    COMPUTED = "computed"
    SELECTED = "selected"
    APPLYING = "applying"
    COMMITTED = "committed"


class CoachSession:
    """
    Caller-owned Bid Coach state for one project: the current
    recommendations, the per-category selection and the apply flag.

    ``refresh`` re-enters COMPUTED whenever lines, benchmarks or mode change.
    New categories default to selected; keys for vanished categories are
    dropped. A failed apply is reported through CommitError and
    ``last_error`` and leaves the session in SELECTED with the selection
    untouched, so ``apply`` can be retried.
    """

    def __init__(
        self,
        project_id: str,
        mode: str = MODE_PROTECT,
        company_settings: Optional[CompanySettings] = None,
    ) -> None:
        self.project_id = project_id
        self.mode = check_mode(mode)
        self.company_settings = company_settings or CompanySettings()
        self.state = CoachState.COMPUTED
        self.recommendations: List[CoachRecommendation] = []
        self.selection: Dict[str, bool] = {}
        self.last_error: Optional[str] = None
        self.labor_rate = FALLBACK_LABOR_RATE
        self.benchmarks: Optional[BenchmarkMaps] = None
        self._lines: List[Any] = []
        self._applying = False

    @property
    def is_applying(self) -> bool:
        return self._applying

    def refresh(
        self,
        lines: Optional[Iterable[Any]],
        benchmarks: BenchmarkMaps,
        mode: Optional[str] = None,
    ) -> List[CoachRecommendation]:
        if mode is not None:
            self.mode = check_mode(mode)
        self._lines = list(lines or [])
        self.benchmarks = benchmarks
        self.labor_rate = infer_labor_rate(self._lines, self.company_settings)

        markup: MarkupSettings = self.company_settings.markup_settings
        current = LineAggregator(markup).aggregate_active(active_lines(self._lines), METRIC_LABOR_HOURS)
        self.recommendations = recommend(current, benchmarks, self.mode, current.tons, self.labor_rate)
        self._sync_selection()
        self.state = CoachState.COMPUTED
        return self.recommendations

    def _sync_selection(self) -> None:
        keys = [rec.category_key for rec in self.recommendations]
        self.selection = {key: self.selection.get(key, True) for key in keys}

    def select(self, category_key: str, selected: bool = True) -> None:
        if category_key not in self.selection:
            raise ValueError(f"No recommendation for category '{category_key}'")
        self.selection[category_key] = selected
        self.state = CoachState.SELECTED

    def set_selection(self, category_keys: Iterable[str]) -> None:
        """Select exactly ``category_keys``; unknown keys are ignored."""
        wanted = set(category_keys)
        self.selection = {key: key in wanted for key in self.selection}
        self.state = CoachState.SELECTED

    def selected_recommendations(self) -> List[CoachRecommendation]:
        return [rec for rec in self.recommendations if self.selection.get(rec.category_key) is not False]

    def status(self) -> Dict[str, str]:
        return coach_status(self.recommendations)

    def summary(self) -> Optional[Dict[str, float]]:
        return coach_summary(self.recommendations, self.selection)

    @timed(slow_ms=1000.0)
    async def apply(self, store: LineItemStore) -> Dict[str, Any]:
        """
        Commit the selected recommendations as one new allowance line.

        Each call creates a new line; repeated applies are not deduplicated.
        Raises CommitInProgressError, EmptySelectionError or CommitError.
        """
        if self._applying:
            raise CommitInProgressError("A Bid Coach apply is already in progress.")

        selected = self.selected_recommendations()
        if not selected:
            self.last_error = EMPTY_SELECTION_MESSAGE
            raise EmptySelectionError(EMPTY_SELECTION_MESSAGE)

        benchmarks = self.benchmarks or BenchmarkMaps(metric=METRIC_LABOR_HOURS)

        self._applying = True
        self.last_error = None
        self.state = CoachState.APPLYING
        try:
            # Number against the stored lines so back-to-back applies never share an id
            existing = await store.list_lines(self.project_id)
            line = build_allowance_line(
                selected,
                self.mode,
                existing,
                self.labor_rate,
                benchmarks.won_count,
                benchmarks.lost_count,
            )
            record = line.to_record()
            created = await store.create_line(self.project_id, record)
        except Exception as e:
            message = str(e) or APPLY_FAILED_MESSAGE
            logger.error(
                f"Bid Coach apply failed: {message}",
                extra={"project_id": self.project_id},
            )
            self.last_error = message
            self.state = CoachState.SELECTED
            raise CommitError(message) from e
        finally:
            self._applying = False

        self.state = CoachState.COMMITTED
        logger.info(
            f"Bid Coach allowance {record['lineId']} added: {line.total_labor:.1f}h "
            f"({format_money(line.labor_cost)})",
            extra={"project_id": self.project_id, "category_count": len(selected)},
        )
        return created
