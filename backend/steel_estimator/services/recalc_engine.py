"""
ParameterizedRecalculator — live estimate totals under user-adjustable
labor efficiency, rate multipliers and markup percentages.

Covers:
  - Per-operation efficiency multipliers (mean multiplier for lines that
    only carry a total-labor figure)
  - Labor/material/coating rate multipliers
  - Consumables from labor and equipment hours
  - Markup waterfall and unit metrics
  - Append-only adjustment log (newest first, capped) mirrored to the audit sink
"""

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from steel_estimator.config import ADJUSTMENT_LOG_LIMIT, BID_COACH_SUBCATEGORY_TAG
from steel_estimator.models.estimate_models import CompanySettings, EstimateParameters, LineItem
from steel_estimator.services.aggregation_engine import active_lines
from steel_estimator.services.categories import LABOR_CATEGORIES
from steel_estimator.services.consumables_engine import (
    JOB_STANDARD,
    ConsumablesCalculator,
    estimate_equipment_hours,
    extract_labor_hours,
)
from steel_estimator.services.costing_engine import MarkupCalculator, unit_metrics
from steel_estimator.services.estimate_store import AuditSink
from steel_estimator.services.perf_monitor import timed

logger = logging.getLogger("steel-estimator.recalc")

RESET_PARAMETER = "all"


@dataclass
class EstimateTotals:
    weight: float = 0.0
    surface_area: float = 0.0
    labor_hours: float = 0.0
    material_cost: float = 0.0
    labor_cost: float = 0.0
    coating_cost: float = 0.0
    hardware_cost: float = 0.0
    consumables: float = 0.0
    direct_cost: float = 0.0
    material_waste: float = 0.0
    labor_waste: float = 0.0
    overhead: float = 0.0
    profit: float = 0.0
    total_with_markup: float = 0.0
    cost_per_ton: float = 0.0
    hours_per_ton: float = 0.0
    cost_per_pound: float = 0.0
    hours_per_pound: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def adjusted_line_hours(line: LineItem, parameters: EstimateParameters) -> float:
    """Efficiency-weighted hours for one line, clamped at 0."""
    efficiency = parameters.labor_efficiency
    adjusted = sum(
        getattr(line, category.field) * getattr(efficiency, category.efficiency_key)
        for category in LABOR_CATEGORIES
    )
    if not line.has_labor_breakdown() and line.total_labor > 0:
        adjusted = line.total_labor * efficiency.mean()

    return max(0.0, adjusted)


@timed
def recalculate(
    lines: Optional[Iterable[Any]],
    parameters: Optional[EstimateParameters] = None,
    company_settings: Optional[CompanySettings] = None,
    job_type: str = JOB_STANDARD,
) -> EstimateTotals:
    """Recompute the full totals snapshot from scratch."""
    params = parameters or EstimateParameters()
    settings = company_settings or CompanySettings()
    active = active_lines(lines)

    weight = surface_area = labor_hours = 0.0
    material_cost = labor_cost = coating_cost = hardware_cost = 0.0

    for line in active:
        weight += line.weight
        surface_area += line.surface_area
        material_cost += line.material_cost * params.material_rate_multiplier
        coating_cost += line.coating_cost * params.coating_rate_multiplier
        hardware_cost += line.hardware_cost

        hours = adjusted_line_hours(line, params)
        labor_hours += hours
        labor_cost += hours * line.labor_rate * params.labor_rate_multiplier

    consumables = ConsumablesCalculator(settings.consumables_settings).calculate(
        extract_labor_hours(active),
        estimate_equipment_hours(weight),
        job_type,
    ).total_consumables

    markup = MarkupCalculator(
        material_waste_pct=params.material_waste_percentage,
        labor_waste_pct=params.labor_waste_percentage,
        overhead_pct=params.overhead_percentage,
        profit_pct=params.profit_percentage,
    ).apply(material_cost, labor_cost, coating_cost, hardware_cost, consumables)
    metrics = unit_metrics(markup.total, labor_hours, weight)

    return EstimateTotals(
        weight=weight,
        surface_area=surface_area,
        labor_hours=labor_hours,
        material_cost=material_cost,
        labor_cost=labor_cost,
        coating_cost=coating_cost,
        hardware_cost=hardware_cost,
        consumables=consumables,
        direct_cost=markup.direct_cost,
        material_waste=markup.material_waste,
        labor_waste=markup.labor_waste,
        overhead=markup.overhead,
        profit=markup.profit,
        total_with_markup=markup.total,
        cost_per_ton=metrics.cost_per_ton,
        hours_per_ton=metrics.hours_per_ton,
        cost_per_pound=metrics.cost_per_pound,
        hours_per_pound=metrics.hours_per_pound,
    )


def allowance_lines(lines: Optional[Iterable[Any]]) -> List[LineItem]:
    """Active lines that represent allowances, including coach-added ones."""
    return [
        line for line in active_lines(lines)
        if line.is_allowance or BID_COACH_SUBCATEGORY_TAG in line.item_description
    ]


# ---------------------------------------------------------------------------
# Adjustment log
# ---------------------------------------------------------------------------

@dataclass
class AdjustmentLog:
    parameter: str
    old_value: float
    new_value: float
    impact: Dict[str, float]
    user_id: str = "system"
    user_name: str = ""
    reason: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=lambda: f"adj-{uuid.uuid4().hex[:12]}")

    def to_record(self) -> Dict[str, Any]:
        """Audit-sink shape."""
        return {
            "id": self.id,
            "parameter": self.parameter,
            "oldValue": self.old_value,
            "newValue": self.new_value,
            "impact": dict(self.impact),
            "timestamp": self.timestamp.isoformat(),
            "userId": self.user_id,
            "userName": self.user_name,
            "reason": self.reason,
        }


def _impact(before: EstimateTotals, after: EstimateTotals) -> Dict[str, float]:
    return {
        "cost_change": after.total_with_markup - before.total_with_markup,
        "hours_change": after.labor_hours - before.labor_hours,
        "cost_per_ton_change": after.cost_per_ton - before.cost_per_ton,
    }


# ---------------------------------------------------------------------------
# ParameterizedRecalculator
# ---------------------------------------------------------------------------

class ParameterizedRecalculator:
    """
    One interactive estimate session: the current line set, the live
    parameter set and the adjustment history.

    The session is the single writer of its parameters and history.
    Totals are recomputed in full on every change.
    """

    def __init__(
        self,
        lines: Optional[Iterable[Any]] = None,
        company_settings: Optional[CompanySettings] = None,
        parameters: Optional[EstimateParameters] = None,
        audit_sink: Optional[AuditSink] = None,
        project_id: str = "",
        user_id: str = "system",
        user_name: str = "",
    ) -> None:
        self.company_settings = company_settings or CompanySettings()
        self.defaults = (parameters or EstimateParameters()).model_copy(deep=True)
        self.parameters = self.defaults.model_copy(deep=True)
        self.audit_sink = audit_sink
        self.project_id = project_id
        self.user_id = user_id
        self.user_name = user_name
        self.history: List[AdjustmentLog] = []
        self._lines: List[Any] = list(lines or [])
        self.totals = self._compute()

    def _compute(self, parameters: Optional[EstimateParameters] = None) -> EstimateTotals:
        return recalculate(self._lines, parameters or self.parameters, self.company_settings)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    @property
    def lines(self) -> List[Any]:
        return list(self._lines)

    def set_lines(self, lines: Optional[Iterable[Any]]) -> EstimateTotals:
        """Replace the line set (store change notification) and recompute."""
        self._lines = list(lines or [])
        self.totals = self._compute()
        return self.totals

    def get_parameter(self, path: str) -> float:
        target, attr = self._resolve(self.parameters, path)
        return getattr(target, attr)

    @staticmethod
    def _resolve(parameters: EstimateParameters, path: str):
        keys = path.split(".")
        target: Any = parameters
        for key in keys[:-1]:
            if key not in type(target).model_fields:
                raise ValueError(f"Unknown parameter path '{path}'")
            target = getattr(target, key)
        attr = keys[-1]
        if attr not in type(target).model_fields or not isinstance(getattr(target, attr), (int, float)):
            raise ValueError(f"Unknown parameter path '{path}'")
        return target, attr

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_parameter(self, path: str, value: float, reason: Optional[str] = None) -> AdjustmentLog:
        """
        Apply one parameter change, recompute, and append an adjustment record.

        ``path`` is dotted for nested values, e.g. ``labor_efficiency.weld``.
        Raises ValueError for unknown paths or out-of-range values; the
        current parameters are left untouched in that case.
        """
        candidate = self.parameters.model_copy(deep=True)
        target, attr = self._resolve(candidate, path)
        old_value = float(getattr(target, attr))
        setattr(target, attr, float(value))

        before = self.totals
        after = self._compute(candidate)
        self.parameters = candidate
        self.totals = after
        return self._log(path, old_value, float(value), _impact(before, after), reason)

    def reset_parameters(self) -> AdjustmentLog:
        before = self.totals
        self.parameters = self.defaults.model_copy(deep=True)
        self.totals = self._compute()
        return self._log(RESET_PARAMETER, 0.0, 0.0, _impact(before, self.totals),
                         "Reset all parameters to defaults")

    async def update_parameter(self, path: str, value: float, reason: Optional[str] = None) -> AdjustmentLog:
        """set_parameter plus a best-effort mirror of the record to the audit sink."""
        entry = self.set_parameter(path, value, reason)
        await self.mirror(entry)
        return entry

    async def mirror(self, entry: AdjustmentLog) -> None:
        if self.audit_sink is None:
            return
        try:
            await self.audit_sink.record_adjustment(self.project_id, entry.to_record())
        except Exception as e:
            logger.warning(
                f"Failed to log adjustment '{entry.parameter}': {e}",
                extra={"project_id": self.project_id},
            )

    def _log(
        self,
        parameter: str,
        old_value: float,
        new_value: float,
        impact: Dict[str, float],
        reason: Optional[str],
    ) -> AdjustmentLog:
        entry = AdjustmentLog(
            parameter=parameter,
            old_value=old_value,
            new_value=new_value,
            impact=impact,
            user_id=self.user_id,
            user_name=self.user_name,
            reason=reason,
        )
        self.history = [entry] + self.history[: ADJUSTMENT_LOG_LIMIT - 1]
        logger.debug(
            f"Parameter {parameter}: {old_value} -> {new_value}",
            extra={"project_id": self.project_id},
        )
        return entry
