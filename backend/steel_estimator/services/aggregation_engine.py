"""
LineAggregator — reduces estimate lines to weight, surface area, labor-hours
and cost totals, overall and per labor/cost category, normalised per ton.

Covers:
  - Void exclusion and material/plate weight selection
  - MH/ton per labor operation plus the derived Allowance bucket
  - $/ton per cost bucket with waste, overhead and profit applied
  - Percentage share of each category

Every function here is pure: identical inputs produce bit-identical outputs
because sums are accumulated in line order.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from steel_estimator.config import WEIGHT_UNITS_PER_TON
from steel_estimator.models.estimate_models import LineItem, MarkupSettings, coerce_lines
from steel_estimator.services.categories import ALLOWANCE, LABOR_CATEGORIES


METRIC_LABOR_HOURS: str = "laborHoursPerTon"
METRIC_COST: str = "costPerTon"
METRICS = (METRIC_LABOR_HOURS, METRIC_COST)


def check_metric(metric: str) -> str:
    if metric not in METRICS:
        raise ValueError(f"metric must be one of {METRICS}, got '{metric}'")
    return metric


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def active_lines(lines: Optional[Iterable[Any]]) -> List[LineItem]:
    """Coerce raw records and drop Void lines."""
    return [line for line in coerce_lines(list(lines or [])) if not line.is_void]


def sum_weight(lines: Iterable[LineItem]) -> float:
    total = 0.0
    for line in lines:
        total += line.weight
    return total


def weight_to_tons(weight: float) -> float:
    return weight / WEIGHT_UNITS_PER_TON if weight > 0 else 0.0


def per_ton(value: float, tons: float) -> float:
    """value / tons, or 0 when there is no tonnage."""
    return value / tons if tons > 0 else 0.0


def percentage_shares(values: Dict[str, float]) -> Dict[str, float]:
    total = 0.0
    for value in values.values():
        total += value
    return {key: (value / total * 100.0 if total > 0 else 0.0) for key, value in values.items()}


# ---------------------------------------------------------------------------
# Result record
# ---------------------------------------------------------------------------

@dataclass
class AggregateTotals:
    metric: str
    line_count: int = 0
    total_weight: float = 0.0
    total_surface_area: float = 0.0
    total_labor_hours: float = 0.0
    tons: float = 0.0
    category_totals: Dict[str, float] = field(default_factory=dict)   # raw hours or dollars
    per_ton: Dict[str, float] = field(default_factory=dict)
    shares: Dict[str, float] = field(default_factory=dict)            # % of Σ per-ton

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "line_count": self.line_count,
            "total_weight": self.total_weight,
            "total_surface_area": self.total_surface_area,
            "total_labor_hours": self.total_labor_hours,
            "tons": self.tons,
            "category_totals": dict(self.category_totals),
            "per_ton": dict(self.per_ton),
            "shares": dict(self.shares),
        }


# ---------------------------------------------------------------------------
# LineAggregator
# ---------------------------------------------------------------------------

class LineAggregator:
    """
    Aggregates a line set under one metric.

    ``markup`` is only read by the cost metric; absent settings mean 0 %
    waste, overhead and profit.
    """

    def __init__(self, markup: Optional[MarkupSettings] = None) -> None:
        self.markup = markup or MarkupSettings()

    def aggregate(self, lines: Optional[Iterable[Any]], metric: str = METRIC_LABOR_HOURS) -> AggregateTotals:
        check_metric(metric)
        active = active_lines(lines)
        return self.aggregate_active(active, metric)

    def aggregate_active(self, active: List[LineItem], metric: str) -> AggregateTotals:
        """Aggregate lines that are already coerced and Void-filtered."""
        total_weight = sum_weight(active)
        total_surface_area = 0.0
        total_labor_hours = 0.0
        for line in active:
            total_surface_area += line.surface_area
            total_labor_hours += line.total_labor
        tons = weight_to_tons(total_weight)

        if metric == METRIC_LABOR_HOURS:
            sums = self._labor_sums(active)
        else:
            sums = self._cost_sums(active)

        category_totals = {key: value for key, value in sums.items() if value > 0}
        per_ton_values = {key: per_ton(value, tons) for key, value in category_totals.items()}

        return AggregateTotals(
            metric=metric,
            line_count=len(active),
            total_weight=total_weight,
            total_surface_area=total_surface_area,
            total_labor_hours=total_labor_hours,
            tons=tons,
            category_totals=category_totals,
            per_ton=per_ton_values,
            shares=percentage_shares(per_ton_values),
        )

    # ------------------------------------------------------------------
    # Metric reducers
    # ------------------------------------------------------------------

    def _labor_sums(self, active: List[LineItem]) -> Dict[str, float]:
        sums: Dict[str, float] = {}
        for category in LABOR_CATEGORIES:
            hours = 0.0
            for line in active:
                hours += getattr(line, category.field)
            sums[category.key] = hours

        allowance_hours = 0.0
        for line in active:
            if line.is_allowance:
                allowance_hours += line.total_labor
        sums[ALLOWANCE.key] = allowance_hours
        return sums

    def _cost_sums(self, active: List[LineItem]) -> Dict[str, float]:
        material = labor = coating = hardware = 0.0
        for line in active:
            material += line.material_cost
            labor += line.labor_cost
            coating += line.coating_cost
            hardware += line.hardware_cost

        m = self.markup
        material_with_waste = material * (1 + m.material_waste_factor / 100)
        labor_with_waste = labor * (1 + m.labor_waste_factor / 100)

        subtotal = material_with_waste + labor_with_waste + coating + hardware
        overhead = subtotal * (m.overhead_percentage / 100)
        profit = (subtotal + overhead) * (m.profit_percentage / 100)

        # Buyouts and Shipping have no data source yet; they stay 0 and drop out
        return {
            "Material": material_with_waste,
            "Labor": labor_with_waste,
            "Coating": coating,
            "Hardware": hardware,
            "Buyouts": 0.0,
            "Overhead": overhead,
            "Profit": profit,
            "Shipping": 0.0,
        }


def aggregate(
    lines: Optional[Iterable[Any]],
    metric: str = METRIC_LABOR_HOURS,
    markup: Optional[MarkupSettings] = None,
) -> AggregateTotals:
    """Module-level convenience wrapper around LineAggregator.aggregate."""
    return LineAggregator(markup).aggregate(lines, metric)
