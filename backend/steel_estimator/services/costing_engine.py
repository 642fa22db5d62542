"""
MarkupCalculator — waste, overhead and profit waterfall over direct costs,
plus per-ton and per-pound unit metrics.

Waterfall (fixed order, percentages are whole numbers: 10 = 10 %):
    direct_cost          = material + labor + coating + hardware + consumables
    material_waste       = direct_cost × material_waste_pct / 100
    labor_waste          = labor × labor_waste_pct / 100
    cost_before_overhead = direct_cost + material_waste + labor_waste
    overhead             = cost_before_overhead × overhead_pct / 100
    cost_before_profit   = cost_before_overhead + overhead
    profit               = cost_before_profit × profit_pct / 100
    total                = cost_before_profit + profit

No rounding is applied; callers format for display.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from steel_estimator.config import WEIGHT_UNITS_PER_TON
from steel_estimator.models.estimate_models import MarkupSettings


@dataclass
class MarkupBreakdown:
    material_cost: float
    labor_cost: float
    coating_cost: float
    hardware_cost: float
    consumables: float
    direct_cost: float
    material_waste: float
    labor_waste: float
    cost_before_overhead: float
    overhead: float
    cost_before_profit: float
    profit: float
    total: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class UnitMetrics:
    cost_per_ton: float
    hours_per_ton: float
    cost_per_pound: float
    hours_per_pound: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


class MarkupCalculator:
    """Applies the markup waterfall with a fixed set of percentages."""

    def __init__(
        self,
        material_waste_pct: float = 0.0,
        labor_waste_pct: float = 0.0,
        overhead_pct: float = 0.0,
        profit_pct: float = 0.0,
    ) -> None:
        self.material_waste_pct = float(material_waste_pct or 0.0)
        self.labor_waste_pct = float(labor_waste_pct or 0.0)
        self.overhead_pct = float(overhead_pct or 0.0)
        self.profit_pct = float(profit_pct or 0.0)

    @classmethod
    def from_markup_settings(cls, markup: Optional[MarkupSettings]) -> "MarkupCalculator":
        m = markup or MarkupSettings()
        return cls(
            material_waste_pct=m.material_waste_factor,
            labor_waste_pct=m.labor_waste_factor,
            overhead_pct=m.overhead_percentage,
            profit_pct=m.profit_percentage,
        )

    def apply(
        self,
        material_cost: float = 0.0,
        labor_cost: float = 0.0,
        coating_cost: float = 0.0,
        hardware_cost: float = 0.0,
        consumables: float = 0.0,
    ) -> MarkupBreakdown:
        direct_cost = material_cost + labor_cost + coating_cost + hardware_cost + consumables

        material_waste = direct_cost * (self.material_waste_pct / 100)
        labor_waste = labor_cost * (self.labor_waste_pct / 100)

        cost_before_overhead = direct_cost + material_waste + labor_waste
        overhead = cost_before_overhead * (self.overhead_pct / 100)
        cost_before_profit = cost_before_overhead + overhead
        profit = cost_before_profit * (self.profit_pct / 100)

        return MarkupBreakdown(
            material_cost=material_cost,
            labor_cost=labor_cost,
            coating_cost=coating_cost,
            hardware_cost=hardware_cost,
            consumables=consumables,
            direct_cost=direct_cost,
            material_waste=material_waste,
            labor_waste=labor_waste,
            cost_before_overhead=cost_before_overhead,
            overhead=overhead,
            cost_before_profit=cost_before_profit,
            profit=profit,
            total=cost_before_profit + profit,
        )

    def describe(self) -> Dict[str, Any]:
        return {
            "material_waste_pct": self.material_waste_pct,
            "labor_waste_pct": self.labor_waste_pct,
            "overhead_pct": self.overhead_pct,
            "profit_pct": self.profit_pct,
        }


def unit_metrics(total_cost: float, labor_hours: float, weight: float) -> UnitMetrics:
    """Per-ton and per-pound cost/hours; each is 0 when its denominator is 0."""
    tons = weight / WEIGHT_UNITS_PER_TON
    return UnitMetrics(
        cost_per_ton=total_cost / tons if tons > 0 else 0.0,
        hours_per_ton=labor_hours / tons if tons > 0 else 0.0,
        cost_per_pound=total_cost / weight if weight > 0 else 0.0,
        hours_per_pound=labor_hours / weight if weight > 0 else 0.0,
    )
