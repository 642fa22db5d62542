"""
Consumables costing — the cost of doing the work, kept apart from labor.

Labor-driven consumables (wire, gas, grinding discs) scale with weld and
general shop hours; equipment-driven consumables (plasma tips, blades, bits)
scale with machine hours. A job-type multiplier is applied on top.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Optional

from steel_estimator.models.estimate_models import ConsumablesSettings, LineItem

JOB_STRUCTURAL = "structural"
JOB_MISC_METALS = "miscMetals"
JOB_HEAVY_WELD = "heavyWeld"
JOB_STANDARD = "standard"

# Equipment throughput heuristics
_PLASMA_LB_PER_HOUR: float = 800.0
_SAW_LB_PER_HOUR: float = 500.0
_SAW_CUTS_PER_HOUR: float = 30.0
_DRILL_LB_PER_HOUR: float = 1000.0
_DRILL_HOLES_PER_HOUR: float = 100.0

# Non-weld operations counted as general shop labor
_SHOP_LABOR_FIELDS = (
    "labor_fit",
    "labor_cut",
    "labor_process_plate",
    "labor_cope",
    "labor_drill_punch",
    "labor_handle_move",
    "labor_load_ship",
    "labor_prep_clean",
    "labor_paint",
    "labor_unload",
)


@dataclass
class LaborHours:
    weld_hours: float = 0.0
    shop_labor_hours: float = 0.0


@dataclass
class EquipmentHours:
    plasma_hours: float = 0.0
    saw_hours: float = 0.0
    drill_machine_hours: float = 0.0


@dataclass
class ConsumablesResult:
    labor_consumables: float
    equipment_consumables: float
    subtotal: float
    job_type_multiplier: float
    total_consumables: float
    breakdown: Dict[str, float]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def extract_labor_hours(lines: Iterable[LineItem]) -> LaborHours:
    """Split line labor into weld hours vs. all other shop hours."""
    hours = LaborHours()
    for line in lines:
        hours.weld_hours += line.labor_weld
        for name in _SHOP_LABOR_FIELDS:
            hours.shop_labor_hours += getattr(line, name)
    return hours


def estimate_equipment_hours(
    total_weight: float,
    cut_count: Optional[int] = None,
    hole_count: Optional[int] = None,
) -> EquipmentHours:
    """Rough machine hours from tonnage, or from cut/hole counts when tracked."""
    plasma = total_weight / _PLASMA_LB_PER_HOUR if total_weight > 0 else 0.0
    saw = cut_count / _SAW_CUTS_PER_HOUR if cut_count else total_weight / _SAW_LB_PER_HOUR
    drill = hole_count / _DRILL_HOLES_PER_HOUR if hole_count else total_weight / _DRILL_LB_PER_HOUR
    return EquipmentHours(
        plasma_hours=max(0.0, plasma),
        saw_hours=max(0.0, saw),
        drill_machine_hours=max(0.0, drill),
    )


def determine_job_type(project_type: Optional[str] = None, weld_hours_ratio: Optional[float] = None) -> str:
    if project_type:
        lowered = project_type.lower()
        if any(token in lowered for token in ("misc", "stair", "rail", "handrail")):
            return JOB_MISC_METALS
        if any(token in lowered for token in ("structural", "beam", "column")):
            return JOB_STRUCTURAL
    if weld_hours_ratio is not None and weld_hours_ratio > 0.5:
        return JOB_HEAVY_WELD
    return JOB_STANDARD


class ConsumablesCalculator:
    """Prices consumables from labor and equipment hours."""

    def __init__(self, settings: Optional[ConsumablesSettings] = None) -> None:
        self.settings = settings or ConsumablesSettings()

    def job_type_multiplier(self, job_type: str) -> float:
        multipliers = self.settings.job_type_multipliers
        if job_type == JOB_STRUCTURAL:
            return multipliers.structural_steel
        if job_type == JOB_MISC_METALS:
            return multipliers.misc_metals_stairs_rails
        if job_type == JOB_HEAVY_WELD:
            return multipliers.heavy_weld_jobs
        return 1.0

    def calculate(
        self,
        labor_hours: LaborHours,
        equipment_hours: EquipmentHours,
        job_type: str = JOB_STANDARD,
    ) -> ConsumablesResult:
        labor_rates = self.settings.labor_driven
        equipment_rates = self.settings.equipment_driven

        welding = labor_hours.weld_hours * labor_rates.welding_consumables_per_hour
        general_fab = labor_hours.shop_labor_hours * labor_rates.general_fab_consumables_per_hour
        labor_consumables = welding + general_fab

        plasma = equipment_hours.plasma_hours * equipment_rates.plasma_cutting_per_hour
        saw = equipment_hours.saw_hours * equipment_rates.saw_cutting_per_hour
        drill = equipment_hours.drill_machine_hours * equipment_rates.drill_machining_per_hour
        equipment_consumables = plasma + saw + drill

        subtotal = labor_consumables + equipment_consumables
        multiplier = self.job_type_multiplier(job_type)

        return ConsumablesResult(
            labor_consumables=labor_consumables,
            equipment_consumables=equipment_consumables,
            subtotal=subtotal,
            job_type_multiplier=multiplier,
            total_consumables=subtotal * multiplier,
            breakdown={
                "welding_consumables": welding,
                "general_fab_consumables": general_fab,
                "plasma_consumables": plasma,
                "saw_consumables": saw,
                "drill_consumables": drill,
            },
        )
