"""Static labor and cost category definitions shared by every engine."""
from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class CategoryDefinition:
    key: str
    label: str
    color: str
    field: Optional[str] = None            # LineItem attribute carrying the hours
    efficiency_key: Optional[str] = None   # LaborEfficiency attribute


LABOR_CATEGORIES: List[CategoryDefinition] = [
    CategoryDefinition("Unload", "Unload", "#3b82f6", "labor_unload", "unload"),
    CategoryDefinition("Cut", "Cut", "#10b981", "labor_cut", "cut"),
    CategoryDefinition("Cope", "Cope", "#8b5cf6", "labor_cope", "cope"),
    CategoryDefinition("Process Plate", "Process Plate", "#f59e0b", "labor_process_plate", "process_plate"),
    CategoryDefinition("Drill/Punch", "Drill/Punch", "#ef4444", "labor_drill_punch", "drill_punch"),
    CategoryDefinition("Fit", "Fit", "#06b6d4", "labor_fit", "fit"),
    CategoryDefinition("Weld", "Weld", "#f97316", "labor_weld", "weld"),
    CategoryDefinition("Prep/Clean", "Prep/Clean", "#84cc16", "labor_prep_clean", "prep_clean"),
    CategoryDefinition("Paint", "Paint", "#ec4899", "labor_paint", "paint"),
    CategoryDefinition("Handle/Move", "Handle/Move", "#6366f1", "labor_handle_move", "handle_move"),
    CategoryDefinition("Load/Ship", "Load/Ship", "#14b8a6", "labor_load_ship", "load_ship"),
]

# Pseudo-category aggregated from allowance-tagged lines (their totalLabor)
ALLOWANCE = CategoryDefinition("Allowance", "Allowance", "#94a3b8", "total_labor")

COST_CATEGORIES: List[CategoryDefinition] = [
    CategoryDefinition("Material", "Material", "#3b82f6"),
    CategoryDefinition("Labor", "Labor", "#10b981"),
    CategoryDefinition("Coating", "Coating", "#f59e0b"),
    CategoryDefinition("Hardware", "Hardware", "#8b5cf6"),
    CategoryDefinition("Buyouts", "Buyouts", "#0ea5e9"),
    CategoryDefinition("Overhead", "Overhead", "#f97316"),
    CategoryDefinition("Profit", "Profit", "#84cc16"),
    CategoryDefinition("Shipping", "Shipping", "#64748b"),
]

DEFAULT_COLOR = "#94a3b8"

_BY_KEY: Dict[str, CategoryDefinition] = {
    c.key: c for c in LABOR_CATEGORIES + COST_CATEGORIES + [ALLOWANCE]
}
LABOR_CATEGORY_KEYS = frozenset(c.key for c in LABOR_CATEGORIES)


def category_color(key: str) -> str:
    definition = _BY_KEY.get(key)
    return definition.color if definition else DEFAULT_COLOR
