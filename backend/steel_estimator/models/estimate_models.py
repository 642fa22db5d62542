"""
Estimate data contracts — line items, company settings, project registry
records and interactive-session parameters.

Records arrive from the document store in camelCase; every model accepts
both the stored alias and the Python field name. Numeric fields are lenient:
anything missing, non-numeric or non-finite reads as 0.0 so a malformed line
contributes nothing instead of breaking an aggregate.
"""
import math
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from steel_estimator.config import (
    ALLOWANCE_CATEGORY_TAG,
    BID_COACH_SUBCATEGORY_TAG,
    DEFAULT_SESSION_MARKUP,
    EFFICIENCY_MAX,
    EFFICIENCY_MIN,
    STATUS_ACTIVE,
    STATUS_VOID,
)


def to_number(value: Any) -> float:
    """Coerce a stored value to a finite float; anything else is 0.0."""
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else 0.0
    return 0.0


def _is_finite_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _to_text(value: Any) -> str:
    return value if isinstance(value, str) else ""


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ── LINE ITEMS ────────────────────────────────────────────────────────────────

LABOR_FIELDS: List[str] = [
    "labor_unload",
    "labor_cut",
    "labor_cope",
    "labor_process_plate",
    "labor_drill_punch",
    "labor_fit",
    "labor_weld",
    "labor_prep_clean",
    "labor_paint",
    "labor_handle_move",
    "labor_load_ship",
]

_NUMERIC_LINE_FIELDS: List[str] = LABOR_FIELDS + [
    "qty",
    "total_weight",
    "plate_total_weight",
    "total_surface_area",
    "plate_surface_area",
    "total_labor",
    "material_rate",
    "labor_rate",
    "coating_rate",
    "material_cost",
    "labor_cost",
    "coating_cost",
    "hardware_cost",
    "total_cost",
]

_TEXT_LINE_FIELDS: List[str] = [
    "line_id",
    "category",
    "sub_category",
    "item_description",
    "notes",
    "work_type",
    "misc_method",
]


class LineItem(_Record):
    """One estimated component as stored under ``projects/{id}/lines``."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    line_id: str = Field("", alias="lineId")
    status: str = STATUS_ACTIVE
    material_type: str = Field("Material", alias="materialType")
    item_description: str = Field("", alias="itemDescription")
    category: str = ""
    sub_category: str = Field("", alias="subCategory")
    work_type: str = Field("", alias="workType")
    misc_method: str = Field("", alias="miscMethod")
    notes: str = ""
    qty: float = 0.0

    # Weight (lb) and surface area (sf) — rolled members vs. plates
    total_weight: float = Field(0.0, alias="totalWeight")
    plate_total_weight: float = Field(0.0, alias="plateTotalWeight")
    total_surface_area: float = Field(0.0, alias="totalSurfaceArea")
    plate_surface_area: float = Field(0.0, alias="plateSurfaceArea")

    # Labor hours by operation
    labor_unload: float = Field(0.0, alias="laborUnload")
    labor_cut: float = Field(0.0, alias="laborCut")
    labor_cope: float = Field(0.0, alias="laborCope")
    labor_process_plate: float = Field(0.0, alias="laborProcessPlate")
    labor_drill_punch: float = Field(0.0, alias="laborDrillPunch")
    labor_fit: float = Field(0.0, alias="laborFit")
    labor_weld: float = Field(0.0, alias="laborWeld")
    labor_prep_clean: float = Field(0.0, alias="laborPrepClean")
    labor_paint: float = Field(0.0, alias="laborPaint")
    labor_handle_move: float = Field(0.0, alias="laborHandleMove")
    labor_load_ship: float = Field(0.0, alias="laborLoadShip")
    total_labor: float = Field(0.0, alias="totalLabor")

    # Rates and cost totals
    material_rate: float = Field(0.0, alias="materialRate")
    labor_rate: float = Field(0.0, alias="laborRate")
    coating_rate: float = Field(0.0, alias="coatingRate")
    material_cost: float = Field(0.0, alias="materialCost")
    labor_cost: float = Field(0.0, alias="laborCost")
    coating_cost: float = Field(0.0, alias="coatingCost")
    hardware_cost: float = Field(0.0, alias="hardwareCost")
    total_cost: float = Field(0.0, alias="totalCost")

    @field_validator(*_NUMERIC_LINE_FIELDS, mode="before")
    @classmethod
    def _numeric(cls, value: Any) -> float:
        return to_number(value)

    @field_validator(*_TEXT_LINE_FIELDS, mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return _to_text(value)

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value: Any) -> str:
        return value if isinstance(value, str) and value else STATUS_ACTIVE

    @field_validator("material_type", mode="before")
    @classmethod
    def _material_type(cls, value: Any) -> str:
        # The estimating grid labels rolled members "Rolled"
        if not isinstance(value, str) or not value or value == "Rolled":
            return "Material"
        return value

    @classmethod
    def coerce(cls, raw: Any) -> "LineItem":
        """Build a LineItem from a model, a stored mapping, or anything else (→ empty line)."""
        if isinstance(raw, LineItem):
            return raw
        if isinstance(raw, Mapping):
            return cls.model_validate({k: v for k, v in raw.items() if isinstance(k, str)})
        return cls()

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def is_void(self) -> bool:
        return self.status == STATUS_VOID

    @property
    def is_plate(self) -> bool:
        return self.material_type != "Material"

    @property
    def weight(self) -> float:
        return self.plate_total_weight if self.is_plate else self.total_weight

    @property
    def surface_area(self) -> float:
        return self.plate_surface_area if self.is_plate else self.total_surface_area

    @property
    def is_allowance(self) -> bool:
        """Tagged as an allowance line (counted into the Allowance pseudo-category)."""
        return (
            self.category == ALLOWANCE_CATEGORY_TAG
            or self.sub_category == BID_COACH_SUBCATEGORY_TAG
        )

    def has_labor_breakdown(self) -> bool:
        return any(getattr(self, name) > 0 for name in LABOR_FIELDS)

    def to_record(self) -> Dict[str, Any]:
        """Serialise back to the store's camelCase shape."""
        return self.model_dump(by_alias=True)


def coerce_lines(lines: Optional[List[Any]]) -> List[LineItem]:
    return [LineItem.coerce(raw) for raw in (lines or [])]


# ── COMPANY SETTINGS ──────────────────────────────────────────────────────────

class MarkupSettings(_Record):
    """Company markup percentages; every value defaults to 0 when absent."""

    material_waste_factor: float = Field(0.0, alias="materialWasteFactor")
    labor_waste_factor: float = Field(0.0, alias="laborWasteFactor")
    overhead_percentage: float = Field(0.0, alias="overheadPercentage")
    profit_percentage: float = Field(0.0, alias="profitPercentage")

    @field_validator("*", mode="before")
    @classmethod
    def _numeric(cls, value: Any) -> float:
        return to_number(value)


class LaborRate(_Record):
    trade: str = ""
    rate: float = 0.0

    @field_validator("rate", mode="before")
    @classmethod
    def _numeric(cls, value: Any) -> float:
        return to_number(value)


class _RateTable(_Record):
    """Rate table whose missing, null or non-finite entries fall back to the shipped default."""

    @model_validator(mode="before")
    @classmethod
    def _drop_unusable(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            return {k: v for k, v in data.items() if _is_finite_number(v)}
        return data


class LaborDrivenConsumables(_RateTable):
    welding_consumables_per_hour: float = Field(8.50, alias="weldingConsumablesPerHour")
    general_fab_consumables_per_hour: float = Field(3.25, alias="generalFabConsumablesPerHour")


class EquipmentDrivenConsumables(_RateTable):
    plasma_cutting_per_hour: float = Field(25.00, alias="plasmaCuttingPerHour")
    saw_cutting_per_hour: float = Field(12.00, alias="sawCuttingPerHour")
    drill_machining_per_hour: float = Field(15.00, alias="drillMachiningPerHour")


class JobTypeMultipliers(_RateTable):
    structural_steel: float = Field(1.00, alias="structuralSteel")
    misc_metals_stairs_rails: float = Field(1.15, alias="miscMetalsStairsRails")
    heavy_weld_jobs: float = Field(1.25, alias="heavyWeldJobs")


class ConsumablesSettings(_Record):
    labor_driven: LaborDrivenConsumables = Field(default_factory=LaborDrivenConsumables, alias="laborDriven")
    equipment_driven: EquipmentDrivenConsumables = Field(
        default_factory=EquipmentDrivenConsumables, alias="equipmentDriven"
    )
    job_type_multipliers: JobTypeMultipliers = Field(
        default_factory=JobTypeMultipliers, alias="jobTypeMultipliers"
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_null_tables(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            return {k: v for k, v in data.items() if isinstance(v, (Mapping, BaseModel))}
        return data


_FLAT_MARKUP_KEYS = (
    "materialWasteFactor",
    "laborWasteFactor",
    "overheadPercentage",
    "profitPercentage",
)


class CompanySettings(_Record):
    """Read-only company configuration consumed by the engines."""

    markup_settings: MarkupSettings = Field(default_factory=MarkupSettings, alias="markupSettings")
    labor_rates: List[LaborRate] = Field(default_factory=list, alias="laborRates")
    consumables_settings: Optional[ConsumablesSettings] = Field(None, alias="consumablesSettings")

    @model_validator(mode="before")
    @classmethod
    def _nest_flat_markup(cls, data: Any) -> Any:
        # The settings provider may hand over markup keys at the top level
        if isinstance(data, Mapping) and "markupSettings" not in data and "markup_settings" not in data:
            flat = {k: data[k] for k in _FLAT_MARKUP_KEYS if k in data}
            if flat:
                data = {**data, "markupSettings": flat}
        return data

    def first_positive_labor_rate(self) -> Optional[float]:
        for entry in self.labor_rates:
            if entry.rate > 0:
                return entry.rate
        return None


# Used by the settings provider when a company has never saved settings.
DEFAULT_COMPANY_SETTINGS = CompanySettings(
    markupSettings=MarkupSettings(
        overheadPercentage=15.0,
        profitPercentage=10.0,
        materialWasteFactor=5.0,
        laborWasteFactor=10.0,
    ),
    laborRates=[
        LaborRate(trade="Fabricator", rate=45.0),
        LaborRate(trade="Welder", rate=55.0),
        LaborRate(trade="Fitter", rate=50.0),
        LaborRate(trade="Painter", rate=40.0),
    ],
)


# ── PROJECT REGISTRY ──────────────────────────────────────────────────────────

class ProjectRecord(_Record):
    id: str
    status: str = ""
    archived: bool = False
    project_name: str = Field("", alias="projectName")

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value: Any) -> str:
        return value.lower() if isinstance(value, str) else ""


# ── INTERACTIVE SESSION PARAMETERS ────────────────────────────────────────────

def _efficiency() -> Any:
    return Field(1.0, ge=EFFICIENCY_MIN, le=EFFICIENCY_MAX)


class LaborEfficiency(_Record):
    """Per-operation multipliers: 1.0 = baseline, >1.0 slower, <1.0 faster."""

    model_config = ConfigDict(
        populate_by_name=True, extra="forbid", validate_assignment=True, allow_inf_nan=False
    )

    unload: float = _efficiency()
    cut: float = _efficiency()
    cope: float = _efficiency()
    process_plate: float = _efficiency()
    drill_punch: float = _efficiency()
    fit: float = _efficiency()
    weld: float = _efficiency()
    prep_clean: float = _efficiency()
    paint: float = _efficiency()
    handle_move: float = _efficiency()
    load_ship: float = _efficiency()

    def mean(self) -> float:
        values = list(self.model_dump().values())
        return sum(values) / len(values)


class EstimateParameters(_Record):
    """User-adjustable multipliers and markup for a live estimate session."""

    model_config = ConfigDict(
        populate_by_name=True, extra="forbid", validate_assignment=True, allow_inf_nan=False
    )

    labor_efficiency: LaborEfficiency = Field(default_factory=LaborEfficiency)
    labor_rate_multiplier: float = Field(1.0, ge=0.0)
    material_rate_multiplier: float = Field(1.0, ge=0.0)
    coating_rate_multiplier: float = Field(1.0, ge=0.0)
    overhead_percentage: float = DEFAULT_SESSION_MARKUP["overhead_percentage"]
    profit_percentage: float = DEFAULT_SESSION_MARKUP["profit_percentage"]
    material_waste_percentage: float = DEFAULT_SESSION_MARKUP["material_waste_percentage"]
    labor_waste_percentage: float = DEFAULT_SESSION_MARKUP["labor_waste_percentage"]

    @classmethod
    def from_company_settings(cls, settings: Optional[CompanySettings]) -> "EstimateParameters":
        """Seed the session markup from company defaults; multipliers start at 1.0."""
        if settings is None:
            return cls()
        markup = settings.markup_settings
        return cls(
            overhead_percentage=markup.overhead_percentage,
            profit_percentage=markup.profit_percentage,
            material_waste_percentage=markup.material_waste_factor,
            labor_waste_percentage=markup.labor_waste_factor,
        )
