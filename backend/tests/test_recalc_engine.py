"""
test_recalc_engine.py — Unit tests for recalculate() and ParameterizedRecalculator.

Tests cover:
  - Per-operation efficiency multipliers and the mean-multiplier fallback
  - Rate multipliers and consumables in direct cost
  - Markup waterfall and unit metrics on live totals
  - Parameter validation (range, unknown paths) leaving state untouched
  - Adjustment log: impact deltas, newest-first ordering, 50-entry cap, reset
  - Audit sink mirroring and sink-failure tolerance
"""

import asyncio
import logging
import pytest

from conftest import make_line
from steel_estimator.models.estimate_models import EstimateParameters, LaborEfficiency, LineItem
from steel_estimator.services.recalc_engine import (
    ParameterizedRecalculator,
    adjusted_line_hours,
    allowance_lines,
    recalculate,
)

# Default consumables for the base line: weld 10 h × 8.50 + shop 10 h × 3.25
# + (2000 lb: plasma 2.5 h × 25 + saw 4 h × 12 + drill 2 h × 15) = 258.0
_BASE_CONSUMABLES = 258.0


@pytest.fixture
def base_lines():
    return [
        make_line(
            "L1", 2000.0,
            laborWeld=10.0, laborFit=10.0, laborRate=50.0,
            materialCost=1000.0, coatingCost=100.0, hardwareCost=50.0,
        ),
        make_line("L2", 50_000.0, status="Void", laborWeld=99.0, materialCost=1e6),
    ]


# ===========================================================================
# Class 1: recalculate()
# ===========================================================================

class TestRecalculate:

    def test_baseline_totals(self, base_lines, zero_markup_parameters):
        totals = recalculate(base_lines, zero_markup_parameters)
        assert totals.weight == pytest.approx(2000.0)
        assert totals.labor_hours == pytest.approx(20.0)
        assert totals.labor_cost == pytest.approx(1000.0)
        assert totals.consumables == pytest.approx(_BASE_CONSUMABLES)
        assert totals.direct_cost == pytest.approx(2150.0 + _BASE_CONSUMABLES)
        assert totals.total_with_markup == pytest.approx(totals.direct_cost)
        assert totals.hours_per_ton == pytest.approx(20.0)
        assert totals.cost_per_pound == pytest.approx(totals.total_with_markup / 2000.0)

    def test_efficiency_scales_its_operation_only(self, base_lines, zero_markup_parameters):
        params = zero_markup_parameters.model_copy(deep=True)
        params.labor_efficiency.weld = 1.5
        totals = recalculate(base_lines, params)
        assert totals.labor_hours == pytest.approx(25.0)
        assert totals.labor_cost == pytest.approx(1250.0)

    def test_mean_multiplier_for_total_only_lines(self):
        line = LineItem(total_labor=11.0, labor_rate=40.0)
        params = EstimateParameters(labor_efficiency=LaborEfficiency(weld=2.0))
        # ten multipliers at 1.0 plus one at 2.0 → mean 12/11
        assert adjusted_line_hours(line, params) == pytest.approx(12.0)

    def test_breakdown_takes_precedence_over_total(self):
        line = LineItem(total_labor=100.0, labor_cut=2.0)
        assert adjusted_line_hours(line, EstimateParameters()) == pytest.approx(2.0)

    def test_negative_hours_clamped(self):
        line = LineItem(labor_weld=-5.0, labor_fit=1.0, labor_rate=50.0)
        assert adjusted_line_hours(line, EstimateParameters()) == 0.0
        totals = recalculate([line.to_record()], EstimateParameters())
        assert totals.labor_cost == 0.0

    def test_rate_multipliers(self, base_lines, zero_markup_parameters):
        params = zero_markup_parameters.model_copy(update={
            "material_rate_multiplier": 1.1,
            "coating_rate_multiplier": 2.0,
            "labor_rate_multiplier": 1.2,
        })
        totals = recalculate(base_lines, params)
        assert totals.material_cost == pytest.approx(1100.0)
        assert totals.coating_cost == pytest.approx(200.0)
        assert totals.labor_cost == pytest.approx(1200.0)
        assert totals.hardware_cost == pytest.approx(50.0)

    def test_session_markup_applied(self, base_lines):
        totals = recalculate(base_lines, EstimateParameters())
        direct = 2150.0 + _BASE_CONSUMABLES
        material_waste = direct * 0.05
        labor_waste = 1000.0 * 0.05
        before_overhead = direct + material_waste + labor_waste
        before_profit = before_overhead * 1.10
        assert totals.total_with_markup == pytest.approx(before_profit * 1.10)

    def test_zero_weight_metrics(self):
        totals = recalculate([make_line("L1", 0.0, laborWeld=5.0, laborRate=40.0)])
        assert totals.cost_per_ton == 0.0
        assert totals.hours_per_ton == 0.0
        assert totals.cost_per_pound == 0.0
        assert totals.hours_per_pound == 0.0

    def test_allowance_lines(self):
        lines = [
            make_line("L1", 100.0),
            make_line("L2", 0.0, category="Allowances"),
            make_line("L3", 0.0, itemDescription="Bid Coach Allowance (Win Strategy)"),
            make_line("L4", 0.0, subCategory="Bid Coach", status="Void"),
        ]
        assert [line.line_id for line in allowance_lines(lines)] == ["L2", "L3"]


# ===========================================================================
# Class 2: Parameter mutation
# ===========================================================================

class TestParameterMutation:

    def test_set_parameter_records_impact(self, base_lines, zero_markup_parameters):
        session = ParameterizedRecalculator(base_lines, parameters=zero_markup_parameters)
        entry = session.set_parameter("labor_efficiency.weld", 1.5, reason="new welder")
        assert entry.parameter == "labor_efficiency.weld"
        assert entry.old_value == 1.0
        assert entry.new_value == 1.5
        assert entry.reason == "new welder"
        assert entry.impact["hours_change"] == pytest.approx(5.0)
        assert entry.impact["cost_change"] == pytest.approx(250.0)
        assert entry.impact["cost_per_ton_change"] == pytest.approx(250.0)
        assert session.get_parameter("labor_efficiency.weld") == 1.5
        assert session.totals.labor_hours == pytest.approx(25.0)

    def test_top_level_parameter(self, base_lines, zero_markup_parameters):
        session = ParameterizedRecalculator(base_lines, parameters=zero_markup_parameters)
        session.set_parameter("profit_percentage", 10.0)
        assert session.totals.profit == pytest.approx(session.totals.direct_cost * 0.10)

    @pytest.mark.parametrize("value", [0.49, 2.01, 5.0])
    def test_efficiency_out_of_range(self, base_lines, value):
        session = ParameterizedRecalculator(base_lines)
        before = session.totals
        with pytest.raises(ValueError):
            session.set_parameter("labor_efficiency.fit", value)
        assert session.get_parameter("labor_efficiency.fit") == 1.0
        assert session.totals is before
        assert session.history == []

    @pytest.mark.parametrize("path", ["labor_efficiency.grind", "markup", "labor_efficiency", "x.y.z"])
    def test_unknown_path(self, base_lines, path):
        session = ParameterizedRecalculator(base_lines)
        with pytest.raises(ValueError):
            session.set_parameter(path, 1.0)

    def test_negative_rate_multiplier_rejected(self, base_lines):
        session = ParameterizedRecalculator(base_lines)
        with pytest.raises(ValueError):
            session.set_parameter("labor_rate_multiplier", -0.5)

    @pytest.mark.parametrize("path, value", [
        ("profit_percentage", float("inf")),
        ("overhead_percentage", float("nan")),
        ("labor_rate_multiplier", float("-inf")),
        ("labor_efficiency.weld", float("nan")),
    ])
    def test_non_finite_value_rejected(self, base_lines, path, value):
        session = ParameterizedRecalculator(base_lines)
        before = session.totals
        old_value = session.get_parameter(path)
        with pytest.raises(ValueError):
            session.set_parameter(path, value)
        assert session.get_parameter(path) == old_value
        assert session.totals is before
        assert session.history == []

        session.set_parameter(path, 1.0)
        assert len(session.history) == 1

    def test_set_lines_recomputes(self, base_lines, zero_markup_parameters):
        session = ParameterizedRecalculator([], parameters=zero_markup_parameters)
        assert session.totals.labor_hours == 0.0
        session.set_lines(base_lines)
        assert session.totals.labor_hours == pytest.approx(20.0)


# ===========================================================================
# Class 3: Adjustment log
# ===========================================================================

class TestAdjustmentLog:

    def test_newest_first(self, base_lines):
        session = ParameterizedRecalculator(base_lines)
        session.set_parameter("labor_efficiency.weld", 1.2)
        session.set_parameter("labor_efficiency.fit", 0.8)
        assert [e.parameter for e in session.history] == ["labor_efficiency.fit", "labor_efficiency.weld"]

    def test_capped_at_50(self, base_lines):
        session = ParameterizedRecalculator(base_lines)
        for i in range(60):
            session.set_parameter("overhead_percentage", float(i))
        assert len(session.history) == 50
        assert session.history[0].new_value == 59.0
        assert session.history[-1].new_value == 10.0

    def test_reset(self, base_lines, zero_markup_parameters):
        session = ParameterizedRecalculator(base_lines, parameters=zero_markup_parameters)
        baseline = session.totals.total_with_markup
        session.set_parameter("labor_efficiency.weld", 2.0)
        entry = session.reset_parameters()
        assert entry.parameter == "all"
        assert (entry.old_value, entry.new_value) == (0.0, 0.0)
        assert entry.reason == "Reset all parameters to defaults"
        assert session.get_parameter("labor_efficiency.weld") == 1.0
        assert session.totals.total_with_markup == pytest.approx(baseline)
        assert entry.impact["hours_change"] == pytest.approx(-10.0)

    def test_record_shape(self, base_lines):
        session = ParameterizedRecalculator(base_lines, user_id="u-1", user_name="Estimator")
        record = session.set_parameter("profit_percentage", 12.0).to_record()
        assert set(record) == {
            "id", "parameter", "oldValue", "newValue", "impact", "timestamp", "userId", "userName", "reason",
        }
        assert record["userId"] == "u-1"
        assert record["oldValue"] == 10.0


# ===========================================================================
# Class 4: Audit sink
# ===========================================================================

class _FailingSink:
    async def record_adjustment(self, project_id, record):
        raise RuntimeError("audit store offline")


class TestAuditSink:

    def test_mirrored_to_store(self, base_lines, memory_store):
        session = ParameterizedRecalculator(base_lines, audit_sink=memory_store, project_id="p1")
        asyncio.run(session.update_parameter("labor_efficiency.paint", 1.3))
        asyncio.run(session.update_parameter("labor_efficiency.paint", 1.4))
        stored = asyncio.run(memory_store.list_adjustments("p1"))
        assert [r["newValue"] for r in stored] == [1.4, 1.3]

    def test_sink_failure_is_logged_not_raised(self, base_lines, caplog):
        session = ParameterizedRecalculator(base_lines, audit_sink=_FailingSink(), project_id="p1")
        with caplog.at_level(logging.WARNING, logger="steel-estimator.recalc"):
            entry = asyncio.run(session.update_parameter("labor_efficiency.cut", 0.9))
        assert session.history[0] is entry
        assert "audit store offline" in caplog.text
