"""
conftest.py — Shared pytest fixtures for the steel estimator test suite.

No database fixtures are defined here. Engine tests are pure unit tests;
store and route tests run against InMemoryEstimateStore.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``steel_estimator.*`` imports resolve correctly regardless of where
    pytest is invoked.
"""

import sys
import os
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any package imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


def make_line(line_id="L1", weight=0.0, **fields):
    """
    Stored-shape (camelCase) line record. ``weight`` lands in totalWeight for
    rolled material and in plateTotalWeight when materialType is Plate.
    """
    record = {"lineId": line_id, "status": "Active", "materialType": "Material"}
    record.update(fields)
    if record["materialType"] == "Plate":
        record.setdefault("plateTotalWeight", weight)
    else:
        record.setdefault("totalWeight", weight)
    return record


# ---------------------------------------------------------------------------
# Line-set fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def weld_lines():
    """
    Three active lines, weld hours [10, 20, 0], 4000 lb total (2 tons):
    weld = 30 / 2 = 15 MH/ton.
    """
    return [
        make_line("L1", 2000.0, laborWeld=10.0, laborFit=4.0, laborRate=50.0),
        make_line("L2", 1500.0, laborWeld=20.0, laborCut=2.0, laborRate=50.0),
        make_line("L3", 500.0, laborWeld=0.0, laborFit=2.0),
    ]


@pytest.fixture
def costed_lines():
    """Lines with cost fields for the cost metric and recalculation."""
    return [
        make_line(
            "L1", 2000.0,
            materialCost=1000.0, laborCost=500.0, coatingCost=100.0, hardwareCost=50.0,
            laborRate=50.0, laborFit=6.0, laborWeld=4.0, totalLabor=10.0,
            totalSurfaceArea=120.0,
        ),
        make_line(
            "L2", 0.0, materialType="Plate", plateTotalWeight=2000.0, plateSurfaceArea=40.0,
            materialCost=400.0, laborCost=200.0, laborRate=40.0, totalLabor=5.0,
        ),
    ]


@pytest.fixture(scope="session")
def company_settings():
    """Company defaults: 15 % overhead, 10 % profit, 5 % / 10 % waste, Fabricator 45/h first."""
    from steel_estimator.models.estimate_models import DEFAULT_COMPANY_SETTINGS
    return DEFAULT_COMPANY_SETTINGS


@pytest.fixture
def zero_markup_parameters():
    """Session parameters with every markup percentage at 0."""
    from steel_estimator.models.estimate_models import EstimateParameters
    return EstimateParameters(
        overhead_percentage=0.0,
        profit_percentage=0.0,
        material_waste_percentage=0.0,
        labor_waste_percentage=0.0,
    )


@pytest.fixture
def memory_store():
    from steel_estimator.services.estimate_store import InMemoryEstimateStore
    return InMemoryEstimateStore()
