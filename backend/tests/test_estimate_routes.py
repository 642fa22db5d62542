"""
test_estimate_routes.py — API tests over an in-memory store.

Fleet: two won and one lost project at 8 weld / 6 fit MH per ton, one
submitted bid at 12 weld, one archived outlier, and the current project
at 15 weld / 3 fit / 1 cut MH per ton (2 tons).
"""

import asyncio
import pytest
from fastapi.testclient import TestClient

from conftest import make_line
from steel_estimator.main import create_app
from steel_estimator.services.estimate_store import InMemoryEstimateStore


@pytest.fixture
def store(weld_lines):
    store = InMemoryEstimateStore()
    history = [make_line("L1", 2000.0, laborWeld=8.0, laborFit=6.0, laborRate=40.0)]
    store.add_project("won-a", status="won", lines=history)
    store.add_project("won-b", status="won", lines=history)
    store.add_project("lost-a", status="lost", lines=history)
    store.add_project("bid", status="submitted", lines=[make_line("L1", 2000.0, laborWeld=12.0)])
    store.add_project("old", status="won", archived=True, lines=[make_line("L1", 2000.0, laborWeld=500.0)])
    store.add_project("cur", status="draft", lines=weld_lines)
    return store


@pytest.fixture
def client(store):
    return TestClient(create_app(store=store, configure_logging=False))


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "active"
        assert response.json()["store"] == "InMemoryEstimateStore"

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
        assert "X-Process-Time" in response.headers


class TestSummary:

    def test_summary_uses_company_markup(self, client):
        response = client.post("/api/estimates/cur/summary", json={})
        assert response.status_code == 200
        body = response.json()
        assert body["line_count"] == 3
        assert body["totals"]["weight"] == pytest.approx(4000.0)
        assert body["totals"]["labor_hours"] == pytest.approx(38.0)
        assert body["parameters"]["overhead_percentage"] == 15.0
        assert body["allowance_lines"] == []

    def test_summary_with_session_parameters(self, client):
        payload = {"parameters": {"labor_efficiency": {"weld": 2.0}}}
        response = client.post("/api/estimates/cur/summary", json=payload)
        assert response.status_code == 200
        assert response.json()["totals"]["labor_hours"] == pytest.approx(68.0)

    def test_summary_rejects_out_of_range_efficiency(self, client):
        payload = {"parameters": {"labor_efficiency": {"weld": 3.0}}}
        assert client.post("/api/estimates/cur/summary", json=payload).status_code == 422


class TestParameters:

    def test_update_and_history(self, client, store):
        response = client.post(
            "/api/estimates/cur/parameters",
            json={"path": "labor_efficiency.weld", "value": 1.2, "reason": "new crew"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["adjustment"]["parameter"] == "labor_efficiency.weld"
        assert body["adjustment"]["impact"]["hours_change"] == pytest.approx(6.0)
        assert body["parameters"]["labor_efficiency"]["weld"] == 1.2

        history = client.get("/api/estimates/cur/adjustments").json()["adjustments"]
        assert [entry["newValue"] for entry in history] == [1.2]
        assert len(asyncio.run(store.list_adjustments("cur"))) == 1

    def test_reset(self, client):
        client.post("/api/estimates/cur/parameters", json={"path": "labor_efficiency.fit", "value": 0.5})
        body = client.post("/api/estimates/cur/parameters/reset").json()
        assert body["adjustment"]["parameter"] == "all"
        assert body["parameters"]["labor_efficiency"]["fit"] == 1.0
        history = client.get("/api/estimates/cur/adjustments").json()["adjustments"]
        assert [entry["parameter"] for entry in history] == ["all", "labor_efficiency.fit"]

    @pytest.mark.parametrize("payload", [
        {"path": "labor_efficiency.grind", "value": 1.0},
        {"path": "labor_efficiency.weld", "value": 2.5},
    ])
    def test_rejected(self, client, payload):
        assert client.post("/api/estimates/cur/parameters", json=payload).status_code == 400

    def test_non_finite_value_leaves_session_usable(self, client):
        response = client.post(
            "/api/estimates/cur/parameters",
            content='{"path": "overhead_percentage", "value": NaN}',
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400

        follow_up = client.post("/api/estimates/cur/parameters", json={"path": "profit_percentage", "value": 5})
        assert follow_up.status_code == 200
        assert follow_up.json()["parameters"]["profit_percentage"] == 5.0
        assert follow_up.json()["parameters"]["overhead_percentage"] == 15.0
        history = client.get("/api/estimates/cur/adjustments").json()["adjustments"]
        assert [entry["parameter"] for entry in history] == ["profit_percentage"]


class TestCategoryComparison:

    def test_labor_rows(self, client):
        response = client.get("/api/estimates/cur/category-comparison")
        assert response.status_code == 200
        body = response.json()
        assert body["benchmarks"]["won_count"] == 2
        assert body["benchmarks"]["lost_count"] == 1
        assert body["benchmarks"]["all_count"] == 4
        rows = {row["category"]: row for row in body["rows"]}
        assert rows["Weld"]["current"] == pytest.approx(15.0)
        assert rows["Weld"]["average"] == pytest.approx(9.0)
        assert rows["Weld"]["deviation"] == pytest.approx(200.0 / 3.0)

    def test_cost_metric(self, client):
        response = client.get("/api/estimates/cur/category-comparison", params={"metric": "costPerTon"})
        assert response.status_code == 200
        assert response.json()["benchmarks"]["metric"] == "costPerTon"

    def test_unknown_metric(self, client):
        response = client.get("/api/estimates/cur/category-comparison", params={"metric": "widgets"})
        assert response.status_code == 400


class TestCoach:

    def test_recommendations(self, client):
        response = client.get("/api/estimates/cur/coach")
        assert response.status_code == 200
        body = response.json()
        assert body["state"] == "computed"
        assert body["labor_rate"] == 50.0
        keys = [rec["category_key"] for rec in body["recommendations"]]
        assert keys[0] == "Fit"
        assert "Weld" not in keys
        fit = body["recommendations"][0]
        assert fit["total_delta_hours"] == pytest.approx(6.0)
        assert fit["est_cost_impact"] == pytest.approx(300.0)
        assert all(body["selection"].values())

    def test_unknown_mode(self, client):
        assert client.get("/api/estimates/cur/coach", params={"mode": "aggressive"}).status_code == 400

    def test_apply_twice_then_empty(self, client, store):
        first = client.post("/api/estimates/cur/coach/apply", json={"mode": "protect", "category_keys": ["Fit"]})
        assert first.status_code == 200
        line = first.json()["line"]
        assert line["lineId"] == "L4"
        assert line["totalLabor"] == pytest.approx(6.0)
        assert line["laborCost"] == pytest.approx(300.0)
        assert first.json()["coach"]["state"] == "committed"

        second = client.post("/api/estimates/cur/coach/apply", json={"mode": "win", "category_keys": ["Fit"]})
        assert second.status_code == 200
        assert second.json()["line"]["lineId"] == "L5"
        assert second.json()["line"]["itemDescription"] == "Bid Coach Allowance (Win Strategy)"

        empty = client.post("/api/estimates/cur/coach/apply", json={"category_keys": []})
        assert empty.status_code == 400
        assert empty.json()["detail"] == "Select at least one recommendation to apply."
        assert len(asyncio.run(store.list_lines("cur"))) == 5

        summary = client.post("/api/estimates/cur/summary", json={}).json()
        assert [line["lineId"] for line in summary["allowance_lines"]] == ["L4", "L5"]

    def test_omitted_keys_keep_current_selection(self, client, store):
        cleared = client.post("/api/estimates/cur/coach/apply", json={"category_keys": []})
        assert cleared.status_code == 400

        kept = client.post("/api/estimates/cur/coach/apply", json={})
        assert kept.status_code == 400
        assert kept.json()["detail"] == "Select at least one recommendation to apply."
        assert len(asyncio.run(store.list_lines("cur"))) == 3

        chosen = client.post("/api/estimates/cur/coach/apply", json={"category_keys": ["Fit"]})
        assert chosen.status_code == 200
        assert chosen.json()["coach"]["selection"]["Fit"] is True


class _ReadOnlyStore(InMemoryEstimateStore):
    async def create_line(self, project_id, record):
        raise PermissionError("estimate is locked")


def test_apply_store_failure_is_502(weld_lines):
    store = _ReadOnlyStore()
    store.add_project("won-a", status="won", lines=[make_line("L1", 2000.0, laborWeld=20.0)])
    store.add_project("cur", lines=weld_lines)
    client = TestClient(create_app(store=store, configure_logging=False))

    response = client.post("/api/estimates/cur/coach/apply", json={})
    assert response.status_code == 502
    assert response.json()["detail"] == "estimate is locked"
    assert len(asyncio.run(store.list_lines("cur"))) == 3
