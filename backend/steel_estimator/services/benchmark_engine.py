"""
BenchmarkEngine — company-wide, won and lost per-ton averages across the
historical project fleet, and the current-vs-average comparison rows.

Averages are POOLED: every non-void line of every qualifying project is
concatenated before the weight and category sums, so a large project weighs
in proportion to its tonnage. A pool with no lines yields an empty map;
"no entry" means "no data", not "value is 0".
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from steel_estimator.config import LOST_STATUS, WON_STATUS
from steel_estimator.models.estimate_models import LineItem, MarkupSettings, ProjectRecord
from steel_estimator.services.aggregation_engine import (
    METRIC_LABOR_HOURS,
    AggregateTotals,
    LineAggregator,
    active_lines,
    check_metric,
)
from steel_estimator.services.categories import ALLOWANCE, COST_CATEGORIES, LABOR_CATEGORIES, category_color
from steel_estimator.services.perf_monitor import timed

logger = logging.getLogger("steel-estimator.benchmark")

ProjectStatuses = Union[Mapping[str, Any], Iterable[Any]]


@dataclass
class BenchmarkMaps:
    metric: str
    all: Dict[str, float] = field(default_factory=dict)
    won: Dict[str, float] = field(default_factory=dict)
    lost: Dict[str, float] = field(default_factory=dict)
    all_count: int = 0
    won_count: int = 0
    lost_count: int = 0

    @property
    def history_count(self) -> int:
        """Won + lost projects; drives recommendation confidence."""
        return self.won_count + self.lost_count

    def win_loss_average(self, key: str) -> float:
        won = self.won.get(key, 0.0)
        lost = self.lost.get(key, 0.0)
        if won > 0 and lost > 0:
            return (won + lost) / 2
        return won if won > 0 else lost

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "all": dict(self.all),
            "won": dict(self.won),
            "lost": dict(self.lost),
            "all_count": self.all_count,
            "won_count": self.won_count,
            "lost_count": self.lost_count,
        }


@dataclass
class ComparisonRow:
    category: str
    label: str
    current: float
    average: float
    deviation: float          # % vs company average; 0 when average is 0
    color: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "label": self.label,
            "current": self.current,
            "average": self.average,
            "deviation": self.deviation,
            "color": self.color,
        }


def normalise_registry(project_statuses: Optional[ProjectStatuses]) -> Dict[str, ProjectRecord]:
    """
    Accept ``{project_id: status}``, ``{project_id: ProjectRecord|dict}`` or
    an iterable of ProjectRecord/dicts and index it by project id.
    """
    registry: Dict[str, ProjectRecord] = {}
    if not project_statuses:
        return registry

    if isinstance(project_statuses, Mapping):
        for project_id, value in project_statuses.items():
            if isinstance(value, ProjectRecord):
                registry[project_id] = value
            elif isinstance(value, Mapping):
                registry[project_id] = ProjectRecord.model_validate({**value, "id": project_id})
            else:
                registry[project_id] = ProjectRecord(id=project_id, status=value)
        return registry

    for entry in project_statuses:
        record = entry if isinstance(entry, ProjectRecord) else ProjectRecord.model_validate(entry)
        registry[record.id] = record
    return registry


class BenchmarkEngine:
    """Pools historical line sets and aggregates them under one metric."""

    def __init__(self, markup: Optional[MarkupSettings] = None) -> None:
        self.aggregator = LineAggregator(markup)

    @timed
    def benchmark(
        self,
        project_line_sets: Mapping[str, Iterable[Any]],
        project_statuses: Optional[ProjectStatuses] = None,
        metric: str = METRIC_LABOR_HOURS,
        current_project_id: Optional[str] = None,
    ) -> BenchmarkMaps:
        check_metric(metric)
        registry = normalise_registry(project_statuses)

        pools: Dict[str, List[LineItem]] = {"all": [], WON_STATUS: [], LOST_STATUS: []}
        counts = {"all": 0, WON_STATUS: 0, LOST_STATUS: 0}

        for project_id, lines in project_line_sets.items():
            if current_project_id and project_id == current_project_id:
                continue
            record = registry.get(project_id)
            if record is not None and record.archived:
                continue

            active = active_lines(lines)
            status = record.status if record is not None else ""
            counts["all"] += 1
            pools["all"].extend(active)
            if status in (WON_STATUS, LOST_STATUS):
                counts[status] += 1
                pools[status].extend(active)

        maps = BenchmarkMaps(
            metric=metric,
            all=self._pool_map(pools["all"], metric),
            won=self._pool_map(pools[WON_STATUS], metric),
            lost=self._pool_map(pools[LOST_STATUS], metric),
            all_count=counts["all"],
            won_count=counts[WON_STATUS],
            lost_count=counts[LOST_STATUS],
        )
        logger.debug(
            f"Benchmarked {maps.all_count} projects ({maps.won_count} won / {maps.lost_count} lost)",
            extra={"project_id": current_project_id, "category_count": len(maps.all)},
        )
        return maps

    def _pool_map(self, pool: List[LineItem], metric: str) -> Dict[str, float]:
        if not pool:
            return {}
        totals: AggregateTotals = self.aggregator.aggregate_active(pool, metric)
        return dict(totals.per_ton)


def benchmark(
    project_line_sets: Mapping[str, Iterable[Any]],
    project_statuses: Optional[ProjectStatuses] = None,
    metric: str = METRIC_LABOR_HOURS,
    current_project_id: Optional[str] = None,
    markup: Optional[MarkupSettings] = None,
) -> BenchmarkMaps:
    return BenchmarkEngine(markup).benchmark(project_line_sets, project_statuses, metric, current_project_id)


def compare_categories(
    current: Mapping[str, float],
    average: Mapping[str, float],
    metric: str = METRIC_LABOR_HOURS,
) -> List[ComparisonRow]:
    """
    Current-vs-company rows for the comparison chart, most deviant first.

    Categories where both values are 0 are dropped. The Allowance row only
    appears under the labor metric, and only when either side carries it.
    """
    check_metric(metric)
    if metric == METRIC_LABOR_HOURS:
        categories = list(LABOR_CATEGORIES)
        if current.get(ALLOWANCE.key, 0.0) > 0 or average.get(ALLOWANCE.key, 0.0) > 0:
            categories.append(ALLOWANCE)
    else:
        categories = [c for c in COST_CATEGORIES if c.key not in ("Buyouts", "Shipping")]

    rows: List[ComparisonRow] = []
    for category in categories:
        cur = current.get(category.key, 0.0)
        avg = average.get(category.key, 0.0)
        if cur <= 0 and avg <= 0:
            continue
        rows.append(ComparisonRow(
            category=category.key,
            label=category.label,
            current=cur,
            average=avg,
            deviation=(cur - avg) / avg * 100 if avg > 0 else 0.0,
            color=category_color(category.key),
        ))

    rows.sort(key=lambda row: abs(row.deviation), reverse=True)
    return rows
