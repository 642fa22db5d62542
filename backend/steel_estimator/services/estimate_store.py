"""
Estimate store — the persistence contracts the engines talk to, with an
in-memory implementation (tests, dev mode) and an async SQLAlchemy one.

Contracts:
  LineItemStore     read-all, create-one, change notification per project
  ProjectRegistry   ``{id, status, archived}`` records and fleet line sets
  SettingsProvider  company settings
  AuditSink         append-only adjustment records
"""

import copy
import logging
import uuid
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from steel_estimator.models.estimate_models import DEFAULT_COMPANY_SETTINGS, CompanySettings, ProjectRecord
from steel_estimator.models.orm_models import CompanySettingsRecord, EstimateAdjustment, EstimateLine, Project

logger = logging.getLogger("steel-estimator.store")

LinesListener = Callable[[List[Dict[str, Any]]], None]


class LineItemStore(Protocol):
    async def list_lines(self, project_id: str) -> List[Dict[str, Any]]: ...

    async def create_line(self, project_id: str, record: Dict[str, Any]) -> Dict[str, Any]: ...


class ProjectRegistry(Protocol):
    async def list_projects(self, include_archived: bool = False) -> List[ProjectRecord]: ...

    async def fleet_line_sets(self) -> Dict[str, List[Dict[str, Any]]]: ...


class SettingsProvider(Protocol):
    async def get_company_settings(self) -> CompanySettings: ...


class AuditSink(Protocol):
    async def record_adjustment(self, project_id: str, record: Dict[str, Any]) -> None: ...


class _ChangeFeed:
    """In-process change notification: listeners get the full line set after each write."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[LinesListener]] = defaultdict(list)

    def subscribe(self, project_id: str, listener: LinesListener) -> Callable[[], None]:
        self._listeners[project_id].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[project_id]:
                self._listeners[project_id].remove(listener)

        return unsubscribe

    def _notify(self, project_id: str, lines: List[Dict[str, Any]]) -> None:
        for listener in list(self._listeners.get(project_id, [])):
            try:
                listener(lines)
            except Exception as e:
                logger.error(f"Line listener failed: {e}", extra={"project_id": project_id})


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class InMemoryEstimateStore(_ChangeFeed):
    """Dict-backed store. Records are deep-copied on the way in and out."""

    def __init__(self, company_settings: Optional[CompanySettings] = None) -> None:
        super().__init__()
        self.company_settings = company_settings or DEFAULT_COMPANY_SETTINGS
        self._projects: Dict[str, ProjectRecord] = {}
        self._lines: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self._adjustments: Dict[str, List[Dict[str, Any]]] = defaultdict(list)

    # ── seeding ────────────────────────────────────────────────────────────
    def add_project(
        self,
        project_id: str,
        status: str = "draft",
        archived: bool = False,
        lines: Optional[List[Dict[str, Any]]] = None,
        project_name: str = "",
    ) -> ProjectRecord:
        record = ProjectRecord(id=project_id, status=status, archived=archived, project_name=project_name)
        self._projects[project_id] = record
        if lines is not None:
            self._lines[project_id] = copy.deepcopy(list(lines))
        return record

    # ── LineItemStore ──────────────────────────────────────────────────────
    async def list_lines(self, project_id: str) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._lines.get(project_id, []))

    async def create_line(self, project_id: str, record: Dict[str, Any]) -> Dict[str, Any]:
        stored = {**copy.deepcopy(record), "id": record.get("id") or str(uuid.uuid4())}
        self._lines[project_id].append(stored)
        logger.info(f"Line {stored.get('lineId', '')} created", extra={"project_id": project_id})
        self._notify(project_id, copy.deepcopy(self._lines[project_id]))
        return copy.deepcopy(stored)

    # ── ProjectRegistry ────────────────────────────────────────────────────
    async def list_projects(self, include_archived: bool = False) -> List[ProjectRecord]:
        return [p for p in self._projects.values() if include_archived or not p.archived]

    async def fleet_line_sets(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            p.id: copy.deepcopy(self._lines.get(p.id, []))
            for p in await self.list_projects()
        }

    # ── SettingsProvider ───────────────────────────────────────────────────
    async def get_company_settings(self) -> CompanySettings:
        return self.company_settings

    # ── AuditSink ──────────────────────────────────────────────────────────
    async def record_adjustment(self, project_id: str, record: Dict[str, Any]) -> None:
        self._adjustments[project_id].insert(0, copy.deepcopy(record))

    async def list_adjustments(self, project_id: str) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._adjustments.get(project_id, []))


# ---------------------------------------------------------------------------
# SQLAlchemy
# ---------------------------------------------------------------------------

class SqlEstimateStore(_ChangeFeed):
    """Async SQLAlchemy store over the ``projects`` / ``estimate_lines`` tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        super().__init__()
        self.session_factory = session_factory

    async def list_lines(self, project_id: str) -> List[Dict[str, Any]]:
        async with self.session_factory() as session:
            return await self._lines_for(session, project_id)

    @staticmethod
    async def _lines_for(session: AsyncSession, project_id: str) -> List[Dict[str, Any]]:
        result = await session.execute(
            select(EstimateLine)
            .where(EstimateLine.project_id == project_id)
            .order_by(EstimateLine.created_at, EstimateLine.id)
        )
        return [{**row.data, "id": row.id} for row in result.scalars().all()]

    async def create_line(self, project_id: str, record: Dict[str, Any]) -> Dict[str, Any]:
        row = EstimateLine(
            id=record.get("id") or str(uuid.uuid4()),
            project_id=project_id,
            line_id=record.get("lineId", ""),
            status=record.get("status", "Active"),
            data={k: v for k, v in record.items() if k != "id"},
        )
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
            lines = await self._lines_for(session, project_id)
        logger.info(f"Line {row.line_id} created", extra={"project_id": project_id})
        self._notify(project_id, lines)
        return {**row.data, "id": row.id}

    async def list_projects(self, include_archived: bool = False) -> List[ProjectRecord]:
        stmt = select(Project)
        if not include_archived:
            stmt = stmt.where(Project.archived.is_(False))
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [
                ProjectRecord(id=p.id, status=p.status, archived=p.archived, project_name=p.project_name or "")
                for p in result.scalars().all()
            ]

    async def fleet_line_sets(self) -> Dict[str, List[Dict[str, Any]]]:
        projects = await self.list_projects()
        line_sets: Dict[str, List[Dict[str, Any]]] = {p.id: [] for p in projects}
        if not line_sets:
            return line_sets
        async with self.session_factory() as session:
            result = await session.execute(
                select(EstimateLine)
                .where(EstimateLine.project_id.in_(list(line_sets)))
                .order_by(EstimateLine.created_at, EstimateLine.id)
            )
            for row in result.scalars().all():
                line_sets[row.project_id].append({**row.data, "id": row.id})
        return line_sets

    async def get_company_settings(self) -> CompanySettings:
        async with self.session_factory() as session:
            result = await session.execute(
                select(CompanySettingsRecord).order_by(CompanySettingsRecord.id.desc()).limit(1)
            )
            row = result.scalar_one_or_none()
        if row is None:
            return DEFAULT_COMPANY_SETTINGS
        return CompanySettings.model_validate(row.data)

    async def record_adjustment(self, project_id: str, record: Dict[str, Any]) -> None:
        row = EstimateAdjustment(
            id=record.get("id") or str(uuid.uuid4()),
            project_id=project_id,
            parameter=record.get("parameter", ""),
            old_value=record.get("oldValue"),
            new_value=record.get("newValue"),
            impact=record.get("impact"),
            reason=record.get("reason"),
            user_id=record.get("userId"),
            user_name=record.get("userName"),
        )
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
