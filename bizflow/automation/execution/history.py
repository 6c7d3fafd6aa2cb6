"""
Bizflow Execution History

Audit log of finished executions. The engine only appends; the read side
serves reporting.
"""

from __future__ import annotations

import asyncio
import json
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import structlog

from bizflow.automation.types import ExecutionStatus, WorkflowExecution
from bizflow.core.clock import Clock, SystemClock

logger = structlog.get_logger(__name__)


class ExecutionHistorySink(Protocol):
    """Destination for finished execution records."""

    async def append(self, execution: WorkflowExecution) -> None: ...


@dataclass
class ExecutionHistoryPage:
    executions: List[WorkflowExecution] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20
    total_pages: int = 0


class InMemoryExecutionHistory:
    """
    Keeps execution history for audit and analytics.

    Features:
    - Indices by tenant and workflow
    - Paginated history queries
    - Success-rate statistics with a daily breakdown
    - Retention by age and count
    - Optional JSON persistence
    """

    def __init__(
        self,
        persistence_path: Optional[Path] = None,
        max_records: int = 10_000,
        retention_days: int = 90,
        clock: Optional[Clock] = None,
    ):
        self.persistence_path = Path(persistence_path) if persistence_path else None
        self.max_records = max_records
        self.retention_days = retention_days
        self._clock = clock or SystemClock()

        self._history: Dict[str, WorkflowExecution] = {}

        # Indices
        self._by_tenant: Dict[str, List[str]] = defaultdict(list)
        self._by_workflow: Dict[str, List[str]] = defaultdict(list)

        self._initialized = False
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Load persisted history."""
        if self._initialized:
            return

        if self.persistence_path:
            await self._load_history()

        self._initialized = True
        logger.info("Execution history initialized", records=len(self._history))

    async def shutdown(self) -> None:
        if self.persistence_path:
            await self._save_history()
        self._initialized = False

    # === Writes ===

    async def append(self, execution: WorkflowExecution) -> None:
        """Record a finished execution."""
        async with self._lock:
            self._history[execution.id] = execution
            self._index(execution)
            self._enforce_limits()

        logger.debug(
            "execution_recorded",
            execution_id=execution.id,
            workflow_id=execution.workflow_id,
            status=execution.status.value,
        )

    async def get(self, execution_id: str) -> Optional[WorkflowExecution]:
        return self._history.get(execution_id)

    # === Queries ===

    async def list(
        self,
        tenant_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> List[WorkflowExecution]:
        """Filtered records, most recent first."""
        if workflow_id:
            ids = self._by_workflow.get(workflow_id, [])
        elif tenant_id:
            ids = self._by_tenant.get(tenant_id, [])
        else:
            ids = list(self._history.keys())

        records = [self._history[i] for i in ids if i in self._history]

        if tenant_id:
            records = [r for r in records if r.tenant_id == tenant_id]
        if status:
            records = [r for r in records if r.status == status]
        if from_date:
            records = [r for r in records if r.started_at and r.started_at >= from_date]
        if to_date:
            records = [r for r in records if r.started_at and r.started_at <= to_date]

        records.sort(key=lambda r: (r.started_at is not None, r.started_at or 0), reverse=True)
        return records

    async def get_execution_history(
        self,
        tenant_id: str,
        workflow_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> ExecutionHistoryPage:
        page, limit = max(1, page), max(1, limit)
        records = await self.list(tenant_id=tenant_id, workflow_id=workflow_id)
        offset = (page - 1) * limit
        return ExecutionHistoryPage(
            executions=records[offset:offset + limit],
            total=len(records),
            page=page,
            limit=limit,
            total_pages=math.ceil(len(records) / limit),
        )

    async def get_execution_statistics(
        self,
        tenant_id: str,
        workflow_id: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Aggregate success statistics, defaulting to the last 30 days."""
        date_to = date_to or self._clock.now()
        date_from = date_from or (date_to - timedelta(days=30))

        records = await self.list(
            tenant_id=tenant_id,
            workflow_id=workflow_id,
            from_date=date_from,
            to_date=date_to,
        )

        total = len(records)
        successful = len([r for r in records if r.success])
        failed = total - successful
        durations = [r.duration_ms for r in records if r.duration_ms > 0]

        by_day: Dict[str, Dict[str, Any]] = {}
        for record in records:
            date_key = record.started_at.strftime("%Y-%m-%d")
            day = by_day.setdefault(
                date_key,
                {"date": date_key, "executions": 0, "successes": 0, "failures": 0},
            )
            day["executions"] += 1
            if record.success:
                day["successes"] += 1
            else:
                day["failures"] += 1

        return {
            "total_executions": total,
            "successful_executions": successful,
            "failed_executions": failed,
            "success_rate": successful / total if total > 0 else 0.0,
            "average_duration_ms": sum(durations) / len(durations) if durations else 0.0,
            "executions_by_day": [by_day[k] for k in sorted(by_day)],
        }

    # === Retention ===

    def _enforce_limits(self) -> None:
        cutoff = self._clock.now() - timedelta(days=self.retention_days)
        old_ids = [
            rid for rid, record in self._history.items()
            if record.started_at and record.started_at < cutoff
        ]
        for rid in old_ids:
            self._remove(rid)

        if len(self._history) > self.max_records:
            records = sorted(self._history.values(), key=lambda r: r.started_at or cutoff)
            excess = len(records) - self.max_records
            for record in records[:excess]:
                self._remove(record.id)

    def _index(self, record: WorkflowExecution) -> None:
        self._by_tenant[record.tenant_id].append(record.id)
        self._by_workflow[record.workflow_id].append(record.id)

    def _remove(self, execution_id: str) -> None:
        record = self._history.pop(execution_id, None)
        if not record:
            return
        if execution_id in self._by_tenant.get(record.tenant_id, []):
            self._by_tenant[record.tenant_id].remove(execution_id)
        if execution_id in self._by_workflow.get(record.workflow_id, []):
            self._by_workflow[record.workflow_id].remove(execution_id)

    # === Persistence ===

    async def _load_history(self) -> None:
        history_file = self.persistence_path / "execution_history.json"
        if not history_file.exists():
            return

        with open(history_file, "r") as f:
            data = json.load(f)

        for record_data in data.get("records", []):
            record = WorkflowExecution.from_dict(record_data)
            self._history[record.id] = record
            self._index(record)

    async def _save_history(self) -> None:
        self.persistence_path.mkdir(parents=True, exist_ok=True)
        history_file = self.persistence_path / "execution_history.json"

        data = {
            "records": [r.to_dict() for r in self._history.values()],
            "saved_at": self._clock.now().isoformat(),
        }

        with open(history_file, "w") as f:
            json.dump(data, f, default=str)
