"""
Bizflow Workflow Scheduler

Tracks next-run times of SCHEDULED workflows and periodically feeds due
workflows into the dispatcher and engine as synthetic SCHEDULED events.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

import structlog

from bizflow.automation.engine import WorkflowEngine
from bizflow.automation.errors import NotFoundError, ValidationError
from bizflow.automation.registry import WorkflowStore
from bizflow.automation.triggers.dispatcher import TriggerDispatcher
from bizflow.automation.triggers.schedule import latest_due_slot
from bizflow.automation.types import (
    ExecutionResult,
    ExecutionStatus,
    Schedule,
    TriggerEvent,
    TriggerType,
    WorkflowTrigger,
    format_datetime,
)
from bizflow.automation.workflow import Workflow
from bizflow.core.clock import Clock, SystemClock

logger = structlog.get_logger(__name__)


@dataclass
class ScheduleEntry:
    workflow_id: str
    tenant_id: str
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    is_active: bool = True

    def is_due(self, now: datetime) -> bool:
        return self.is_active and self.next_run_at is not None and self.next_run_at <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "tenant_id": self.tenant_id,
            "next_run_at": format_datetime(self.next_run_at),
            "last_run_at": format_datetime(self.last_run_at),
            "is_active": self.is_active,
        }


@dataclass
class SweepResult:
    executed: int = 0
    successful: int = 0
    failed: int = 0
    resumed: int = 0


class WorkflowScheduler:
    """
    Schedule sweep for time-based workflows.

    The slot a sweep fires is recorded on the workflow, and its next run is
    recomputed, before the execution runs, so a slow execution is never
    fired twice for the same slot.
    """

    def __init__(
        self,
        store: WorkflowStore,
        dispatcher: TriggerDispatcher,
        engine: WorkflowEngine,
        clock: Optional[Clock] = None,
        interval_seconds: float = 60.0,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.engine = engine
        self.interval_seconds = interval_seconds
        self._clock = clock or SystemClock()

        self._entries: Dict[str, ScheduleEntry] = {}
        self._by_tenant: Dict[str, Set[str]] = defaultdict(set)

        self._schedule_task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

    # === Registration ===

    async def load_tenant(self, tenant_id: Optional[str] = None) -> int:
        """Register the scheduled workflows of one tenant, or of all tenants."""
        workflows = await self.store.find_scheduled_workflows(tenant_id)
        for workflow in workflows:
            self.schedule_workflow(workflow)
        logger.info("schedules_loaded", tenant_id=tenant_id, count=len(workflows))
        return len(workflows)

    def schedule_workflow(self, workflow: Workflow) -> Optional[ScheduleEntry]:
        """Track a workflow, or drop it when its trigger is not a schedule."""
        if not workflow.is_scheduled:
            self.unschedule_workflow(workflow.id)
            return None

        entry = ScheduleEntry(
            workflow_id=workflow.id,
            tenant_id=workflow.tenant_id,
            next_run_at=workflow.next_scheduled_run(),
            last_run_at=workflow.last_run_at,
            is_active=workflow.is_active,
        )
        self._entries[workflow.id] = entry
        self._by_tenant[workflow.tenant_id].add(workflow.id)

        logger.debug(
            "workflow_scheduled",
            workflow_id=workflow.id,
            next_run_at=format_datetime(entry.next_run_at),
        )
        return entry

    def unschedule_workflow(self, workflow_id: str) -> bool:
        entry = self._entries.pop(workflow_id, None)
        if entry is None:
            return False
        self._by_tenant[entry.tenant_id].discard(workflow_id)
        logger.debug("workflow_unscheduled", workflow_id=workflow_id)
        return True

    async def update_schedule(self, tenant_id: str, workflow_id: str, schedule: Schedule) -> ScheduleEntry:
        """Replace a workflow's schedule, keeping its trigger conditions."""
        workflow = await self.store.find_by_id(workflow_id, tenant_id=tenant_id)
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)
        if workflow.trigger.type != TriggerType.SCHEDULED:
            raise ValidationError("Only SCHEDULED workflows have a schedule", field="trigger")

        facts = workflow.update_trigger(
            WorkflowTrigger(
                type=TriggerType.SCHEDULED,
                conditions=list(workflow.trigger.conditions),
                schedule=schedule,
            )
        )
        await self.store.update(workflow)
        await self.engine.publish_facts(facts)
        return self.schedule_workflow(workflow)

    def get_scheduled_workflows(self, tenant_id: Optional[str] = None) -> List[ScheduleEntry]:
        if tenant_id is None:
            entries = list(self._entries.values())
        else:
            entries = [self._entries[i] for i in self._by_tenant.get(tenant_id, set())]
        return sorted(entries, key=lambda e: (e.next_run_at is None, e.next_run_at or 0))

    def get_entry(self, workflow_id: str) -> Optional[ScheduleEntry]:
        return self._entries.get(workflow_id)

    # === Sweep ===

    async def run_due(self, tenant_id: Optional[str] = None, now: Optional[datetime] = None) -> SweepResult:
        """
        Fire every due schedule.

        Elapsed action delays are resumed first. Each due workflow gets one
        synthetic SCHEDULED event for its latest due slot.
        """
        now = now or self._clock.now()
        result = SweepResult()

        resumed = await self.engine.resume_due(now)
        result.resumed = len(resumed)

        runs = []
        for entry in self.get_scheduled_workflows(tenant_id):
            if not entry.is_due(now):
                continue

            workflow = await self.store.find_by_id(entry.workflow_id)
            if workflow is None:
                self.unschedule_workflow(entry.workflow_id)
                continue

            slot = latest_due_slot(workflow.trigger.schedule, entry.next_run_at, now)
            event = TriggerEvent(
                type=TriggerType.SCHEDULED,
                tenant_id=workflow.tenant_id,
                payload={
                    "workflow_id": workflow.id,
                    "tenant_id": workflow.tenant_id,
                    "scheduled_at": slot.isoformat(),
                },
                target_workflow_id=workflow.id,
            )
            matches = await self.dispatcher.dispatch(event)

            workflow.mark_scheduled_run(slot)
            await self.store.update(workflow)
            updated = self.schedule_workflow(workflow)

            logger.info(
                "schedule_fired",
                workflow_id=workflow.id,
                slot=slot.isoformat(),
                matched=bool(matches),
                next_run_at=format_datetime(updated.next_run_at) if updated else None,
            )

            for match in matches:
                runs.append(self.engine.execute_workflow(match.workflow, event.payload, TriggerType.SCHEDULED))

        for execution in await asyncio.gather(*runs):
            self._count(result, execution)

        if result.executed or result.resumed:
            logger.info(
                "schedule_sweep_completed",
                tenant_id=tenant_id,
                executed=result.executed,
                successful=result.successful,
                failed=result.failed,
                resumed=result.resumed,
            )
        return result

    @staticmethod
    def _count(result: SweepResult, execution: ExecutionResult) -> None:
        if execution.status == ExecutionStatus.SKIPPED:
            return
        result.executed += 1
        if execution.success:
            result.successful += 1
        else:
            result.failed += 1

    # === Background Loop ===

    def start(self) -> None:
        if self._schedule_task is not None:
            return
        self._shutdown_event.clear()
        self._schedule_task = asyncio.create_task(self._schedule_loop())
        logger.info("Scheduler started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        self._shutdown_event.set()

        if self._schedule_task:
            self._schedule_task.cancel()
            try:
                await self._schedule_task
            except asyncio.CancelledError:
                pass
            self._schedule_task = None

        logger.info("Scheduler stopped")

    async def _schedule_loop(self) -> None:
        """Background sweep every ``interval_seconds``."""
        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.run_due()
            except Exception:
                logger.exception("schedule_sweep_error")
