"""
Bizflow Automation Service

In-process facade over the store, dispatcher, engine and scheduler: workflow
lifecycle, event ingestion, domain event helpers and reporting queries.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set

import structlog

from bizflow.automation.actions.executor import ActionExecutor
from bizflow.automation.conditions.evaluator import ConditionEvaluator
from bizflow.automation.engine import WorkflowEngine
from bizflow.automation.errors import BusinessRuleError, NotFoundError
from bizflow.automation.execution.history import InMemoryExecutionHistory
from bizflow.automation.registry import InMemoryWorkflowStore, Pagination, WorkflowFilters, WorkflowPage, WorkflowStore
from bizflow.automation.templates.builtin import get_template
from bizflow.automation.triggers.dispatcher import TriggerDispatcher
from bizflow.automation.triggers.scheduler import ScheduleEntry, SweepResult, WorkflowScheduler
from bizflow.automation.types import (
    Condition,
    ExecutionStatus,
    Schedule,
    TriggerEvent,
    TriggerType,
    WorkflowAction,
    WorkflowFact,
    WorkflowTrigger,
)
from bizflow.automation.workflow import Workflow
from bizflow.core.clock import Clock, IdFactory, SystemClock, new_id
from bizflow.core.config import BizflowConfig, get_config

logger = structlog.get_logger(__name__)


@dataclass
class TriggerSummary:
    triggered: int = 0
    successful: int = 0
    failed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)


class AutomationService:
    """
    Entry point for the surrounding application.

    Features:
    - Workflow lifecycle with fact publication
    - Fire-and-forget event ingestion
    - Awaited triggering with a per-event summary
    - Scheduler and history access
    """

    def __init__(
        self,
        store: WorkflowStore,
        engine: WorkflowEngine,
        dispatcher: TriggerDispatcher,
        scheduler: WorkflowScheduler,
        history: Optional[InMemoryExecutionHistory] = None,
        clock: Optional[Clock] = None,
        id_factory: Optional[IdFactory] = None,
        scheduler_enabled: bool = True,
    ):
        self.store = store
        self.engine = engine
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self.history = history
        self.scheduler_enabled = scheduler_enabled

        self._clock = clock or SystemClock()
        self._id_factory = id_factory or new_id
        self._ingest_tasks: Set[asyncio.Task] = set()
        self._initialized = False

    @classmethod
    def build(
        cls,
        executor: ActionExecutor,
        config: Optional[BizflowConfig] = None,
        clock: Optional[Clock] = None,
        id_factory: Optional[IdFactory] = None,
        store: Optional[WorkflowStore] = None,
    ) -> "AutomationService":
        """Wire the in-memory components from configuration."""
        config = config or get_config()
        clock = clock or SystemClock()
        id_factory = id_factory or new_id
        evaluator = ConditionEvaluator()

        store = store or InMemoryWorkflowStore(
            persistence_path=config.store.persistence_path,
            clock=clock,
            id_factory=id_factory,
        )
        history = InMemoryExecutionHistory(
            persistence_path=config.history.persistence_path,
            max_records=config.history.max_records,
            retention_days=config.history.retention_days,
            clock=clock,
        )
        engine = WorkflowEngine(
            executor=executor,
            history=history,
            clock=clock,
            id_factory=id_factory,
            evaluator=evaluator,
            max_concurrent_executions=config.execution.max_concurrent_executions,
            action_timeout_seconds=config.execution.action_timeout_seconds,
            max_queued_per_workflow=config.execution.max_queued_per_workflow,
        )
        dispatcher = TriggerDispatcher(store, evaluator)
        scheduler = WorkflowScheduler(
            store,
            dispatcher,
            engine,
            clock=clock,
            interval_seconds=config.scheduler.interval_seconds,
        )
        return cls(
            store=store,
            engine=engine,
            dispatcher=dispatcher,
            scheduler=scheduler,
            history=history,
            clock=clock,
            id_factory=id_factory,
            scheduler_enabled=config.scheduler.enabled,
        )

    # === Lifecycle ===

    async def initialize(self) -> None:
        if self._initialized:
            return

        initialize_store = getattr(self.store, "initialize", None)
        if initialize_store is not None:
            await initialize_store()
        if self.history is not None:
            await self.history.initialize()
        await self.scheduler.load_tenant()

        self._initialized = True
        logger.info("Automation service initialized")

    async def start(self) -> None:
        await self.initialize()
        if self.scheduler_enabled:
            self.scheduler.start()

    async def shutdown(self) -> None:
        logger.info("Shutting down automation service")

        await self.scheduler.stop()
        for task in list(self._ingest_tasks):
            task.cancel()
        if self._ingest_tasks:
            await asyncio.gather(*list(self._ingest_tasks), return_exceptions=True)
        await self.engine.shutdown()
        if self.history is not None:
            await self.history.shutdown()

        self._initialized = False

    def on_fact(self, callback: Callable) -> None:
        """Subscribe to workflow facts."""
        self.engine.on_fact(callback)

    # === Workflow Management ===

    async def create_workflow(
        self,
        tenant_id: str,
        name: str,
        trigger: WorkflowTrigger,
        actions: Sequence[WorkflowAction],
        description: Optional[str] = None,
        conditions: Optional[Sequence[Condition]] = None,
        is_active: bool = True,
    ) -> Workflow:
        workflow, facts = Workflow.create(
            name=name,
            tenant_id=tenant_id,
            trigger=trigger,
            actions=actions,
            description=description,
            conditions=conditions,
            is_active=is_active,
            clock=self._clock,
            id_factory=self._id_factory,
        )
        await self.store.save(workflow)
        self.scheduler.schedule_workflow(workflow)
        await self.engine.publish_facts(facts)
        return workflow

    async def create_from_template(
        self,
        tenant_id: str,
        template_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        **params: Any,
    ) -> Workflow:
        template = get_template(template_id)
        if template is None:
            raise NotFoundError("WorkflowTemplate", template_id)

        definition = template.build(**params)
        return await self.create_workflow(
            tenant_id=tenant_id,
            name=name or definition.name,
            description=description if description is not None else definition.description,
            trigger=definition.trigger,
            actions=definition.actions,
            conditions=definition.conditions,
        )

    async def get_workflow(self, tenant_id: str, workflow_id: str) -> Workflow:
        workflow = await self.store.find_by_id(workflow_id, tenant_id=tenant_id)
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)
        return workflow

    async def list_workflows(
        self,
        tenant_id: str,
        filters: Optional[WorkflowFilters] = None,
        pagination: Optional[Pagination] = None,
    ) -> WorkflowPage:
        return await self.store.find_all(tenant_id, filters, pagination)

    async def modify_workflow(
        self,
        tenant_id: str,
        workflow_id: str,
        mutation: Callable[[Workflow], List[WorkflowFact]],
    ) -> Workflow:
        """Apply one aggregate mutation, persist it and publish its facts."""
        workflow = await self.get_workflow(tenant_id, workflow_id)
        facts = mutation(workflow)
        await self.store.update(workflow)
        self.scheduler.schedule_workflow(workflow)
        await self.engine.publish_facts(facts)
        return workflow

    async def activate_workflow(self, tenant_id: str, workflow_id: str) -> Workflow:
        return await self.modify_workflow(tenant_id, workflow_id, lambda w: w.activate())

    async def deactivate_workflow(self, tenant_id: str, workflow_id: str) -> Workflow:
        return await self.modify_workflow(tenant_id, workflow_id, lambda w: w.deactivate())

    async def update_trigger(self, tenant_id: str, workflow_id: str, trigger: WorkflowTrigger) -> Workflow:
        return await self.modify_workflow(tenant_id, workflow_id, lambda w: w.update_trigger(trigger))

    async def update_details(
        self,
        tenant_id: str,
        workflow_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Workflow:
        return await self.modify_workflow(tenant_id, workflow_id, lambda w: w.update_details(name, description))

    async def update_conditions(self, tenant_id: str, workflow_id: str, conditions: Sequence[Condition]) -> Workflow:
        return await self.modify_workflow(tenant_id, workflow_id, lambda w: w.update_conditions(conditions))

    async def add_action(self, tenant_id: str, workflow_id: str, action: WorkflowAction) -> Workflow:
        return await self.modify_workflow(tenant_id, workflow_id, lambda w: w.add_action(action))

    async def update_action(
        self,
        tenant_id: str,
        workflow_id: str,
        action_id: str,
        updates: Mapping[str, Any],
    ) -> Workflow:
        return await self.modify_workflow(tenant_id, workflow_id, lambda w: w.update_action(action_id, updates))

    async def remove_action(self, tenant_id: str, workflow_id: str, action_id: str) -> Workflow:
        return await self.modify_workflow(tenant_id, workflow_id, lambda w: w.remove_action(action_id))

    async def reorder_actions(
        self,
        tenant_id: str,
        workflow_id: str,
        orders: Sequence[Mapping[str, Any]],
    ) -> Workflow:
        return await self.modify_workflow(tenant_id, workflow_id, lambda w: w.reorder_actions(orders))

    async def delete_workflow(self, tenant_id: str, workflow_id: str) -> bool:
        """Delete a workflow unless a delayed continuation still references it."""
        await self.get_workflow(tenant_id, workflow_id)

        if self.engine.has_pending(workflow_id) or self.engine.is_in_flight(workflow_id):
            raise BusinessRuleError(
                "Workflow has a pending execution and cannot be deleted",
                rule="workflow_has_pending_execution",
            )

        self.scheduler.unschedule_workflow(workflow_id)
        return await self.store.delete(workflow_id)

    # === Event Ingestion ===

    def ingest_event(
        self,
        event_type: TriggerType,
        tenant_id: str,
        payload: Mapping[str, Any],
    ) -> asyncio.Task:
        """Dispatch an event in the background."""
        task = asyncio.create_task(self.trigger_workflows(event_type, tenant_id, payload))
        self._ingest_tasks.add(task)
        task.add_done_callback(self._ingest_done)
        return task

    def _ingest_done(self, task: asyncio.Task) -> None:
        self._ingest_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("event_ingestion_failed", error=str(task.exception()))

    async def trigger_workflows(
        self,
        event_type: TriggerType,
        tenant_id: str,
        payload: Mapping[str, Any],
    ) -> TriggerSummary:
        """Dispatch an event and run every matched workflow."""
        event = TriggerEvent(type=TriggerType(event_type), tenant_id=tenant_id, payload=dict(payload))
        matches = await self.dispatcher.dispatch(event)

        results = await asyncio.gather(
            *(self.engine.execute_workflow(m.workflow, event.payload, event.type) for m in matches),
            return_exceptions=True,
        )

        summary = TriggerSummary()
        for match, result in zip(matches, results):
            if isinstance(result, Exception):
                logger.error(
                    "workflow_dispatch_error",
                    workflow_id=match.workflow.id,
                    error=str(result),
                )
                summary.triggered += 1
                summary.failed += 1
                summary.errors.append({"workflow_id": match.workflow.id, "error": str(result)})
                continue

            if result.status == ExecutionStatus.SKIPPED:
                continue

            summary.triggered += 1
            if result.success:
                summary.successful += 1
            else:
                summary.failed += 1
                summary.errors.append({"workflow_id": match.workflow.id, "error": "; ".join(result.errors)})

        return summary

    async def drain(self) -> None:
        """Wait for background ingestion and queued executions to finish."""
        while self._ingest_tasks:
            await asyncio.gather(*list(self._ingest_tasks), return_exceptions=True)
        await self.engine.wait_idle()

    # === Domain Event Helpers ===

    async def handle_appointment_created(self, tenant_id: str, appointment: Mapping[str, Any]) -> TriggerSummary:
        return await self.trigger_workflows(TriggerType.APPOINTMENT_CREATED, tenant_id, appointment)

    async def handle_appointment_completed(self, tenant_id: str, appointment: Mapping[str, Any]) -> TriggerSummary:
        return await self.trigger_workflows(TriggerType.APPOINTMENT_COMPLETED, tenant_id, appointment)

    async def handle_appointment_cancelled(self, tenant_id: str, appointment: Mapping[str, Any]) -> TriggerSummary:
        return await self.trigger_workflows(TriggerType.APPOINTMENT_CANCELLED, tenant_id, appointment)

    async def handle_client_created(self, tenant_id: str, client: Mapping[str, Any]) -> TriggerSummary:
        return await self.trigger_workflows(TriggerType.CLIENT_CREATED, tenant_id, client)

    async def handle_sale_completed(self, tenant_id: str, sale: Mapping[str, Any]) -> TriggerSummary:
        return await self.trigger_workflows(TriggerType.SALE_COMPLETED, tenant_id, sale)

    async def handle_review_received(self, tenant_id: str, review: Mapping[str, Any]) -> TriggerSummary:
        return await self.trigger_workflows(TriggerType.REVIEW_RECEIVED, tenant_id, review)

    async def handle_stock_low(self, tenant_id: str, product: Mapping[str, Any]) -> TriggerSummary:
        return await self.trigger_workflows(TriggerType.STOCK_LOW, tenant_id, product)

    # === Scheduling and Reporting ===

    async def execute_scheduled_workflows(self, tenant_id: Optional[str] = None) -> SweepResult:
        return await self.scheduler.run_due(tenant_id)

    def get_scheduled_workflows(self, tenant_id: str) -> List[ScheduleEntry]:
        return self.scheduler.get_scheduled_workflows(tenant_id)

    async def update_schedule(self, tenant_id: str, workflow_id: str, schedule: Schedule) -> ScheduleEntry:
        return await self.scheduler.update_schedule(tenant_id, workflow_id, schedule)

    async def get_execution_history(self, tenant_id: str, workflow_id: Optional[str] = None, page: int = 1, limit: int = 20):
        if self.history is None:
            raise BusinessRuleError("Execution history is not configured", rule="history_required")
        return await self.history.get_execution_history(tenant_id, workflow_id, page, limit)

    async def get_execution_statistics(
        self,
        tenant_id: str,
        workflow_id: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        if self.history is None:
            raise BusinessRuleError("Execution history is not configured", rule="history_required")
        return await self.history.get_execution_statistics(tenant_id, workflow_id, date_from, date_to)
