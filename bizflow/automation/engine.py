"""
Bizflow Workflow Engine

Runs the ordered action pipeline of one workflow against one triggering
event, parks pipelines on action delays and records the outcome.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Sequence, Set, Tuple

import structlog

from bizflow.automation.actions.executor import ActionExecutor
from bizflow.automation.conditions.evaluator import ConditionEvaluator
from bizflow.automation.errors import ActionExecutionError
from bizflow.automation.execution.context import ExecutionContext
from bizflow.automation.execution.continuations import ContinuationQueue
from bizflow.automation.execution.history import ExecutionHistorySink
from bizflow.automation.types import (
    ActionOutcome,
    ActionOutcomeStatus,
    ActionResult,
    ActionType,
    ExecutionResult,
    ExecutionStatus,
    TriggerType,
    WorkflowAction,
    WorkflowExecution,
    WorkflowFact,
)
from bizflow.automation.workflow import Workflow, effective_delay
from bizflow.core.clock import Clock, IdFactory, SystemClock, new_id

logger = structlog.get_logger(__name__)

_QueuedDispatch = Tuple[Workflow, Dict[str, Any], Optional[TriggerType]]


class WorkflowEngine:
    """
    Workflow execution engine.

    Features:
    - Ordered action pipeline with per-action conditions
    - Partial-failure tolerance: a failed action is recorded and the
      pipeline moves on
    - Bounded executor calls (timeout is a failure)
    - Delay suspension through a continuation queue
    - At most one in-flight execution per workflow; later dispatches queue
      up to ``max_queued_per_workflow`` and are rejected beyond it
    - Bounded concurrency across workflows
    """

    def __init__(
        self,
        executor: ActionExecutor,
        history: Optional[ExecutionHistorySink] = None,
        clock: Optional[Clock] = None,
        id_factory: Optional[IdFactory] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        max_concurrent_executions: int = 50,
        action_timeout_seconds: float = 30.0,
        max_queued_per_workflow: int = 100,
    ):
        self.executor = executor
        self.history = history
        self.evaluator = evaluator or ConditionEvaluator()
        self.action_timeout = action_timeout_seconds
        self.max_concurrent = max_concurrent_executions
        self.max_queued = max_queued_per_workflow

        self._clock = clock or SystemClock()
        self._id_factory = id_factory or new_id

        # Semaphore for concurrency control
        self._semaphore = asyncio.Semaphore(max_concurrent_executions)

        self._continuations = ContinuationQueue()
        self._in_flight: Dict[str, str] = {}  # workflow_id -> execution_id
        self._queued: Dict[str, Deque[_QueuedDispatch]] = defaultdict(deque)
        self._tasks: Set[asyncio.Task] = set()
        self._closing = False

        # Event callbacks
        self._on_fact: List[Callable] = []
        self._on_execution_completed: List[Callable] = []

    # === Execution ===

    async def execute_workflow(
        self,
        workflow: Workflow,
        trigger_data: Mapping[str, Any],
        trigger_type: Optional[TriggerType] = None,
    ) -> ExecutionResult:
        """
        Run a workflow against an event payload.

        Returns once the pipeline has drained, parked on a delay, been queued
        or rejected behind an in-flight execution of the same workflow, or
        been skipped because the workflow can no longer be triggered.
        """
        if workflow.id in self._in_flight:
            if len(self._queued[workflow.id]) >= self.max_queued:
                logger.warning(
                    "execution_rejected",
                    workflow_id=workflow.id,
                    reason="queue_full",
                    queue_depth=len(self._queued[workflow.id]),
                )
                return ExecutionResult(
                    workflow_id=workflow.id,
                    status=ExecutionStatus.REJECTED,
                    success=False,
                    errors=[f"Execution queue for workflow {workflow.id} is full"],
                )

            self._queued[workflow.id].append((workflow, dict(trigger_data), trigger_type))
            logger.info(
                "execution_queued",
                workflow_id=workflow.id,
                in_flight=self._in_flight[workflow.id],
                queue_depth=len(self._queued[workflow.id]),
            )
            return ExecutionResult(
                workflow_id=workflow.id,
                status=ExecutionStatus.QUEUED,
                success=True,
            )

        started = self._begin(workflow, trigger_data, trigger_type)
        if started is None:
            return ExecutionResult(
                workflow_id=workflow.id,
                status=ExecutionStatus.SKIPPED,
                success=True,
            )

        execution, context = started
        return await self._run_pipeline(workflow, execution, context, workflow.actions)

    def _begin(
        self,
        workflow: Workflow,
        trigger_data: Mapping[str, Any],
        trigger_type: Optional[TriggerType],
    ) -> Optional[Tuple[WorkflowExecution, ExecutionContext]]:
        """Claim the workflow's in-flight slot; ``None`` when it cannot run."""
        if not workflow.can_be_triggered(trigger_data, self.evaluator):
            logger.info("execution_skipped", workflow_id=workflow.id, reason="conditions_not_met")
            return None

        execution = WorkflowExecution(
            id=self._id_factory(),
            workflow_id=workflow.id,
            tenant_id=workflow.tenant_id,
            workflow_name=workflow.name,
            trigger_type=trigger_type or workflow.trigger.type,
            trigger_data=dict(trigger_data),
            status=ExecutionStatus.RUNNING,
            started_at=self._clock.now(),
        )
        context = ExecutionContext(
            trigger_data=trigger_data,
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            execution_id=execution.id,
            tenant_id=workflow.tenant_id,
        )
        self._in_flight[workflow.id] = execution.id

        logger.info(
            "execution_started",
            execution_id=execution.id,
            workflow_id=workflow.id,
            tenant_id=workflow.tenant_id,
            trigger_type=execution.trigger_type.value if execution.trigger_type else None,
        )
        return execution, context

    async def _run_pipeline(
        self,
        workflow: Workflow,
        execution: WorkflowExecution,
        context: ExecutionContext,
        actions: Sequence[WorkflowAction],
        resumed: bool = False,
    ) -> ExecutionResult:
        """Run ``actions`` in order until drained or parked on a delay.

        When ``resumed`` is set the first action is the one whose delay just
        elapsed, so its conditions and delay are not checked again.
        """
        try:
            async with self._semaphore:
                execution.status = ExecutionStatus.RUNNING

                for index, action in enumerate(actions):
                    if not (resumed and index == 0):
                        if action.conditions and not self.evaluator.evaluate_all(
                            action.conditions, context.to_payload()
                        ):
                            self._record_skip(execution, action)
                            continue

                        delay = effective_delay(action)
                        if delay is not None:
                            resume_at = self._clock.now() + delay.to_timedelta()
                            self._continuations.push(
                                resume_at, workflow, execution, context, list(actions[index:])
                            )
                            execution.status = ExecutionStatus.WAITING
                            logger.info(
                                "execution_suspended",
                                execution_id=execution.id,
                                workflow_id=workflow.id,
                                action_id=action.id,
                                resume_at=resume_at.isoformat(),
                            )
                            return ExecutionResult.from_execution(execution)

                    await self._run_action(action, execution, context)
        except BaseException:
            self._abandon(workflow, execution)
            raise

        await self._finalize(workflow, execution)
        return ExecutionResult.from_execution(execution)

    def _abandon(self, workflow: Workflow, execution: WorkflowExecution) -> None:
        """Close a pipeline interrupted before it drained or parked."""
        execution.errors.append("Execution interrupted")
        execution.finish(self._clock.now())
        logger.warning(
            "execution_interrupted",
            execution_id=execution.id,
            workflow_id=workflow.id,
            actions_executed=execution.actions_executed,
        )
        if self._in_flight.get(workflow.id) == execution.id:
            self._release(workflow.id)

    async def _run_action(
        self,
        action: WorkflowAction,
        execution: WorkflowExecution,
        context: ExecutionContext,
    ) -> None:
        started_at = self._clock.now()

        if action.type == ActionType.WAIT_DELAY:
            delay = effective_delay(action)
            result = ActionResult.ok({"waited": delay.to_dict() if delay else None})
        else:
            result = await self._call_executor(action, context)

        execution.actions_executed += 1
        outcome = ActionOutcome(
            action_id=action.id,
            action_type=action.type,
            order=action.order,
            status=ActionOutcomeStatus.EXECUTED,
            started_at=started_at,
            completed_at=self._clock.now(),
        )

        if result.success:
            outcome.result = result.result
            context.set_action_output(action.id, result.result)
            logger.debug("action_executed", execution_id=execution.id, action_id=action.id)
        else:
            error = ActionExecutionError(action.id, action.type.value, result.error or "unknown error")
            outcome.status = ActionOutcomeStatus.FAILED
            outcome.error = error.message
            execution.errors.append(error.message)
            execution.actions_failed += 1
            logger.warning(
                "action_failed",
                execution_id=execution.id,
                action_id=action.id,
                action_type=action.type.value,
                error=result.error,
            )

        execution.outcomes.append(outcome)

    async def _call_executor(self, action: WorkflowAction, context: ExecutionContext) -> ActionResult:
        context.bind_time(self._clock.now())

        try:
            config = context.resolve(dict(action.config))
            result = await asyncio.wait_for(
                self.executor.execute(action.type, config, context),
                timeout=self.action_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                "action_timeout",
                action_id=action.id,
                action_type=action.type.value,
                timeout=self.action_timeout,
            )
            return ActionResult.fail(f"timed out after {self.action_timeout}s")
        except Exception as e:
            logger.error(
                "action_error",
                action_id=action.id,
                action_type=action.type.value,
                error=str(e),
            )
            return ActionResult.fail(str(e) or type(e).__name__)

        return ActionResult.from_value(result)

    def _record_skip(self, execution: WorkflowExecution, action: WorkflowAction) -> None:
        execution.actions_skipped += 1
        execution.outcomes.append(
            ActionOutcome(
                action_id=action.id,
                action_type=action.type,
                order=action.order,
                status=ActionOutcomeStatus.SKIPPED,
            )
        )
        logger.debug("action_skipped", execution_id=execution.id, action_id=action.id)

    async def _finalize(self, workflow: Workflow, execution: WorkflowExecution) -> None:
        """Close a drained execution and hand it to history."""
        execution.finish(self._clock.now())

        try:
            await self.publish_facts(workflow.record_execution(execution))

            if self.history is not None:
                try:
                    await self.history.append(execution)
                except Exception:
                    logger.exception("history_append_failed", execution_id=execution.id)

            await self._fire_callbacks(self._on_execution_completed, execution)

            logger.info(
                "execution_completed",
                execution_id=execution.id,
                workflow_id=workflow.id,
                status=execution.status.value,
                actions_executed=execution.actions_executed,
                errors=len(execution.errors),
                duration_ms=execution.duration_ms,
            )
        finally:
            self._release(workflow.id)

    def _release(self, workflow_id: str) -> None:
        """Free the in-flight slot and start the next queued dispatch."""
        self._in_flight.pop(workflow_id, None)

        queue = self._queued.get(workflow_id)
        while queue and not self._closing:
            workflow, trigger_data, trigger_type = queue.popleft()
            started = self._begin(workflow, trigger_data, trigger_type)
            if started is not None:
                execution, context = started
                self._spawn(self._run_pipeline(workflow, execution, context, workflow.actions))
                break

        if workflow_id in self._queued and not self._queued[workflow_id]:
            del self._queued[workflow_id]

    # === Continuations ===

    async def resume_due(self, now: Optional[datetime] = None) -> List[ExecutionResult]:
        """Resume every pipeline whose delay has elapsed."""
        now = now or self._clock.now()
        due = self._continuations.pop_due(now)
        if not due:
            return []

        logger.info("continuations_resuming", count=len(due))
        return list(
            await asyncio.gather(
                *(
                    self._run_pipeline(c.workflow, c.execution, c.context, c.remaining, resumed=True)
                    for c in due
                )
            )
        )

    def has_pending(self, workflow_id: str) -> bool:
        """True while a delayed continuation of the workflow is parked."""
        return self._continuations.has_pending(workflow_id)

    def is_in_flight(self, workflow_id: str) -> bool:
        return workflow_id in self._in_flight

    def next_resume_at(self) -> Optional[datetime]:
        return self._continuations.next_resume_at()

    # === Background Tasks ===

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("execution_task_failed", error=str(task.exception()))

    async def wait_idle(self) -> None:
        """Wait until no queued execution is still running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel running background executions."""
        self._closing = True
        for task in list(self._tasks):
            task.cancel()

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

        logger.info(
            "engine_shutdown",
            pending_continuations=len(self._continuations),
        )

    # === Event Callbacks ===

    def on_fact(self, callback: Callable) -> None:
        """Register a subscriber for workflow facts."""
        self._on_fact.append(callback)

    def on_execution_completed(self, callback: Callable) -> None:
        self._on_execution_completed.append(callback)

    async def publish_facts(self, facts: Sequence[WorkflowFact]) -> None:
        for fact in facts:
            await self._fire_callbacks(self._on_fact, fact)

    async def _fire_callbacks(self, callbacks: List[Callable], *args) -> None:
        for callback in callbacks:
            try:
                result = callback(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("callback_error", error=str(e))

    # === Statistics ===

    def get_stats(self) -> Dict[str, Any]:
        return {
            "in_flight": len(self._in_flight),
            "queued": sum(len(q) for q in self._queued.values()),
            "max_queued_per_workflow": self.max_queued,
            "pending_continuations": len(self._continuations),
            "background_tasks": len(self._tasks),
            "max_concurrent": self.max_concurrent,
        }
