"""
Shared fixtures for the bizflow tests.
"""

import asyncio
import itertools
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from bizflow.automation.engine import WorkflowEngine
from bizflow.automation.execution.history import InMemoryExecutionHistory
from bizflow.automation.registry import InMemoryWorkflowStore
from bizflow.automation.triggers.dispatcher import TriggerDispatcher
from bizflow.automation.triggers.scheduler import WorkflowScheduler
from bizflow.automation.types import (
    ActionResult,
    ActionType,
    TriggerType,
    WorkflowAction,
    WorkflowTrigger,
)
from bizflow.automation.workflow import Workflow
from bizflow.core.clock import FixedClock

T0 = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


class RecordingExecutor:
    """
    Fake action executor.

    Records every call and answers from a per-type script: an ``ActionResult``
    or a ``{success, result, error}`` mapping, an exception to raise, or a
    number of seconds to sleep first.
    """

    def __init__(self):
        self.calls: List[Tuple[ActionType, Dict[str, Any]]] = []
        self.results: Dict[ActionType, ActionResult] = {}
        self.errors: Dict[ActionType, Exception] = {}
        self.sleeps: Dict[ActionType, float] = {}

    async def execute(self, action_type, config, context):
        self.calls.append((action_type, config))

        if action_type in self.sleeps:
            await asyncio.sleep(self.sleeps[action_type])
        if action_type in self.errors:
            raise self.errors[action_type]

        return self.results.get(action_type, ActionResult.ok({"type": action_type.value}))

    @property
    def called_types(self) -> List[ActionType]:
        return [call[0] for call in self.calls]


@pytest.fixture
def clock():
    return FixedClock(T0)


@pytest.fixture
def id_factory():
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


@pytest.fixture
def executor():
    return RecordingExecutor()


@pytest.fixture
def history(clock):
    return InMemoryExecutionHistory(clock=clock)


@pytest.fixture
def engine(executor, history, clock, id_factory):
    return WorkflowEngine(
        executor=executor,
        history=history,
        clock=clock,
        id_factory=id_factory,
        action_timeout_seconds=0.5,
    )


@pytest.fixture
def store(clock, id_factory):
    return InMemoryWorkflowStore(clock=clock, id_factory=id_factory)


@pytest.fixture
def dispatcher(store):
    return TriggerDispatcher(store)


@pytest.fixture
def scheduler(store, dispatcher, engine, clock):
    return WorkflowScheduler(store, dispatcher, engine, clock=clock)


@pytest.fixture
def make_workflow(clock, id_factory):
    """Factory for valid workflows with sensible defaults."""

    def _make(
        name: str = "Test Workflow",
        tenant_id: str = "tenant-1",
        trigger: Optional[WorkflowTrigger] = None,
        actions: Optional[List[WorkflowAction]] = None,
        **kwargs,
    ) -> Workflow:
        workflow, _ = Workflow.create(
            name=name,
            tenant_id=tenant_id,
            trigger=trigger or WorkflowTrigger(type=TriggerType.APPOINTMENT_CREATED),
            actions=actions or [email_action(1)],
            clock=clock,
            id_factory=id_factory,
            **kwargs,
        )
        return workflow

    return _make


def email_action(order: int, **kwargs) -> WorkflowAction:
    return WorkflowAction(
        type=ActionType.SEND_EMAIL,
        order=order,
        config={"to": "client@example.com", "subject": "Hello", "body": "Hi there"},
        **kwargs,
    )


def sms_action(order: int, **kwargs) -> WorkflowAction:
    return WorkflowAction(
        type=ActionType.SEND_SMS,
        order=order,
        config={"to": "+15550100", "message": "Hi there"},
        **kwargs,
    )


def tag_action(order: int, tag: str = "vip", **kwargs) -> WorkflowAction:
    return WorkflowAction(
        type=ActionType.ADD_CLIENT_TAG,
        order=order,
        config={"tag": tag},
        **kwargs,
    )
