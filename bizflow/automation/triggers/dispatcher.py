"""
Bizflow Trigger Dispatcher

Selects the active workflows of a tenant that an incoming event should run.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import structlog

from bizflow.automation.conditions.evaluator import ConditionEvaluator
from bizflow.automation.registry import WorkflowStore
from bizflow.automation.types import TriggerEvent
from bizflow.automation.workflow import Workflow

logger = structlog.get_logger(__name__)


@dataclass
class DispatchMatch:
    workflow: Workflow
    would_execute: bool = True


class TriggerDispatcher:
    """
    Matches events against workflow triggers.

    No ordering is promised between matched workflows; each match is run
    independently.
    """

    def __init__(self, store: WorkflowStore, evaluator: Optional[ConditionEvaluator] = None):
        self.store = store
        self.evaluator = evaluator or ConditionEvaluator()

    async def dispatch(self, event: TriggerEvent) -> List[DispatchMatch]:
        """Active workflows of the tenant whose trigger accepts ``event``."""
        if event.target_workflow_id is not None:
            workflow = await self.store.find_by_id(event.target_workflow_id, tenant_id=event.tenant_id)
            candidates = [workflow] if workflow and workflow.trigger.type == event.type else []
        else:
            candidates = await self.store.find_by_trigger_type(event.tenant_id, event.type)

        matches = [
            DispatchMatch(workflow=w)
            for w in candidates
            if w.can_be_triggered(event.payload, self.evaluator)
        ]

        logger.info(
            "event_dispatched",
            event_type=event.type.value,
            tenant_id=event.tenant_id,
            candidates=len(candidates),
            matched=len(matches),
        )
        return matches
