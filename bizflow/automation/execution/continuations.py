"""
Delay continuations.

An action with a delay parks the rest of its pipeline here until the resume
time; nothing waits on a sleeping task in the meantime.
"""

from __future__ import annotations

import heapq
import itertools
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from bizflow.automation.types import WorkflowAction, WorkflowExecution

if TYPE_CHECKING:
    from bizflow.automation.execution.context import ExecutionContext
    from bizflow.automation.workflow import Workflow


@dataclass(order=True)
class PendingContinuation:
    """The rest of a pipeline, starting with the delayed action."""
    resume_at: datetime
    seq: int
    workflow: "Workflow" = field(compare=False)
    execution: WorkflowExecution = field(compare=False)
    context: "ExecutionContext" = field(compare=False)
    remaining: List[WorkflowAction] = field(compare=False, default_factory=list)

    @property
    def workflow_id(self) -> str:
        return self.execution.workflow_id


class ContinuationQueue:
    """Min-heap of pending continuations ordered by resume time."""

    def __init__(self):
        self._heap: List[PendingContinuation] = []
        self._seq = itertools.count()
        self._by_workflow: Counter = Counter()

    def push(
        self,
        resume_at: datetime,
        workflow: "Workflow",
        execution: WorkflowExecution,
        context: "ExecutionContext",
        remaining: List[WorkflowAction],
    ) -> PendingContinuation:
        item = PendingContinuation(
            resume_at=resume_at,
            seq=next(self._seq),
            workflow=workflow,
            execution=execution,
            context=context,
            remaining=list(remaining),
        )
        heapq.heappush(self._heap, item)
        self._by_workflow[item.workflow_id] += 1
        return item

    def pop_due(self, now: datetime) -> List[PendingContinuation]:
        """Remove and return every continuation due at ``now``, earliest first."""
        due: List[PendingContinuation] = []
        while self._heap and self._heap[0].resume_at <= now:
            item = heapq.heappop(self._heap)
            self._by_workflow[item.workflow_id] -= 1
            if self._by_workflow[item.workflow_id] <= 0:
                del self._by_workflow[item.workflow_id]
            due.append(item)
        return due

    def has_pending(self, workflow_id: str) -> bool:
        return self._by_workflow.get(workflow_id, 0) > 0

    def next_resume_at(self) -> Optional[datetime]:
        return self._heap[0].resume_at if self._heap else None

    def __len__(self) -> int:
        return len(self._heap)
