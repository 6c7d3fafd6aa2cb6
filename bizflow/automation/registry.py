"""
Bizflow Workflow Store

Storage contract for workflow definitions, scoped by tenant, and an
in-memory implementation with optional JSON persistence.
"""

from __future__ import annotations

import asyncio
import json
import math
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Set

import structlog

from bizflow.automation.errors import ConflictError, NotFoundError
from bizflow.automation.types import ActionType, TriggerType
from bizflow.automation.workflow import Workflow
from bizflow.core.clock import Clock, IdFactory, SystemClock

logger = structlog.get_logger(__name__)


@dataclass
class WorkflowFilters:
    search: Optional[str] = None
    trigger_type: Optional[TriggerType] = None
    is_active: Optional[bool] = None
    has_schedule: Optional[bool] = None


@dataclass
class Pagination:
    page: int = 1
    limit: int = 20

    def __post_init__(self):
        self.page = max(1, self.page)
        self.limit = max(1, self.limit)


@dataclass
class WorkflowPage:
    workflows: List[Workflow] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20
    total_pages: int = 0


class WorkflowStore(Protocol):
    """Persistence contract consumed by the dispatcher, scheduler and service."""

    async def save(self, workflow: Workflow) -> None: ...

    async def update(self, workflow: Workflow) -> None: ...

    async def delete(self, workflow_id: str) -> bool: ...

    async def find_by_id(self, workflow_id: str, tenant_id: Optional[str] = None) -> Optional[Workflow]: ...

    async def find_all(
        self,
        tenant_id: str,
        filters: Optional[WorkflowFilters] = None,
        pagination: Optional[Pagination] = None,
    ) -> WorkflowPage: ...

    async def find_by_trigger_type(
        self,
        tenant_id: str,
        trigger_type: TriggerType,
        active_only: bool = True,
    ) -> List[Workflow]: ...

    async def find_active_workflows(self, tenant_id: str) -> List[Workflow]: ...

    async def find_scheduled_workflows(self, tenant_id: Optional[str] = None) -> List[Workflow]: ...

    async def find_by_action_type(self, tenant_id: str, action_type: ActionType) -> List[Workflow]: ...


class InMemoryWorkflowStore:
    """
    In-memory workflow store.

    Features:
    - Tenant and trigger type indices
    - Filtered, paginated listing
    - Optional JSON persistence on every write
    """

    def __init__(
        self,
        persistence_path: Optional[Path] = None,
        clock: Optional[Clock] = None,
        id_factory: Optional[IdFactory] = None,
    ):
        self.persistence_path = Path(persistence_path) if persistence_path else None
        self._clock = clock or SystemClock()
        self._id_factory = id_factory

        self._workflows: Dict[str, Workflow] = {}

        # Indices
        self._by_tenant: Dict[str, Set[str]] = defaultdict(set)
        self._by_trigger: Dict[TriggerType, Set[str]] = defaultdict(set)
        self._indexed_trigger: Dict[str, TriggerType] = {}

        self._initialized = False
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Load persisted workflows."""
        if self._initialized:
            return

        if self.persistence_path:
            await self._load_from_disk()

        self._initialized = True
        logger.info("Workflow store initialized", workflow_count=len(self._workflows))

    # === Writes ===

    async def save(self, workflow: Workflow) -> None:
        """Store a new workflow."""
        async with self._lock:
            if workflow.id in self._workflows:
                raise ConflictError(f"Workflow {workflow.id} already exists", {"id": workflow.id})

            self._workflows[workflow.id] = workflow
            self._index(workflow)
            await self._persist()

        logger.info("workflow_saved", workflow_id=workflow.id, tenant_id=workflow.tenant_id)

    async def update(self, workflow: Workflow) -> None:
        """Replace a stored workflow."""
        async with self._lock:
            old = self._workflows.get(workflow.id)
            if old is None:
                raise NotFoundError("Workflow", workflow.id)

            self._unindex(old)
            self._workflows[workflow.id] = workflow
            self._index(workflow)
            await self._persist()

    async def delete(self, workflow_id: str) -> bool:
        async with self._lock:
            workflow = self._workflows.pop(workflow_id, None)
            if not workflow:
                return False

            self._unindex(workflow)
            await self._persist()

        logger.info("workflow_deleted", workflow_id=workflow_id)
        return True

    # === Queries ===

    async def find_by_id(self, workflow_id: str, tenant_id: Optional[str] = None) -> Optional[Workflow]:
        workflow = self._workflows.get(workflow_id)
        if workflow is None or (tenant_id is not None and workflow.tenant_id != tenant_id):
            return None
        return workflow

    async def find_all(
        self,
        tenant_id: str,
        filters: Optional[WorkflowFilters] = None,
        pagination: Optional[Pagination] = None,
    ) -> WorkflowPage:
        """List tenant workflows with filters, newest first."""
        filters = filters or WorkflowFilters()
        pagination = pagination or Pagination()

        workflows = self._tenant_workflows(tenant_id)

        if filters.trigger_type is not None:
            workflows = [w for w in workflows if w.trigger.type == filters.trigger_type]

        if filters.is_active is not None:
            workflows = [w for w in workflows if w.is_active == filters.is_active]

        if filters.has_schedule is not None:
            workflows = [w for w in workflows if w.has_schedule == filters.has_schedule]

        if filters.search:
            search_lower = filters.search.lower()
            workflows = [
                w for w in workflows
                if search_lower in w.name.lower() or search_lower in (w.description or "").lower()
            ]

        workflows.sort(key=lambda w: w.created_at, reverse=True)

        total = len(workflows)
        offset = (pagination.page - 1) * pagination.limit
        return WorkflowPage(
            workflows=workflows[offset:offset + pagination.limit],
            total=total,
            page=pagination.page,
            limit=pagination.limit,
            total_pages=math.ceil(total / pagination.limit),
        )

    async def find_by_trigger_type(
        self,
        tenant_id: str,
        trigger_type: TriggerType,
        active_only: bool = True,
    ) -> List[Workflow]:
        ids = self._by_tenant.get(tenant_id, set()) & self._by_trigger.get(trigger_type, set())
        workflows = [self._workflows[i] for i in ids]
        if active_only:
            workflows = [w for w in workflows if w.is_active]
        return sorted(workflows, key=lambda w: w.created_at)

    async def find_active_workflows(self, tenant_id: str) -> List[Workflow]:
        return [w for w in self._tenant_workflows(tenant_id) if w.is_active]

    async def find_scheduled_workflows(self, tenant_id: Optional[str] = None) -> List[Workflow]:
        """Active workflows with a SCHEDULED trigger, across tenants when none is given."""
        ids = self._by_trigger.get(TriggerType.SCHEDULED, set())
        if tenant_id is not None:
            ids = ids & self._by_tenant.get(tenant_id, set())
        return [self._workflows[i] for i in ids if self._workflows[i].is_active and self._workflows[i].is_scheduled]

    async def find_by_action_type(self, tenant_id: str, action_type: ActionType) -> List[Workflow]:
        return [w for w in self._tenant_workflows(tenant_id) if w.has_action_type(action_type)]

    async def count(self, tenant_id: Optional[str] = None) -> int:
        if tenant_id is None:
            return len(self._workflows)
        return len(self._by_tenant.get(tenant_id, set()))

    # === Indices ===

    def _tenant_workflows(self, tenant_id: str) -> List[Workflow]:
        return [self._workflows[i] for i in self._by_tenant.get(tenant_id, set())]

    def _index(self, workflow: Workflow) -> None:
        self._by_tenant[workflow.tenant_id].add(workflow.id)
        self._by_trigger[workflow.trigger.type].add(workflow.id)
        self._indexed_trigger[workflow.id] = workflow.trigger.type

    def _unindex(self, workflow: Workflow) -> None:
        # The stored object may already carry its new trigger
        self._by_tenant[workflow.tenant_id].discard(workflow.id)
        indexed = self._indexed_trigger.pop(workflow.id, workflow.trigger.type)
        self._by_trigger[indexed].discard(workflow.id)

    # === Persistence ===

    async def _persist(self) -> None:
        if self.persistence_path:
            await self._save_to_disk()

    async def _load_from_disk(self) -> None:
        """Load workflows from disk."""
        workflows_file = self.persistence_path / "workflows.json"
        if not workflows_file.exists():
            return

        with open(workflows_file, "r") as f:
            data = json.load(f)

        for workflow_data in data.get("workflows", []):
            workflow = Workflow.from_dict(workflow_data, clock=self._clock, id_factory=self._id_factory)
            self._workflows[workflow.id] = workflow
            self._index(workflow)

        logger.info("workflows_loaded", count=len(self._workflows))

    async def _save_to_disk(self) -> None:
        """Save workflows to disk."""
        self.persistence_path.mkdir(parents=True, exist_ok=True)

        workflows_file = self.persistence_path / "workflows.json"
        data = {
            "workflows": [w.to_dict() for w in self._workflows.values()],
            "saved_at": self._clock.now().isoformat(),
        }

        with open(workflows_file, "w") as f:
            json.dump(data, f, indent=2, default=str)
