"""
Bizflow Workflow Automation

Event-driven automation for multi-tenant business applications: domain
events and schedules trigger workflows whose conditions gate an ordered
pipeline of actions.

Core Features:
- Ten business trigger types plus time-based schedules (once, interval, cron)
- Field/operator/value conditions at trigger, workflow and action level
- Ordered action pipelines with partial-failure tolerance
- Action delays that park the pipeline instead of blocking
- Execution history with success statistics
- Built-in workflow templates and offline validation
"""

from bizflow.automation.types import (
    # Enums
    ActionType,
    ConditionOperator,
    DelayUnit,
    ExecutionStatus,
    FactType,
    IntervalUnit,
    ScheduleType,
    TriggerType,
    # Definition
    ActionDelay,
    Condition,
    Schedule,
    WorkflowAction,
    WorkflowTrigger,
    # Execution
    ActionResult,
    ExecutionResult,
    TriggerEvent,
    WorkflowExecution,
    WorkflowFact,
)
from bizflow.automation.errors import (
    ActionExecutionError,
    AutomationError,
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from bizflow.automation.workflow import Workflow
from bizflow.automation.registry import InMemoryWorkflowStore, Pagination, WorkflowFilters, WorkflowStore
from bizflow.automation.actions.executor import ActionExecutor, ActionHandlerRegistry, BaseActionHandler
from bizflow.automation.conditions.evaluator import ConditionEvaluator
from bizflow.automation.execution.context import ExecutionContext
from bizflow.automation.execution.history import ExecutionHistorySink, InMemoryExecutionHistory
from bizflow.automation.engine import WorkflowEngine
from bizflow.automation.triggers.dispatcher import TriggerDispatcher
from bizflow.automation.triggers.scheduler import WorkflowScheduler
from bizflow.automation.templates.builtin import get_builtin_templates, get_template
from bizflow.automation.validation import WorkflowValidator, dry_run_workflow, validate_workflow
from bizflow.automation.service import AutomationService, TriggerSummary

__all__ = [
    # Enums
    "ActionType",
    "ConditionOperator",
    "DelayUnit",
    "ExecutionStatus",
    "FactType",
    "IntervalUnit",
    "ScheduleType",
    "TriggerType",
    # Definition
    "ActionDelay",
    "Condition",
    "Schedule",
    "Workflow",
    "WorkflowAction",
    "WorkflowTrigger",
    # Execution
    "ActionResult",
    "ExecutionContext",
    "ExecutionResult",
    "TriggerEvent",
    "WorkflowExecution",
    "WorkflowFact",
    # Errors
    "ActionExecutionError",
    "AutomationError",
    "BusinessRuleError",
    "ConflictError",
    "NotFoundError",
    "ValidationError",
    # Components
    "ActionExecutor",
    "ActionHandlerRegistry",
    "AutomationService",
    "BaseActionHandler",
    "ConditionEvaluator",
    "ExecutionHistorySink",
    "InMemoryExecutionHistory",
    "InMemoryWorkflowStore",
    "Pagination",
    "TriggerDispatcher",
    "TriggerSummary",
    "WorkflowEngine",
    "WorkflowFilters",
    "WorkflowScheduler",
    "WorkflowStore",
    "WorkflowValidator",
    # Templates and validation
    "dry_run_workflow",
    "get_builtin_templates",
    "get_template",
    "validate_workflow",
]
