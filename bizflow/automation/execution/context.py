"""
Bizflow Execution Context

The data an action pipeline sees: the trigger payload plus the outputs of
earlier actions, keyed by action id under the reserved ``_actions`` key.
"""

from __future__ import annotations

import copy
import json
import re
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

import structlog

from bizflow.automation.conditions.paths import ABSENT, resolve_field

logger = structlog.get_logger(__name__)

ACTION_OUTPUTS_KEY = "_actions"


class ExecutionContext:
    """
    Execution context for one workflow run.

    Features:
    - Trigger data access by dot path
    - Prior action outputs under ``_actions.<action_id>``
    - ``{{ path }}`` template resolution in action configs
    - Built-in ``workflow``, ``execution`` and ``now`` values
    """

    # Expression pattern for {{ variable }}
    EXPRESSION_PATTERN = re.compile(r"\{\{\s*([^}]+?)\s*\}\}")

    def __init__(
        self,
        trigger_data: Optional[Mapping[str, Any]] = None,
        workflow_id: str = "",
        workflow_name: str = "",
        execution_id: str = "",
        tenant_id: str = "",
    ):
        self.trigger_data: Dict[str, Any] = copy.deepcopy(dict(trigger_data or {}))
        self.outputs: Dict[str, Any] = {}
        self.workflow_id = workflow_id
        self.workflow_name = workflow_name
        self.execution_id = execution_id
        self.tenant_id = tenant_id
        self._now: Optional[datetime] = None

    # === Data Access ===

    def set_action_output(self, action_id: str, output: Any) -> None:
        """Merge an action's result into the context."""
        self.outputs[action_id] = output
        logger.debug("context_action_output", execution_id=self.execution_id, action_id=action_id)

    def get_action_output(self, action_id: str) -> Any:
        return self.outputs.get(action_id)

    def to_payload(self) -> Dict[str, Any]:
        """The mapping per-action conditions are evaluated against."""
        payload = dict(self.trigger_data)
        if ACTION_OUTPUTS_KEY in payload:
            logger.warning("context_reserved_key_shadowed", execution_id=self.execution_id, key=ACTION_OUTPUTS_KEY)
        payload[ACTION_OUTPUTS_KEY] = dict(self.outputs)
        return payload

    def get(self, path: str, default: Any = None) -> Any:
        value = resolve_field(self._namespace(), path)
        return default if value is ABSENT else value

    def bind_time(self, now: datetime) -> None:
        """Fix the value of ``{{ now }}`` for the current resolution pass."""
        self._now = now

    def _namespace(self) -> Dict[str, Any]:
        namespace = self.to_payload()
        namespace.setdefault("workflow", {"id": self.workflow_id, "name": self.workflow_name})
        namespace.setdefault("execution", {"id": self.execution_id, "tenant_id": self.tenant_id})
        return namespace

    # === Expression Resolution ===

    def resolve(self, value: Any) -> Any:
        """
        Resolve ``{{ }}`` expressions in a value.

        Supports:
        - {{ client.name }} - Trigger data
        - {{ _actions.<id>.field }} - Output of an earlier action
        - {{ workflow.name }} / {{ execution.id }}
        - {{ now }} - Current time
        """
        if value is None:
            return None

        if isinstance(value, str):
            return self._resolve_string(value)

        if isinstance(value, dict):
            return {k: self.resolve(v) for k, v in value.items()}

        if isinstance(value, list):
            return [self.resolve(item) for item in value]

        return value

    def _resolve_string(self, value: str) -> Any:
        # A value that is one expression keeps the resolved type
        match = self.EXPRESSION_PATTERN.fullmatch(value.strip())
        if match:
            return self._evaluate_expression(match.group(1).strip())

        def replace(match):
            resolved = self._evaluate_expression(match.group(1).strip())
            if resolved is None:
                return ""
            if isinstance(resolved, (dict, list)):
                return json.dumps(resolved, default=str)
            return str(resolved)

        return self.EXPRESSION_PATTERN.sub(replace, value)

    def _evaluate_expression(self, expr: str) -> Any:
        if expr == "now":
            return self._now.isoformat() if self._now else None
        return self.get(expr)

    # === Serialization ===

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trigger_data": self.trigger_data,
            "outputs": self.outputs,
            "workflow_id": self.workflow_id,
            "workflow_name": self.workflow_name,
            "execution_id": self.execution_id,
            "tenant_id": self.tenant_id,
        }
