"""
Tests for offline validation and dry runs.
"""

import pytest

from bizflow.automation.errors import ValidationError
from bizflow.automation.types import ActionDelay, Condition, DelayUnit, TriggerType, WorkflowTrigger
from bizflow.automation.validation import (
    WorkflowValidator,
    dry_run_workflow,
    validate_workflow,
    workflow_from_definition,
)

from conftest import email_action, sms_action


def definition(**overrides):
    data = {
        "name": "Big sale thank-you",
        "trigger": {
            "type": "SALE_COMPLETED",
            "conditions": [{"field": "amount", "operator": "greater_than", "value": 100}],
        },
        "actions": [
            {
                "type": "SEND_EMAIL",
                "order": 1,
                "config": {"to": "{{ client.email }}", "subject": "Thanks", "body": "Thank you!"},
            },
        ],
    }
    data.update(overrides)
    return data


class TestValidateDefinition:
    """Tests for collecting validation problems."""

    def test_valid_definition(self):
        report = validate_workflow(definition())
        assert report.is_valid
        assert report.errors == []
        assert report.warnings == []

    def test_reports_every_problem(self):
        report = validate_workflow(
            definition(
                name="",
                actions=[
                    {"type": "SEND_SMS", "order": 1, "config": {"to": "+1555"}},
                    {"type": "ADD_CLIENT_TAG", "order": 1, "config": {"tag": "vip"}},
                    {"type": "TELEPORT", "order": 2},
                ],
            )
        )

        codes = [e.code for e in report.errors]
        assert not report.is_valid
        assert "MISSING_NAME" in codes
        assert "INVALID_CONFIG" in codes
        assert "DUPLICATE_ORDER" in codes
        assert "INVALID_ACTION" in codes

    def test_schedule_problems(self):
        report = validate_workflow(definition(trigger={"type": "SCHEDULED"}))
        assert [e.code for e in report.errors] == ["INVALID_SCHEDULE"]

    def test_wait_delay_needs_a_delay(self):
        wait = {"type": "WAIT_DELAY", "order": 1, "config": {}}
        report = validate_workflow(definition(actions=[wait]))
        assert [e.code for e in report.errors] == ["INVALID_DELAY"]

        wait["delay"] = {"value": 1, "unit": "HOURS"}
        assert validate_workflow(definition(actions=[wait])).is_valid

    def test_missing_trigger_and_actions(self):
        report = validate_workflow({"name": "Nothing"})
        assert {e.code for e in report.errors} == {"MISSING_TRIGGER", "NO_ACTIONS"}

    def test_warnings(self):
        report = validate_workflow(
            definition(
                trigger={"type": "SALE_COMPLETED"},
                conditions=[{"field": "amount", "operator": "between", "value": [1, 2]}],
                actions=[{"type": "WAIT_DELAY", "order": 1, "config": {"delay": {"value": 1, "unit": "DAYS"}}}],
            )
        )

        assert report.is_valid
        assert {w.code for w in report.warnings} == {"UNKNOWN_OPERATOR", "DELAY_ONLY"}

    def test_unconditional_frequent_trigger_warns(self):
        report = validate_workflow(definition(trigger={"type": "SALE_COMPLETED"}))
        assert [w.code for w in report.warnings] == ["NO_CONDITIONS"]

    def test_validate_workflow_object(self, make_workflow):
        report = WorkflowValidator().validate_workflow(make_workflow())
        assert report.is_valid
        assert report.to_dict()["is_valid"] is True


class TestDryRun:
    """Tests for predicting an event's effect."""

    def test_dry_run(self, make_workflow, executor):
        workflow = make_workflow(
            trigger=WorkflowTrigger(
                type=TriggerType.SALE_COMPLETED,
                conditions=[Condition("amount", "greater_than", 100)],
            ),
            actions=[
                email_action(1),
                sms_action(2, conditions=[Condition("client.phone", "is_not_null")]),
                sms_action(3, delay=ActionDelay(2, DelayUnit.HOURS)),
            ],
        )

        result = dry_run_workflow(workflow, {"amount": 150, "client": {}})

        assert result["can_execute"]
        assert result["condition_results"]["trigger"][0]["result"] is True
        assert [a["would_execute"] for a in result["predicted_actions"]] == [True, False, True]
        assert result["predicted_actions"][2]["delay"] == {"value": 2, "unit": "HOURS"}
        assert executor.calls == []

    def test_dry_run_blocked(self, make_workflow):
        workflow = make_workflow(
            trigger=WorkflowTrigger(
                type=TriggerType.SALE_COMPLETED,
                conditions=[Condition("amount", "greater_than", 100)],
            )
        )

        result = dry_run_workflow(workflow, {"amount": 5})

        assert not result["can_execute"]
        assert all(not a["would_execute"] for a in result["predicted_actions"])


class TestWorkflowFromDefinition:
    """Tests for building workflows from plain data."""

    def test_builds_workflow(self, clock, id_factory):
        workflow, facts = workflow_from_definition(definition(), tenant_id="tenant-9", clock=clock, id_factory=id_factory)

        assert workflow.tenant_id == "tenant-9"
        assert workflow.trigger.conditions[0].operator == "greater_than"
        assert len(facts) == 1

    def test_malformed(self):
        with pytest.raises(ValidationError):
            workflow_from_definition({"name": "x"})
        with pytest.raises(ValidationError):
            workflow_from_definition(definition(actions=[]))
