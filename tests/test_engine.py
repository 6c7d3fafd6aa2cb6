"""
Tests for the workflow execution engine.
"""

import asyncio

import pytest

from bizflow.automation.engine import WorkflowEngine
from bizflow.automation.types import (
    ActionDelay,
    ActionOutcomeStatus,
    ActionResult,
    ActionType,
    Condition,
    DelayUnit,
    ExecutionStatus,
    FactType,
    TriggerType,
    WorkflowAction,
    WorkflowTrigger,
)

from conftest import email_action, sms_action, tag_action

PAYLOAD = {"client": {"name": "Ana", "email": "ana@example.com"}, "appointment_id": "apt-1"}


class TestPipeline:
    """Tests for ordered action execution."""

    @pytest.mark.asyncio
    async def test_two_actions_succeed(self, engine, executor, history, make_workflow):
        workflow = make_workflow(actions=[email_action(1), sms_action(2)])

        result = await engine.execute_workflow(workflow, PAYLOAD)

        assert result.status == ExecutionStatus.COMPLETED
        assert result.success
        assert result.actions_executed == 2
        assert result.errors == []
        assert executor.called_types == [ActionType.SEND_EMAIL, ActionType.SEND_SMS]

        records = await history.list(workflow_id=workflow.id)
        assert len(records) == 1
        assert records[0].trigger_type == TriggerType.APPOINTMENT_CREATED
        assert records[0].trigger_data == PAYLOAD

    @pytest.mark.asyncio
    async def test_partial_failure_continues(self, engine, executor, make_workflow):
        executor.results[ActionType.SEND_EMAIL] = ActionResult.fail("smtp down")
        workflow = make_workflow(actions=[email_action(1), sms_action(2)])

        result = await engine.execute_workflow(workflow, PAYLOAD)

        assert result.status == ExecutionStatus.FAILED
        assert not result.success
        assert result.actions_executed == 2
        assert len(result.errors) == 1
        assert "smtp down" in result.errors[0]
        assert executor.called_types == [ActionType.SEND_EMAIL, ActionType.SEND_SMS]

    @pytest.mark.asyncio
    async def test_executor_exception_is_failure(self, engine, executor, make_workflow):
        executor.errors[ActionType.SEND_SMS] = RuntimeError("gateway unreachable")
        workflow = make_workflow(actions=[sms_action(1), tag_action(2)])

        result = await engine.execute_workflow(workflow, PAYLOAD)

        assert not result.success
        assert "gateway unreachable" in result.errors[0]
        assert executor.called_types == [ActionType.SEND_SMS, ActionType.ADD_CLIENT_TAG]

    @pytest.mark.asyncio
    async def test_mapping_result_read_as_outcome(self, engine, executor, history, make_workflow):
        executor.results[ActionType.SEND_EMAIL] = {"success": False, "error": "smtp down"}
        executor.results[ActionType.SEND_SMS] = {"success": True, "result": {"message_id": "m-1"}}
        workflow = make_workflow(actions=[email_action(1), sms_action(2)])

        result = await engine.execute_workflow(workflow, PAYLOAD)

        assert not result.success
        assert len(result.errors) == 1
        assert "smtp down" in result.errors[0]

        record = (await history.list(workflow_id=workflow.id))[0]
        assert record.outcomes[0].status == ActionOutcomeStatus.FAILED
        assert record.outcomes[1].result == {"message_id": "m-1"}

    @pytest.mark.asyncio
    async def test_payload_actions_field_visible(self, engine, executor, make_workflow):
        refund = tag_action(1, conditions=[Condition("actions.0", "equals", "refund")])
        workflow = make_workflow(actions=[refund])

        await engine.execute_workflow(workflow, {"actions": ["refund"]})

        assert executor.called_types == [ActionType.ADD_CLIENT_TAG]

    @pytest.mark.asyncio
    async def test_timeout_is_failure(self, executor, clock, id_factory, make_workflow):
        engine = WorkflowEngine(executor, clock=clock, id_factory=id_factory, action_timeout_seconds=0.05)
        executor.sleeps[ActionType.SEND_EMAIL] = 1.0
        workflow = make_workflow(actions=[email_action(1), sms_action(2)])

        result = await engine.execute_workflow(workflow, PAYLOAD)

        assert not result.success
        assert "timed out" in result.errors[0]
        assert result.actions_executed == 2

    @pytest.mark.asyncio
    async def test_reorder_changes_execution_order(self, engine, executor, make_workflow):
        workflow = make_workflow(actions=[email_action(1), sms_action(2)])
        email, sms = workflow.actions
        workflow.reorder_actions([{"id": email.id, "order": 2}, {"id": sms.id, "order": 1}])

        await engine.execute_workflow(workflow, PAYLOAD)

        assert executor.called_types == [ActionType.SEND_SMS, ActionType.SEND_EMAIL]

    @pytest.mark.asyncio
    async def test_action_conditions_skip(self, engine, executor, make_workflow):
        guarded = sms_action(2, conditions=[Condition("client.phone", "is_not_null")])
        workflow = make_workflow(actions=[email_action(1), guarded])

        result = await engine.execute_workflow(workflow, PAYLOAD)

        assert result.success
        assert result.actions_executed == 1
        assert executor.called_types == [ActionType.SEND_EMAIL]

    @pytest.mark.asyncio
    async def test_action_conditions_see_prior_outputs(self, engine, executor, make_workflow):
        workflow = make_workflow(actions=[email_action(1)])
        first_id = workflow.actions[0].id
        workflow.add_action(
            sms_action(2, conditions=[Condition(f"_actions.{first_id}.type", "equals", "SEND_EMAIL")])
        )

        await engine.execute_workflow(workflow, PAYLOAD)

        assert executor.called_types == [ActionType.SEND_EMAIL, ActionType.SEND_SMS]

    @pytest.mark.asyncio
    async def test_config_templates_resolved(self, engine, executor, make_workflow):
        action = WorkflowAction(
            type=ActionType.SEND_EMAIL,
            order=1,
            config={"to": "{{ client.email }}", "subject": "Hi {{ client.name }}", "body": "See you"},
        )
        workflow = make_workflow(actions=[action])

        await engine.execute_workflow(workflow, PAYLOAD)

        _, config = executor.calls[0]
        assert config["to"] == "ana@example.com"
        assert config["subject"] == "Hi Ana"

    @pytest.mark.asyncio
    async def test_skipped_when_not_triggerable(self, engine, executor, make_workflow):
        workflow = make_workflow()
        workflow.deactivate()

        result = await engine.execute_workflow(workflow, PAYLOAD)

        assert result.status == ExecutionStatus.SKIPPED
        assert result.actions_executed == 0
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_outcome_fact_published(self, engine, make_workflow):
        facts = []
        engine.on_fact(facts.append)
        workflow = make_workflow()

        result = await engine.execute_workflow(workflow, PAYLOAD)

        assert [f.type for f in facts] == [FactType.WORKFLOW_EXECUTED]
        assert facts[0].data["execution_id"] == result.execution_id

    @pytest.mark.asyncio
    async def test_history_failure_does_not_change_outcome(self, executor, clock, id_factory, make_workflow):
        class BrokenHistory:
            async def append(self, execution):
                raise IOError("disk full")

        engine = WorkflowEngine(executor, history=BrokenHistory(), clock=clock, id_factory=id_factory)
        workflow = make_workflow()

        result = await engine.execute_workflow(workflow, PAYLOAD)

        assert result.status == ExecutionStatus.COMPLETED
        assert not engine.is_in_flight(workflow.id)


class TestDelays:
    """Tests for delay suspension and resumption."""

    @pytest.mark.asyncio
    async def test_delay_parks_and_resumes(self, engine, executor, history, clock, make_workflow):
        delayed = sms_action(2, delay=ActionDelay(1, DelayUnit.HOURS))
        workflow = make_workflow(actions=[email_action(1), delayed])

        result = await engine.execute_workflow(workflow, PAYLOAD)

        assert result.status == ExecutionStatus.WAITING
        assert executor.called_types == [ActionType.SEND_EMAIL]
        assert engine.has_pending(workflow.id)
        assert await engine.resume_due(clock.now()) == []

        clock.advance(hours=1)
        resumed = await engine.resume_due()

        assert len(resumed) == 1
        assert resumed[0].status == ExecutionStatus.COMPLETED
        assert resumed[0].actions_executed == 2
        assert executor.called_types == [ActionType.SEND_EMAIL, ActionType.SEND_SMS]
        assert not engine.has_pending(workflow.id)
        assert len(await history.list(workflow_id=workflow.id)) == 1

    @pytest.mark.asyncio
    async def test_wait_delay_action(self, engine, executor, clock, make_workflow):
        wait = WorkflowAction(
            type=ActionType.WAIT_DELAY,
            order=1,
            config={"delay": {"value": 2, "unit": "DAYS"}},
        )
        workflow = make_workflow(actions=[wait, sms_action(2)])

        result = await engine.execute_workflow(workflow, PAYLOAD)
        assert result.status == ExecutionStatus.WAITING
        assert engine.next_resume_at() == clock.now().replace(day=3)

        clock.advance(days=2)
        resumed = await engine.resume_due()

        assert resumed[0].actions_executed == 2
        assert executor.called_types == [ActionType.SEND_SMS]

    @pytest.mark.asyncio
    async def test_wait_delay_from_action_delay(self, engine, executor, clock, make_workflow):
        wait = WorkflowAction(
            type=ActionType.WAIT_DELAY,
            order=1,
            config={},
            delay=ActionDelay(2, DelayUnit.DAYS),
        )
        workflow = make_workflow(actions=[wait, sms_action(2)])

        result = await engine.execute_workflow(workflow, PAYLOAD)
        assert result.status == ExecutionStatus.WAITING

        clock.advance(days=2)
        resumed = await engine.resume_due()

        assert resumed[0].success
        assert executor.called_types == [ActionType.SEND_SMS]

    @pytest.mark.asyncio
    async def test_dispatches_queue_behind_in_flight(self, engine, executor, clock, make_workflow):
        delayed = sms_action(2, delay=ActionDelay(30, DelayUnit.MINUTES))
        workflow = make_workflow(actions=[email_action(1), delayed])

        first = await engine.execute_workflow(workflow, PAYLOAD)
        second = await engine.execute_workflow(workflow, {**PAYLOAD, "appointment_id": "apt-2"})

        assert first.status == ExecutionStatus.WAITING
        assert second.status == ExecutionStatus.QUEUED
        assert engine.get_stats()["queued"] == 1

        clock.advance(minutes=30)
        await engine.resume_due()
        await engine.wait_idle()

        assert executor.called_types == [
            ActionType.SEND_EMAIL,
            ActionType.SEND_SMS,
            ActionType.SEND_EMAIL,
        ]
        assert engine.get_stats()["queued"] == 0
        assert engine.is_in_flight(workflow.id)
        assert engine.has_pending(workflow.id)

    @pytest.mark.asyncio
    async def test_skipped_outcomes_recorded(self, engine, history, make_workflow):
        guarded = tag_action(2, conditions=[Condition("client.tier", "equals", "gold")])
        workflow = make_workflow(actions=[email_action(1), guarded])

        await engine.execute_workflow(workflow, PAYLOAD)

        record = (await history.list(workflow_id=workflow.id))[0]
        assert record.actions_skipped == 1
        assert [o.status for o in record.outcomes] == [
            ActionOutcomeStatus.EXECUTED,
            ActionOutcomeStatus.SKIPPED,
        ]


class TestScheduledTrigger:
    """Tests for trigger type overrides."""

    @pytest.mark.asyncio
    async def test_trigger_type_override(self, engine, history, make_workflow):
        workflow = make_workflow(trigger=WorkflowTrigger(type=TriggerType.WEBHOOK))

        await engine.execute_workflow(workflow, {}, TriggerType.SCHEDULED)

        record = (await history.list(workflow_id=workflow.id))[0]
        assert record.trigger_type == TriggerType.SCHEDULED


class GaugedExecutor:
    """Counts how many executor calls overlap."""

    def __init__(self):
        self.active = 0
        self.peak = 0
        self.calls = 0

    async def execute(self, action_type, config, context):
        self.calls += 1
        self.active += 1
        self.peak = max(self.peak, self.active)
        await asyncio.sleep(0.02)
        self.active -= 1
        return ActionResult.ok()


class TestConcurrency:
    """Tests for in-flight slots and the concurrency bound."""

    @pytest.mark.asyncio
    async def test_cancelled_execution_frees_workflow(self, engine, executor, make_workflow):
        executor.sleeps[ActionType.SEND_EMAIL] = 5.0
        workflow = make_workflow()

        task = asyncio.create_task(engine.execute_workflow(workflow, PAYLOAD))
        await asyncio.sleep(0.05)
        queued = await engine.execute_workflow(workflow, PAYLOAD)
        assert queued.status == ExecutionStatus.QUEUED

        executor.sleeps.clear()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await engine.wait_idle()

        assert len(executor.calls) == 2
        assert not engine.is_in_flight(workflow.id)
        assert engine.get_stats()["queued"] == 0

        result = await engine.execute_workflow(workflow, PAYLOAD)
        assert result.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_executions_bounded_across_workflows(self, clock, id_factory, make_workflow):
        gauge = GaugedExecutor()
        engine = WorkflowEngine(gauge, clock=clock, id_factory=id_factory, max_concurrent_executions=1)
        workflows = [make_workflow(name=f"Flow {i}") for i in range(3)]

        results = await asyncio.gather(*(engine.execute_workflow(w, PAYLOAD) for w in workflows))

        assert all(r.status == ExecutionStatus.COMPLETED for r in results)
        assert gauge.calls == 3
        assert gauge.peak == 1

    @pytest.mark.asyncio
    async def test_unbounded_executions_overlap(self, clock, id_factory, make_workflow):
        gauge = GaugedExecutor()
        engine = WorkflowEngine(gauge, clock=clock, id_factory=id_factory, max_concurrent_executions=2)
        workflows = [make_workflow(name=f"Flow {i}") for i in range(2)]

        await asyncio.gather(*(engine.execute_workflow(w, PAYLOAD) for w in workflows))

        assert gauge.peak == 2

    @pytest.mark.asyncio
    async def test_full_queue_rejects(self, executor, clock, id_factory, make_workflow):
        engine = WorkflowEngine(executor, clock=clock, id_factory=id_factory, max_queued_per_workflow=1)
        delayed = sms_action(2, delay=ActionDelay(1, DelayUnit.DAYS))
        workflow = make_workflow(actions=[email_action(1), delayed])

        first = await engine.execute_workflow(workflow, PAYLOAD)
        second = await engine.execute_workflow(workflow, PAYLOAD)
        third = await engine.execute_workflow(workflow, PAYLOAD)

        assert first.status == ExecutionStatus.WAITING
        assert second.status == ExecutionStatus.QUEUED
        assert third.status == ExecutionStatus.REJECTED
        assert not third.success
        assert "full" in third.errors[0]
        assert engine.get_stats()["queued"] == 1
