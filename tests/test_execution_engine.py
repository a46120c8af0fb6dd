"""Tests for the workflow execution engine."""

import asyncio
import threading

import pytest

from nodeflow.core.exceptions import HttpRequestError
from nodeflow.core.execution_engine import WorkflowExecutionEngine
from nodeflow.models.core import ExecutionStatusEnum

from conftest import FakeHttpClient


def node_ids(execution):
    return [node_execution.node_id for node_execution in execution.node_executions]


def by_node(execution, node_id):
    return [ne for ne in execution.node_executions if ne.node_id == node_id]


class TestLinearExecution:
    """Straight-line workflows."""

    @pytest.mark.asyncio
    async def test_trigger_action_end_completes(self, engine, make_workflow):
        workflow = make_workflow(
            [("t", "trigger"), ("a", "action", {"actionType": "echo", "parameters": {"x": 1}}), ("e", "end")],
            [("t", "a"), ("a", "e")],
        )

        execution = await engine.execute(workflow, {"order": 42}, triggered_by="user-7")

        assert execution.status == ExecutionStatusEnum.COMPLETED
        assert node_ids(execution) == ["t", "a", "e"]
        assert all(ne.status == ExecutionStatusEnum.COMPLETED for ne in execution.node_executions)
        assert execution.triggered_by == "user-7"
        assert execution.workflow_id == "wf-test"
        assert execution.workflow_version == 1
        assert execution.error is None
        assert execution.end_time is not None
        assert execution.duration >= 0

        action_output = execution.node_executions[1].output
        assert action_output["success"] is True
        assert action_output["actionType"] == "echo"
        assert action_output["input"] == {"order": 42}
        assert action_output["output"] == {"received": {"order": 42}, "parameters": {"x": 1}}
        assert "timestamp" in action_output

        # The end node receives the action's wrapped output.
        assert execution.node_executions[2].input == action_output

    @pytest.mark.asyncio
    async def test_variables_are_a_copy_of_input(self, engine, make_workflow):
        workflow = make_workflow(
            [("t", "trigger"), ("a", "action", {"actionType": "mutate"}), ("e", "end")],
            [("t", "a"), ("a", "e")],
        )
        caller_input = {"customer": {"id": 1}}

        execution = await engine.execute(workflow, caller_input)

        assert execution.status == ExecutionStatusEnum.COMPLETED
        assert caller_input == {"customer": {"id": 1}}
        assert execution.variables == {"customer": {"id": 1}}

    @pytest.mark.asyncio
    async def test_node_traces_are_not_rewritten_by_later_nodes(self, engine, make_workflow):
        workflow = make_workflow(
            [("t", "trigger"), ("a", "action", {"actionType": "mutate"}), ("e", "end")],
            [("t", "a"), ("a", "e")],
        )

        execution = await engine.execute(workflow, {"x": 1})

        trigger, action = execution.node_executions[0], execution.node_executions[1]
        assert trigger.output == {"x": 1}
        assert action.input == {"x": 1}
        assert action.output["output"]["mutated"] is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("caller_input", [
        {1: "a"},
        {"lock": threading.Lock()},
    ])
    async def test_unusable_input_fails_the_run(self, engine, make_workflow, caller_input):
        workflow = make_workflow([("t", "trigger"), ("e", "end")], [("t", "e")])

        execution = await engine.execute(workflow, caller_input)

        assert execution.status == ExecutionStatusEnum.FAILED
        assert execution.error.code == "WORKFLOW_EXECUTION_ERROR"
        assert execution.error.message.startswith("Invalid workflow input")
        assert execution.node_executions == []
        assert engine.get_execution(execution.id).status == ExecutionStatusEnum.FAILED

    @pytest.mark.asyncio
    async def test_missing_input_defaults_to_empty(self, engine, make_workflow):
        workflow = make_workflow([("t", "trigger"), ("e", "end")], [("t", "e")])

        execution = await engine.execute(workflow)

        assert execution.status == ExecutionStatusEnum.COMPLETED
        assert execution.variables == {}
        assert execution.node_executions[0].output == {}

    @pytest.mark.asyncio
    async def test_end_node_is_terminal(self, engine, make_workflow):
        workflow = make_workflow(
            [("t", "trigger"), ("e", "end"), ("after", "action", {"actionType": "echo"})],
            [("t", "e"), ("e", "after")],
        )

        execution = await engine.execute(workflow, {})

        assert execution.status == ExecutionStatusEnum.COMPLETED
        assert node_ids(execution) == ["t", "e"]

    @pytest.mark.asyncio
    async def test_multiple_triggers_run_in_definition_order(self, engine, make_workflow):
        workflow = make_workflow(
            [("t1", "trigger"), ("t2", "trigger"), ("e1", "end"), ("e2", "end")],
            [("t1", "e1"), ("t2", "e2")],
        )

        execution = await engine.execute(workflow, {"n": 1})

        assert node_ids(execution) == ["t1", "e1", "t2", "e2"]


class TestBranching:
    """Condition nodes, fan-out and diamonds."""

    def _condition_workflow(self, make_workflow, logical_operator):
        return make_workflow(
            [
                ("t", "trigger"),
                ("c", "condition", {
                    "logicalOperator": logical_operator,
                    "conditions": [
                        {"variable": "age", "operator": "greater_than", "value": 18},
                        {"variable": "country", "operator": "equals", "value": "US"},
                    ],
                }),
                ("yes", "end"),
                ("no", "end"),
            ],
            [("t", "c"), ("c", "yes", "true"), ("c", "no", "false")],
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload, expected", [
        ({"age": 30, "country": "US"}, "yes"),
        ({"age": 30, "country": "NL"}, "no"),
        ({"age": 12, "country": "US"}, "no"),
    ])
    async def test_and_requires_every_condition(self, engine, make_workflow, payload, expected):
        execution = await engine.execute(self._condition_workflow(make_workflow, "AND"), payload)

        assert execution.status == ExecutionStatusEnum.COMPLETED
        assert node_ids(execution) == ["t", "c", expected]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload, expected", [
        ({"age": 30, "country": "NL"}, "yes"),
        ({"age": 12, "country": "US"}, "yes"),
        ({"age": 12, "country": "NL"}, "no"),
    ])
    async def test_or_requires_any_condition(self, engine, make_workflow, payload, expected):
        execution = await engine.execute(self._condition_workflow(make_workflow, "OR"), payload)

        assert node_ids(execution) == ["t", "c", expected]

    @pytest.mark.asyncio
    async def test_edge_condition_types_select_branches(self, engine):
        from nodeflow.models.core import WorkflowDefinition

        workflow = WorkflowDefinition.model_validate({
            "id": "wf-edges",
            "nodes": [
                {"id": "t", "type": "trigger"},
                {"id": "c", "type": "condition", "config": {
                    "conditions": [{"variable": "status", "operator": "equals", "value": "ok"}],
                }},
                {"id": "good", "type": "end"},
                {"id": "bad", "type": "end"},
            ],
            "edges": [
                {"id": "e1", "source": "t", "target": "c"},
                {"id": "e2", "source": "c", "target": "bad", "condition": {"type": "error"}},
                {"id": "e3", "source": "c", "target": "good", "condition": {"type": "success"}},
            ],
        })

        passed = await engine.execute(workflow, {"status": "ok"})
        failed = await engine.execute(workflow, {"status": "broken"})

        assert node_ids(passed) == ["t", "c", "good"]
        assert node_ids(failed) == ["t", "c", "bad"]

    @pytest.mark.asyncio
    async def test_condition_without_matching_branch_ends_path(self, engine, make_workflow):
        workflow = make_workflow(
            [
                ("t", "trigger"),
                ("c", "condition", {"conditions": [{"variable": "flag", "operator": "equals", "value": True}]}),
                ("yes", "end"),
            ],
            [("t", "c"), ("c", "yes", "true")],
        )

        execution = await engine.execute(workflow, {"flag": False})

        assert execution.status == ExecutionStatusEnum.COMPLETED
        assert node_ids(execution) == ["t", "c"]

    @pytest.mark.asyncio
    async def test_condition_completes_before_branch_runs(self, engine, make_workflow):
        workflow = self._condition_workflow(make_workflow, "AND")

        execution = await engine.execute(workflow, {"age": 40, "country": "US"})

        condition, branch = execution.node_executions[1], execution.node_executions[2]
        assert condition.status == ExecutionStatusEnum.COMPLETED
        assert condition.output == {"age": 40, "country": "US"}
        assert condition.end_time <= branch.start_time
        assert any(log.message == "Condition result: True" for log in condition.logs)

    @pytest.mark.asyncio
    async def test_fan_out_is_depth_first_in_edge_order(self, engine, make_workflow):
        workflow = make_workflow(
            [
                ("t", "trigger"),
                ("a", "action", {"actionType": "echo"}),
                ("a2", "end"),
                ("b", "action", {"actionType": "echo"}),
                ("b2", "end"),
            ],
            [("t", "a"), ("t", "b"), ("a", "a2"), ("b", "b2")],
        )

        execution = await engine.execute(workflow, {})

        assert node_ids(execution) == ["t", "a", "a2", "b", "b2"]

    @pytest.mark.asyncio
    async def test_diamond_runs_join_once_per_path(self, engine, make_workflow):
        workflow = make_workflow(
            [
                ("t", "trigger"),
                ("left", "transform", {"expression": "'left'"}),
                ("right", "transform", {"expression": "'right'"}),
                ("join", "end"),
            ],
            [("t", "left"), ("t", "right"), ("left", "join"), ("right", "join")],
        )

        execution = await engine.execute(workflow, {})

        assert node_ids(execution) == ["t", "left", "join", "right", "join"]
        assert [ne.input for ne in by_node(execution, "join")] == ["left", "right"]


class TestTransformsAndDelays:

    @pytest.mark.asyncio
    async def test_transform_output_and_variable(self, engine, make_workflow):
        workflow = make_workflow(
            [
                ("t", "trigger"),
                ("calc", "transform", {"expression": "input.price * quantity", "outputVariable": "total"}),
                ("c", "condition", {"conditions": [{"variable": "total", "operator": "greater_than", "value": 20}]}),
                ("big", "end"),
                ("small", "end"),
            ],
            [("t", "calc"), ("calc", "c"), ("c", "big", "true"), ("c", "small", "false")],
        )

        execution = await engine.execute(workflow, {"price": 10, "quantity": 3})

        assert execution.status == ExecutionStatusEnum.COMPLETED
        assert by_node(execution, "calc")[0].output == 30
        assert execution.variables["total"] == 30
        assert node_ids(execution)[-1] == "big"

    @pytest.mark.asyncio
    async def test_transform_error_is_a_node_error(self, engine, make_workflow):
        workflow = make_workflow(
            [("t", "trigger"), ("x", "transform", {"expression": "missing_fn(1)"}), ("e", "end")],
            [("t", "x"), ("x", "e")],
        )

        execution = await engine.execute(workflow, {})

        assert execution.status == ExecutionStatusEnum.FAILED
        failed = by_node(execution, "x")[0]
        assert failed.status == ExecutionStatusEnum.FAILED
        assert failed.error.message.startswith("Transform expression error")

    @pytest.mark.asyncio
    async def test_transform_cannot_mutate_input_or_variables(self, engine, make_workflow):
        workflow = make_workflow(
            [
                ("t", "trigger"),
                ("x", "transform", {"expression": "variables.clear() or input.pop('secret')"}),
                ("e", "end"),
            ],
            [("t", "x"), ("x", "e")],
        )

        execution = await engine.execute(workflow, {"secret": 42, "keep": 1})

        assert execution.status == ExecutionStatusEnum.FAILED
        assert "method calls are not allowed" in by_node(execution, "x")[0].error.message
        assert execution.variables == {"secret": 42, "keep": 1}
        assert execution.node_executions[0].output == {"secret": 42, "keep": 1}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duration, unit, seconds", [
        (2, "seconds", 2.0),
        (1.5, "minutes", 90.0),
        (1, "hours", 3600.0),
        (1, "days", 86400.0),
    ])
    async def test_delay_units(self, engine, make_workflow, recording_sleep, duration, unit, seconds):
        workflow = make_workflow(
            [("t", "trigger"), ("d", "delay", {"duration": duration, "unit": unit}), ("e", "end")],
            [("t", "d"), ("d", "e")],
        )

        execution = await engine.execute(workflow, {"k": "v"})

        assert execution.status == ExecutionStatusEnum.COMPLETED
        assert recording_sleep.calls == [seconds]
        assert by_node(execution, "d")[0].output == {"k": "v"}

    @pytest.mark.asyncio
    async def test_real_one_second_delay(self, action_registry, make_workflow):
        engine = WorkflowExecutionEngine(action_registry=action_registry, http_client=FakeHttpClient())
        workflow = make_workflow(
            [("t", "trigger"), ("d", "delay", {"duration": 1, "unit": "seconds"}), ("e", "end")],
            [("t", "d"), ("d", "e")],
        )

        execution = await engine.execute(workflow, {})

        delay = by_node(execution, "d")[0]
        elapsed_ms = (execution.end_time - delay.start_time).total_seconds() * 1000
        assert execution.status == ExecutionStatusEnum.COMPLETED
        assert elapsed_ms >= 990
        assert delay.duration >= 990


class TestFailurePolicy:

    def _failing_workflow(self, make_workflow, error_handling):
        return make_workflow(
            [
                ("t", "trigger"),
                ("boom", "action", {"actionType": "fail"}),
                ("after", "end"),
                ("other", "end"),
            ],
            [("t", "boom"), ("t", "other"), ("boom", "after")],
            error_handling=error_handling,
        )

    @pytest.mark.asyncio
    async def test_stop_fails_the_run(self, engine, make_workflow):
        execution = await engine.execute(self._failing_workflow(make_workflow, "stop"), {})

        assert execution.status == ExecutionStatusEnum.FAILED
        assert node_ids(execution) == ["t", "boom"]
        assert execution.node_executions[0].status == ExecutionStatusEnum.COMPLETED

        failed = execution.node_executions[1]
        assert failed.status == ExecutionStatusEnum.FAILED
        assert failed.error.code == "NODE_EXECUTION_ERROR"
        assert "kaboom" in failed.error.message
        assert failed.error.stack

        assert execution.error.code == "WORKFLOW_EXECUTION_ERROR"
        assert execution.error.node_id == "boom"
        assert "kaboom" in execution.error.message
        assert execution.end_time is not None

    @pytest.mark.asyncio
    async def test_continue_keeps_other_branches(self, engine, make_workflow):
        execution = await engine.execute(self._failing_workflow(make_workflow, "continue"), {})

        assert execution.status == ExecutionStatusEnum.COMPLETED
        assert execution.error is None
        assert node_ids(execution) == ["t", "boom", "other"]
        assert by_node(execution, "boom")[0].status == ExecutionStatusEnum.FAILED
        assert by_node(execution, "other")[0].status == ExecutionStatusEnum.COMPLETED

    @pytest.mark.asyncio
    async def test_unknown_action_is_a_node_error(self, engine, make_workflow):
        workflow = make_workflow(
            [("t", "trigger"), ("a", "action", {"actionType": "does_not_exist"})],
            [("t", "a")],
        )

        execution = await engine.execute(workflow, {})

        assert execution.status == ExecutionStatusEnum.FAILED
        assert "not registered" in execution.node_executions[1].error.message

    @pytest.mark.asyncio
    async def test_action_timeout_is_a_node_error(self, engine, make_workflow):
        workflow = make_workflow(
            [("t", "trigger"), ("a", "action", {"actionType": "slow", "parameters": {"seconds": 1}, "timeout": 50})],
            [("t", "a")],
        )

        execution = await engine.execute(workflow, {})

        assert execution.status == ExecutionStatusEnum.FAILED
        assert "timed out" in execution.node_executions[1].error.message

    @pytest.mark.asyncio
    async def test_validation_failure_runs_no_nodes(self, engine, make_workflow):
        workflow = make_workflow(
            [("a", "action", {"actionType": "echo"}), ("e", "end")],
            [("a", "e")],
        )

        execution = await engine.execute(workflow, {})

        assert execution.status == ExecutionStatusEnum.FAILED
        assert execution.node_executions == []
        assert execution.error.code == "WORKFLOW_VALIDATION_ERROR"
        assert "trigger" in execution.error.message

    @pytest.mark.asyncio
    async def test_cycle_fails_validation(self, engine, make_workflow):
        workflow = make_workflow(
            [("t", "trigger"), ("a", "transform", {"expression": "input"}), ("b", "transform", {"expression": "input"})],
            [("t", "a"), ("a", "b"), ("b", "a")],
        )

        execution = await engine.execute(workflow, {})

        assert execution.status == ExecutionStatusEnum.FAILED
        assert execution.error.code == "WORKFLOW_VALIDATION_ERROR"
        assert "circular" in execution.error.message

    @pytest.mark.asyncio
    async def test_node_execution_limit(self, action_registry, make_workflow):
        engine = WorkflowExecutionEngine(action_registry=action_registry, http_client=FakeHttpClient(),
                                         max_node_executions=3)
        workflow = make_workflow(
            [("t", "trigger"), ("a", "action", {"actionType": "echo"}),
             ("b", "action", {"actionType": "echo"}), ("e", "end")],
            [("t", "a"), ("a", "b"), ("b", "e")],
        )

        execution = await engine.execute(workflow, {})

        assert execution.status == ExecutionStatusEnum.FAILED
        assert execution.error.code == "WORKFLOW_EXECUTION_ERROR"
        assert "limit of 3" in execution.error.message
        assert len(execution.node_executions) == 3


class TestApiNodes:

    @pytest.mark.asyncio
    async def test_api_node_uses_http_client(self, engine, fake_http, make_workflow):
        workflow = make_workflow(
            [
                ("t", "trigger"),
                ("call", "api", {
                    "method": "post",
                    "url": "https://example.test/orders",
                    "headers": {"X-Trace": "1"},
                    "body": {"sku": "A1"},
                    "authentication": {"type": "bearer", "credentials": {"token": "secret"}},
                }),
                ("e", "end"),
            ],
            [("t", "call"), ("call", "e")],
        )

        execution = await engine.execute(workflow, {})

        assert execution.status == ExecutionStatusEnum.COMPLETED
        call = fake_http.calls[0]
        assert call["method"] == "POST"
        assert call["url"] == "https://example.test/orders"
        assert call["headers"] == {"X-Trace": "1", "Authorization": "Bearer secret"}
        assert call["body"] == {"sku": "A1"}
        assert call["timeout"] == 30.0
        assert by_node(execution, "call")[0].output == {
            "status": 200,
            "headers": {"Content-Type": "application/json"},
            "data": {"ok": True},
        }

    @pytest.mark.asyncio
    async def test_api_node_timeout_in_milliseconds(self, engine, fake_http, make_workflow):
        workflow = make_workflow(
            [("t", "trigger"), ("call", "api", {"url": "https://example.test", "timeout": 2500})],
            [("t", "call")],
        )

        await engine.execute(workflow, {})

        assert fake_http.calls[0]["timeout"] == 2.5

    @pytest.mark.asyncio
    async def test_api_failure_is_a_node_error(self, action_registry, make_workflow):
        http = FakeHttpClient(error=HttpRequestError("API request failed: 503 Service Unavailable", status_code=503))
        engine = WorkflowExecutionEngine(action_registry=action_registry, http_client=http)
        workflow = make_workflow(
            [("t", "trigger"), ("call", "api", {"url": "https://example.test"})],
            [("t", "call")],
        )

        execution = await engine.execute(workflow, {})

        assert execution.status == ExecutionStatusEnum.FAILED
        assert execution.error.message == "API request failed: 503 Service Unavailable"
        assert execution.error.node_id == "call"


class TestRetentionAndLogs:

    @pytest.mark.asyncio
    async def test_records_expire_after_retention(self, engine, fake_clock, make_workflow):
        workflow = make_workflow([("t", "trigger"), ("e", "end")], [("t", "e")])

        execution = await engine.execute(workflow, {})

        assert engine.get_execution(execution.id) is not None
        assert engine.get_execution_logs(execution.id)

        fake_clock.advance(59)
        assert engine.get_execution(execution.id) is not None

        fake_clock.advance(2)
        assert engine.get_execution_logs(execution.id) == []
        assert engine.get_execution(execution.id) is None

    @pytest.mark.asyncio
    async def test_returned_record_is_a_copy(self, engine, make_workflow):
        workflow = make_workflow([("t", "trigger"), ("e", "end")], [("t", "e")])

        execution = await engine.execute(workflow, {"a": 1})
        execution.variables["a"] = 99

        assert engine.get_execution(execution.id).variables == {"a": 1}

    @pytest.mark.asyncio
    async def test_logs_are_kept_per_run_and_per_node(self, engine, make_workflow):
        workflow = make_workflow([("t", "trigger"), ("e", "end")], [("t", "e")])

        execution = await engine.execute(workflow, {})
        logs = engine.get_execution_logs(execution.id)
        messages = [log.message for log in logs]

        assert messages[0] == "Validating workflow structure"
        assert "Reached end node" in messages
        assert messages[-1].startswith("Workflow completed in")
        end_node = by_node(execution, "e")[0]
        assert "Reached end node" in [log.message for log in end_node.logs]

    @pytest.mark.asyncio
    async def test_validation_warnings_are_logged(self, engine, make_workflow):
        workflow = make_workflow(
            [("t", "trigger"), ("e", "end"), ("orphan", "end")],
            [("t", "e")],
        )

        execution = await engine.execute(workflow, {})

        assert execution.status == ExecutionStatusEnum.COMPLETED
        warnings = [log for log in engine.get_execution_logs(execution.id) if log.level == "warn"]
        assert len(warnings) == 1
        assert warnings[0].data == {"nodeId": "orphan", "type": "unreachable_node"}

    @pytest.mark.asyncio
    async def test_finished_runs_are_not_active(self, engine, make_workflow):
        workflow = make_workflow([("t", "trigger"), ("e", "end")], [("t", "e")])

        await engine.execute(workflow, {})

        assert engine.get_active_executions() == []


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_concurrent_runs_are_isolated(self, engine, make_workflow):
        workflow = make_workflow(
            [
                ("t", "trigger"),
                ("d", "delay", {"duration": 1, "unit": "seconds"}),
                ("x", "transform", {"expression": "name + '!'", "outputVariable": "shout"}),
                ("e", "end"),
            ],
            [("t", "d"), ("d", "x"), ("x", "e")],
        )

        results = await asyncio.gather(*[
            engine.execute(workflow, {"name": f"run-{i}"}) for i in range(5)
        ])

        assert len({execution.id for execution in results}) == 5
        for i, execution in enumerate(results):
            assert execution.status == ExecutionStatusEnum.COMPLETED
            assert execution.variables == {"name": f"run-{i}", "shout": f"run-{i}!"}
            assert node_ids(execution) == ["t", "d", "x", "e"]
            logs = engine.get_execution_logs(execution.id)
            assert len(logs) == len(engine.get_execution_logs(results[0].id))
