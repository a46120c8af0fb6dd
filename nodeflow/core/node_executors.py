"""Node executors, one strategy per node type."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..models.core import (
    ActionConfig,
    ApiConfig,
    ConditionConfig,
    DelayConfig,
    Node,
    NodeExecution,
    NodeType,
    TransformConfig,
    WorkflowDefinition,
    WorkflowExecution,
)
from .action_registry import ActionRegistry
from .exceptions import ConfigurationError, NodeExecutionError
from .expressions import ExpressionEvaluator
from .http_client import HttpClient, authentication_headers
from .logging import get_logger

logger = get_logger(__name__)

DELAY_MULTIPLIERS_MS = {
    "seconds": 1000,
    "minutes": 60000,
    "hours": 3600000,
    "days": 86400000,
}

DEFAULT_API_TIMEOUT_MS = 30000


class ExecutionContext:
    """Per-run context handed to every node executor.

    Owned by exactly one execution; never shared between runs.
    """

    def __init__(
        self,
        definition: WorkflowDefinition,
        execution: WorkflowExecution,
        evaluator: ExpressionEvaluator,
        action_registry: ActionRegistry,
        http_client: HttpClient,
        log: Callable[..., None],
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        default_api_timeout_ms: int = DEFAULT_API_TIMEOUT_MS,
    ):
        self.definition = definition
        self.execution = execution
        self.evaluator = evaluator
        self.action_registry = action_registry
        self.http_client = http_client
        self.sleep = sleep
        self.default_api_timeout_ms = default_api_timeout_ms
        self.current_node_execution: Optional[NodeExecution] = None
        self._log = log

    @property
    def execution_id(self) -> str:
        return self.execution.id

    @property
    def variables(self) -> Dict[str, Any]:
        return self.execution.variables

    def log(self, level: str, message: str, data: Any = None) -> None:
        """Record a log line on the execution and on the running node."""
        self._log(self.execution, level, message, data, self.current_node_execution)


class NodeResult:
    """Output of a node and, optionally, the explicit next hops.

    ``next_node_ids`` of None means "follow every outgoing edge"; an empty list
    ends the branch.
    """

    def __init__(self, output: Any, next_node_ids: Optional[List[str]] = None):
        self.output = output
        self.next_node_ids = next_node_ids


class NodeExecutor:
    node_type: NodeType

    async def execute(self, node: Node, node_input: Any, context: ExecutionContext) -> NodeResult:
        raise NotImplementedError


class TriggerExecutor(NodeExecutor):
    node_type = NodeType.TRIGGER

    async def execute(self, node: Node, node_input: Any, context: ExecutionContext) -> NodeResult:
        return NodeResult(node_input)


class ActionExecutor(NodeExecutor):
    node_type = NodeType.ACTION

    async def execute(self, node: Node, node_input: Any, context: ExecutionContext) -> NodeResult:
        config: ActionConfig = node.config
        context.log("info", f"Executing action: {config.action_type}")

        timeout = config.timeout / 1000 if config.timeout else None
        result = await context.action_registry.dispatch(
            config.action_type, node_input, config.parameters, timeout=timeout
        )

        return NodeResult({
            "success": True,
            "actionType": config.action_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "input": node_input,
            "output": result,
        })


class ConditionExecutor(NodeExecutor):
    """Evaluates the sub-conditions and picks the true or false edge."""

    node_type = NodeType.CONDITION

    async def execute(self, node: Node, node_input: Any, context: ExecutionContext) -> NodeResult:
        config: ConditionConfig = node.config
        context.log("info", f"Evaluating condition: {config.logical_operator}")

        condition_met, results = context.evaluator.evaluate_conditions(
            config.conditions, config.logical_operator, node_input, context.variables
        )
        context.log("info", f"Condition result: {condition_met}", {"results": results})

        branch = "true" if condition_met else "false"
        for edge in context.definition.outgoing_edges(node.id):
            if (condition_met and edge.is_true_branch) or (not condition_met and edge.is_false_branch):
                return NodeResult(node_input, [edge.target])

        context.log("info", f"No '{branch}' branch connected; ending this path")
        return NodeResult(node_input, [])


class TransformExecutor(NodeExecutor):
    node_type = NodeType.TRANSFORM

    async def execute(self, node: Node, node_input: Any, context: ExecutionContext) -> NodeResult:
        config: TransformConfig = node.config
        context.log("info", f"Executing transform: {config.transform_type}")

        output = context.evaluator.evaluate(config.expression, node_input, context.variables)
        if config.output_variable:
            context.variables[config.output_variable] = output
        return NodeResult(output)


class DelayExecutor(NodeExecutor):
    node_type = NodeType.DELAY

    async def execute(self, node: Node, node_input: Any, context: ExecutionContext) -> NodeResult:
        config: DelayConfig = node.config
        delay_ms = config.duration * DELAY_MULTIPLIERS_MS[config.unit]

        context.log("info", f"Delaying for {config.duration} {config.unit}")
        await context.sleep(delay_ms / 1000)
        return NodeResult(node_input)


class ApiExecutor(NodeExecutor):
    node_type = NodeType.API

    async def execute(self, node: Node, node_input: Any, context: ExecutionContext) -> NodeResult:
        config: ApiConfig = node.config
        context.log("info", f"Making {config.method} request to {config.url}")

        headers = {**(config.headers or {}), **authentication_headers(config.authentication)}
        timeout_ms = config.timeout or context.default_api_timeout_ms
        response = await context.http_client.request(
            config.method,
            config.url,
            headers=headers or None,
            body=config.body,
            timeout=timeout_ms / 1000,
        )
        return NodeResult(response.to_dict())


class EndExecutor(NodeExecutor):
    node_type = NodeType.END

    async def execute(self, node: Node, node_input: Any, context: ExecutionContext) -> NodeResult:
        context.log("info", "Reached end node")
        return NodeResult(node_input, [])


NODE_EXECUTORS: Dict[NodeType, NodeExecutor] = {
    executor.node_type: executor
    for executor in (
        TriggerExecutor(),
        ActionExecutor(),
        ConditionExecutor(),
        TransformExecutor(),
        DelayExecutor(),
        ApiExecutor(),
        EndExecutor(),
    )
}

_unhandled = set(NodeType) - set(NODE_EXECUTORS)
if _unhandled:
    raise ConfigurationError(f"No executor for node types: {sorted(t.value for t in _unhandled)}")


def get_executor(node_type: NodeType) -> NodeExecutor:
    try:
        return NODE_EXECUTORS[node_type]
    except KeyError:
        raise NodeExecutionError(f"Unknown node type: {node_type}")
