"""Execution Engine for visual workflows."""

import asyncio
import copy
import logging
import time
import traceback
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import TypeAdapter

from ..models.core import (
    ErrorHandling,
    ExecutionError,
    ExecutionLog,
    ExecutionStatusEnum,
    Node,
    NodeExecution,
    ValidationResult,
    WorkflowDefinition,
    WorkflowExecution,
)
from .action_registry import ActionRegistry
from .exceptions import (
    NodeExecutionError,
    WorkflowEngineError,
    WorkflowExecutionError,
    WorkflowValidationError,
)
from .execution_store import ExecutionStore
from .expressions import ExpressionEvaluator
from .graph_validator import GraphValidator
from .http_client import HttpClient
from .logging import clear_logging_context, get_logger, log_with_context, set_logging_context
from .node_executors import DEFAULT_API_TIMEOUT_MS, ExecutionContext, NodeResult, get_executor

logger = get_logger(__name__)

NODE_EXECUTION_ERROR = "NODE_EXECUTION_ERROR"
WORKFLOW_EXECUTION_ERROR = "WORKFLOW_EXECUTION_ERROR"
WORKFLOW_VALIDATION_ERROR = "WORKFLOW_VALIDATION_ERROR"

_VARIABLES = TypeAdapter(Dict[str, Any])

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() * 1000


def _format_stack(error: BaseException) -> Optional[str]:
    if error.__traceback__ is None:
        return None
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


class WorkflowExecutionEngine:
    """Runs workflow definitions and keeps their execution records for a retention window."""

    def __init__(
        self,
        action_registry: Optional[ActionRegistry] = None,
        http_client: Optional[HttpClient] = None,
        store: Optional[ExecutionStore] = None,
        evaluator: Optional[ExpressionEvaluator] = None,
        validator: Optional[GraphValidator] = None,
        retention_seconds: float = 300.0,
        max_node_executions: int = 10000,
        default_api_timeout_ms: int = DEFAULT_API_TIMEOUT_MS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the execution engine.

        Args:
            action_registry: Dispatcher for action nodes
            http_client: Client for api nodes
            store: Retention store for records and logs
            evaluator: Restricted expression evaluator
            validator: Graph validator
            retention_seconds: How long finished executions stay queryable
            max_node_executions: Upper bound on node runs within one execution
            default_api_timeout_ms: Timeout for api nodes that set none
            sleep: Coroutine used by delay nodes
            clock: Monotonic clock used for retention
        """
        self.action_registry = action_registry or ActionRegistry()
        self.http_client = http_client or HttpClient(default_timeout=default_api_timeout_ms / 1000)
        self.store = store or ExecutionStore(retention_seconds=retention_seconds, clock=clock)
        self.evaluator = evaluator or ExpressionEvaluator()
        self.validator = validator or GraphValidator()
        self.max_node_executions = max_node_executions
        self.default_api_timeout_ms = default_api_timeout_ms
        self._sleep = sleep

        logger.info(f"WorkflowExecutionEngine initialized with retention_seconds={self.store.retention_seconds}")

    @classmethod
    def from_config(
        cls,
        config,
        action_registry: Optional[ActionRegistry] = None,
        http_client: Optional[HttpClient] = None,
    ) -> "WorkflowExecutionEngine":
        """Build an engine from an AppConfig."""
        return cls(
            action_registry=action_registry,
            http_client=http_client,
            retention_seconds=config.execution_retention_seconds,
            max_node_executions=config.max_node_executions,
            default_api_timeout_ms=config.default_api_timeout_ms,
        )

    def validate(self, definition: WorkflowDefinition) -> ValidationResult:
        return self.validator.validate(definition)

    def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        """Return a copy of the execution, or None once it is unknown or expired."""
        return self.store.get_execution(execution_id)

    def get_execution_logs(self, execution_id: str) -> List[ExecutionLog]:
        """Return the execution's logs; empty once the retention window has passed."""
        return self.store.get_logs(execution_id)

    def get_active_executions(self) -> List[str]:
        return self.store.active_execution_ids()

    async def execute(
        self,
        definition: WorkflowDefinition,
        input: Optional[Dict[str, Any]] = None,
        triggered_by: str = "system",
    ) -> WorkflowExecution:
        """
        Execute a workflow definition against an input record.

        Never raises for workflow or node failures; they are encoded in the
        returned record's status and error fields.

        Args:
            definition: Workflow to run
            input: Initial input record; seeds the execution variables
            triggered_by: User id or "system"

        Returns:
            The finished execution record
        """
        execution = WorkflowExecution(
            id=str(uuid.uuid4()),
            workflow_id=definition.id,
            workflow_version=definition.version,
            status=ExecutionStatusEnum.PENDING,
            start_time=_now(),
            triggered_by=str(triggered_by),
        )
        self.store.create(execution)
        token = set_logging_context(execution_id=execution.id, workflow_id=definition.id)

        try:
            payload = self._prepare_input(execution, input)

            self._log(execution, "info", "Validating workflow structure")
            validation = self.validator.validate(definition)
            for warning in validation.warnings:
                self._log(execution, "warn", f"Validation warning: {warning.message}",
                          {"nodeId": warning.node_id, "type": warning.type})
            if not validation.valid:
                messages = [error.message for error in validation.errors]
                raise WorkflowValidationError(
                    f"Workflow validation failed: {', '.join(messages)}",
                    validation_errors=messages,
                    workflow_id=definition.id
                )

            triggers = definition.trigger_nodes()
            if not triggers:
                raise WorkflowExecutionError(
                    "Workflow must have at least one trigger node",
                    execution_id=execution.id,
                    workflow_id=definition.id
                )

            execution.status = ExecutionStatusEnum.RUNNING
            self._log(execution, "info", f"Starting workflow execution with {len(triggers)} trigger(s)")

            await self._run_graph(definition, execution, triggers, payload)

            execution.status = ExecutionStatusEnum.COMPLETED
            self._stamp_end(execution)
            self._log(execution, "info", f"Workflow completed in {execution.duration:.0f}ms")

        except WorkflowValidationError as e:
            self._fail(execution, e, WORKFLOW_VALIDATION_ERROR)
        except Exception as e:
            self._fail(execution, e, WORKFLOW_EXECUTION_ERROR)
        finally:
            self.store.finalize(execution.id)
            clear_logging_context(token)

        return execution.model_copy(deep=True)

    def _prepare_input(self, execution: WorkflowExecution, input: Any) -> Any:
        """Copy the caller's input and seed the execution variables from it.

        Raises:
            WorkflowExecutionError: If the input cannot be copied or its keys are not strings
        """
        try:
            payload = copy.deepcopy(input) if input is not None else {}
            if isinstance(payload, dict):
                execution.variables = _VARIABLES.validate_python(copy.deepcopy(payload))
        except (TypeError, ValueError, copy.Error) as e:
            raise WorkflowExecutionError(
                f"Invalid workflow input: {e}",
                execution_id=execution.id,
                workflow_id=execution.workflow_id
            ) from e
        return payload

    async def _run_graph(
        self,
        definition: WorkflowDefinition,
        execution: WorkflowExecution,
        triggers: List[Node],
        payload: Any,
    ) -> None:
        """Walk the graph depth-first with an explicit work list of (node_id, input) pairs."""
        context = ExecutionContext(
            definition=definition,
            execution=execution,
            evaluator=self.evaluator,
            action_registry=self.action_registry,
            http_client=self.http_client,
            log=self._log,
            sleep=self._sleep,
            default_api_timeout_ms=self.default_api_timeout_ms,
        )
        nodes = {node.id: node for node in definition.nodes}
        successors: Dict[str, List[str]] = {}
        for edge in definition.edges:
            successors.setdefault(edge.source, []).append(edge.target)

        # Reversed pushes keep edge order when popping.
        pending: List[Tuple[str, Any]] = [(trigger.id, copy.deepcopy(payload)) for trigger in reversed(triggers)]
        executed = 0

        while pending:
            node_id, node_input = pending.pop()
            node = nodes.get(node_id)
            if node is None:
                raise WorkflowExecutionError(
                    f"Node {node_id} not found in workflow",
                    execution_id=execution.id,
                    workflow_id=definition.id
                )

            executed += 1
            if executed > self.max_node_executions:
                raise WorkflowExecutionError(
                    f"Node execution limit of {self.max_node_executions} exceeded",
                    execution_id=execution.id,
                    workflow_id=definition.id
                )

            result = await self._execute_node(definition, execution, context, node, node_input)
            if result is None:
                continue

            next_ids = result.next_node_ids if result.next_node_ids is not None else successors.get(node.id, [])
            for target in reversed(next_ids):
                next_input = copy.deepcopy(result.output) if len(next_ids) > 1 else result.output
                pending.append((target, next_input))

    async def _execute_node(
        self,
        definition: WorkflowDefinition,
        execution: WorkflowExecution,
        context: ExecutionContext,
        node: Node,
        node_input: Any,
    ) -> Optional[NodeResult]:
        """
        Execute a single node and record its trace.

        Returns:
            The node result, or None when the node failed and the workflow
            continues on errors (the failing branch stops here).

        Raises:
            NodeExecutionError: If the node failed and the workflow stops on errors
        """
        node_execution = NodeExecution(
            node_id=node.id,
            status=ExecutionStatusEnum.RUNNING,
            start_time=_now(),
            input=copy.deepcopy(node_input),
        )
        execution.node_executions.append(node_execution)
        context.current_node_execution = node_execution

        try:
            self._log(execution, "info", f"Executing node: {node.display_name} ({node.type.value})",
                      node_execution=node_execution)

            result = await get_executor(node.type).execute(node, node_input, context)

            node_execution.status = ExecutionStatusEnum.COMPLETED
            node_execution.end_time = _now()
            node_execution.duration = _elapsed_ms(node_execution.start_time, node_execution.end_time)
            node_execution.output = copy.deepcopy(result.output)

            self._log(execution, "info", f"Node completed: {node.display_name} ({node_execution.duration:.0f}ms)",
                      node_execution=node_execution)
            return result

        except Exception as e:
            message = e.message if isinstance(e, WorkflowEngineError) else (str(e) or type(e).__name__)

            node_execution.status = ExecutionStatusEnum.FAILED
            node_execution.end_time = _now()
            node_execution.duration = _elapsed_ms(node_execution.start_time, node_execution.end_time)
            node_execution.error = ExecutionError(
                code=NODE_EXECUTION_ERROR,
                message=message,
                node_id=node.id,
                timestamp=_now(),
                recoverable=False,
                stack=_format_stack(e),
            )
            self._log(execution, "error", f"Node failed: {node.display_name} - {message}",
                      node_execution=node_execution)

            if definition.settings.error_handling == ErrorHandling.STOP:
                if isinstance(e, NodeExecutionError):
                    e.add_context(node_id=node.id, execution_id=execution.id)
                    raise
                raise NodeExecutionError(message, node_id=node.id, execution_id=execution.id) from e
            return None

        finally:
            context.current_node_execution = None

    def _stamp_end(self, execution: WorkflowExecution) -> None:
        execution.end_time = _now()
        execution.duration = _elapsed_ms(execution.start_time, execution.end_time)

    def _fail(self, execution: WorkflowExecution, error: Exception, code: str) -> None:
        """Mark the run failed and attach a single top-level error."""
        message = error.message if isinstance(error, WorkflowEngineError) else (str(error) or type(error).__name__)
        node_id = error.node_id if isinstance(error, WorkflowEngineError) else None

        execution.status = ExecutionStatusEnum.FAILED
        self._stamp_end(execution)
        execution.error = ExecutionError(
            code=code,
            message=message,
            timestamp=_now(),
            recoverable=False,
            node_id=node_id,
            stack=_format_stack(error),
        )
        self._log(execution, "error", f"Workflow failed: {message}")

    def _log(
        self,
        execution: WorkflowExecution,
        level: str,
        message: str,
        data: Any = None,
        node_execution: Optional[NodeExecution] = None,
    ) -> None:
        """Record a log line in the execution's buffer and forward it to the logging module."""
        entry = ExecutionLog(timestamp=_now(), level=level, message=message, data=data)
        self.store.append_log(execution.id, entry, node_execution)

        if data is None:
            logger.log(_LOG_LEVELS[level], f"[{execution.id}] {message}")
        else:
            log_with_context(logger, _LOG_LEVELS[level], f"[{execution.id}] {message}", data=data)
