"""FastAPI REST endpoints for the workflow engine."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import Field

from ..core.action_registry import ActionRegistry
from ..core.execution_engine import WorkflowExecutionEngine
from ..core.logging import get_logger
from ..models.core import (
    ExecutionLog,
    FlowModel,
    ValidationResult,
    WorkflowDefinition,
    WorkflowExecution,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["workflow"])

# Global instances (initialized by the application lifespan)
_execution_engine: Optional[WorkflowExecutionEngine] = None
_action_registry: Optional[ActionRegistry] = None


def init_dependencies(execution_engine: WorkflowExecutionEngine, action_registry: ActionRegistry):
    """Initialize the global dependencies."""
    global _execution_engine, _action_registry
    _execution_engine = execution_engine
    _action_registry = action_registry


def get_execution_engine() -> WorkflowExecutionEngine:
    """Dependency to get the execution engine."""
    if _execution_engine is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Execution engine not initialized"
        )
    return _execution_engine


def get_action_registry() -> ActionRegistry:
    """Dependency to get the action registry."""
    if _action_registry is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Action registry not initialized"
        )
    return _action_registry


# Request/Response models
class ExecuteWorkflowRequest(FlowModel):
    """Request model for running a workflow."""
    workflow: WorkflowDefinition = Field(..., description="Workflow definition to execute")
    input: Dict[str, Any] = Field(default_factory=dict, description="Initial input record")
    triggered_by: str = Field(default="system", description="User id or 'system'")


class ExecutionResponse(FlowModel):
    """An execution record together with its logs."""
    execution: WorkflowExecution
    logs: List[ExecutionLog] = Field(default_factory=list)


class ExecutionLogsResponse(FlowModel):
    execution_id: str
    logs: List[ExecutionLog] = Field(default_factory=list)


class ValidateWorkflowResponse(FlowModel):
    validation: ValidationResult


class ActionInfo(FlowModel):
    action_type: str
    description: str = ""


class ActionListResponse(FlowModel):
    actions: List[ActionInfo] = Field(default_factory=list)


def _not_found(execution_id: str) -> HTTPException:
    logger.warning(f"Execution not found: {execution_id}")
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={
            "error": "ExecutionNotFound",
            "message": f"Execution with ID '{execution_id}' not found",
            "details": {"execution_id": execution_id}
        }
    )


# Endpoints

@router.post(
    "/workflows/validate",
    response_model=ValidateWorkflowResponse,
    summary="Validate a workflow",
    description="Validate a workflow definition without executing it"
)
async def validate_workflow(
    workflow: WorkflowDefinition,
    engine: WorkflowExecutionEngine = Depends(get_execution_engine)
) -> ValidateWorkflowResponse:
    """
    Validate a workflow definition.

    Args:
        workflow: Workflow definition sent by the editor
        engine: Execution engine dependency

    Returns:
        Validation result with errors and warnings
    """
    logger.debug(f"Validating workflow: {workflow.id}")

    validation = engine.validate(workflow)

    logger.debug(f"Workflow validation completed. Valid: {validation.valid}")
    return ValidateWorkflowResponse(validation=validation)


@router.post(
    "/workflows/execute",
    response_model=ExecutionResponse,
    summary="Execute a workflow",
    description="Run a workflow definition to completion and return its execution record and logs"
)
async def execute_workflow(
    request: ExecuteWorkflowRequest,
    engine: WorkflowExecutionEngine = Depends(get_execution_engine)
) -> ExecutionResponse:
    """
    Execute a workflow definition.

    Workflow and node failures are reported in the returned record, not as
    HTTP errors.

    Args:
        request: Workflow, input record and caller identity
        engine: Execution engine dependency

    Returns:
        The finished execution record and its logs
    """
    logger.info(f"Starting workflow execution for workflow: {request.workflow.id}")

    execution = await engine.execute(request.workflow, request.input, triggered_by=request.triggered_by)

    logger.info(f"Workflow execution finished: execution_id={execution.id}, status={execution.status.value}")
    return ExecutionResponse(execution=execution, logs=engine.get_execution_logs(execution.id))


@router.get(
    "/executions/{execution_id}",
    response_model=ExecutionResponse,
    summary="Get an execution",
    description="Retrieve a retained execution record and its logs"
)
async def get_execution(
    execution_id: str,
    engine: WorkflowExecutionEngine = Depends(get_execution_engine)
) -> ExecutionResponse:
    """
    Get an execution record while it is within its retention window.

    Raises:
        HTTPException: If the execution is unknown or has expired
    """
    execution = engine.get_execution(execution_id)
    if execution is None:
        raise _not_found(execution_id)

    logs = engine.get_execution_logs(execution_id)
    logger.debug(f"Retrieved execution {execution_id}: {execution.status.value}")
    return ExecutionResponse(execution=execution, logs=logs)


@router.get(
    "/executions/{execution_id}/logs",
    response_model=ExecutionLogsResponse,
    summary="Get execution logs",
    description="Retrieve the logs of a retained execution in chronological order"
)
async def get_execution_logs(
    execution_id: str,
    engine: WorkflowExecutionEngine = Depends(get_execution_engine)
) -> ExecutionLogsResponse:
    if engine.get_execution(execution_id) is None:
        raise _not_found(execution_id)

    logs = engine.get_execution_logs(execution_id)
    logger.debug(f"Retrieved {len(logs)} log entries for execution {execution_id}")
    return ExecutionLogsResponse(execution_id=execution_id, logs=logs)


@router.get(
    "/actions",
    response_model=ActionListResponse,
    summary="List actions",
    description="List the action types available to action nodes"
)
async def list_actions(
    registry: ActionRegistry = Depends(get_action_registry)
) -> ActionListResponse:
    actions = [
        ActionInfo(action_type=name, description=description)
        for name, description in sorted(registry.list_actions().items())
    ]
    return ActionListResponse(actions=actions)


@router.get("/health", summary="Health check")
async def health_check(
    engine: WorkflowExecutionEngine = Depends(get_execution_engine)
) -> Dict[str, Any]:
    return {
        "status": "healthy",
        "activeExecutions": len(engine.get_active_executions()),
        "retainedExecutions": len(engine.store),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
