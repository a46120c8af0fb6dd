"""Data models for the workflow engine."""

from .core import (
    NodeType,
    ExecutionStatusEnum,
    ErrorHandling,
    Condition,
    ActionConfig,
    ConditionConfig,
    TransformConfig,
    DelayConfig,
    ApiAuthentication,
    ApiConfig,
    Node,
    Edge,
    EdgeCondition,
    WorkflowSettings,
    WorkflowDefinition,
    ValidationError,
    ValidationWarning,
    ValidationResult,
    ExecutionLog,
    ExecutionError,
    NodeExecution,
    WorkflowExecution,
)

__all__ = [
    "NodeType",
    "ExecutionStatusEnum",
    "ErrorHandling",
    "Condition",
    "ActionConfig",
    "ConditionConfig",
    "TransformConfig",
    "DelayConfig",
    "ApiAuthentication",
    "ApiConfig",
    "Node",
    "Edge",
    "EdgeCondition",
    "WorkflowSettings",
    "WorkflowDefinition",
    "ValidationError",
    "ValidationWarning",
    "ValidationResult",
    "ExecutionLog",
    "ExecutionError",
    "NodeExecution",
    "WorkflowExecution",
]
