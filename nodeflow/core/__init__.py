"""Core workflow engine components."""

from .exceptions import (
    WorkflowEngineError,
    WorkflowValidationError,
    NodeExecutionError,
    ExpressionError,
    ActionDispatchError,
    HttpRequestError,
    WorkflowExecutionError,
    ActionRegistryError,
    ConfigurationError,
)
from .logging import setup_logging, get_logger
from .action_registry import ActionRegistry
from .http_client import HttpClient
from .expressions import ExpressionEvaluator, resolve_variable
from .graph_validator import GraphValidator
from .execution_store import ExecutionStore
from .execution_engine import WorkflowExecutionEngine

__all__ = [
    "WorkflowEngineError",
    "WorkflowValidationError",
    "NodeExecutionError",
    "ExpressionError",
    "ActionDispatchError",
    "HttpRequestError",
    "WorkflowExecutionError",
    "ActionRegistryError",
    "ConfigurationError",
    "setup_logging",
    "get_logger",
    "ActionRegistry",
    "HttpClient",
    "ExpressionEvaluator",
    "resolve_variable",
    "GraphValidator",
    "ExecutionStore",
    "WorkflowExecutionEngine",
]
