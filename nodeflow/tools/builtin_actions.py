"""Built-in actions available to every action node."""

from typing import Any, Dict, Optional

from ..core.action_registry import ActionRegistry
from ..core.logging import get_logger

logger = get_logger(__name__)

_LOG_LEVELS = {"debug", "info", "warning", "error"}


def log_message(node_input: Any, message: str = "Default message", level: str = "info", **kwargs) -> Dict[str, Any]:
    """
    Write a message to the application log.

    Args:
        node_input: Input record of the action node
        message: Message to log
        level: One of debug, info, warning, error
        **kwargs: Ignored extra parameters

    Returns:
        Dictionary describing what was logged
    """
    level = level.lower()
    if level == "warn":
        level = "warning"
    if level not in _LOG_LEVELS:
        logger.warning(f"Unknown log level: {level}, defaulting to info")
        level = "info"

    getattr(logger, level)(message)
    return {"message": message, "level": level}


def set_fields(node_input: Any, fields: Optional[Dict[str, Any]] = None, **kwargs) -> Dict[str, Any]:
    """Return the input record with ``fields`` merged over it."""
    base = dict(node_input) if isinstance(node_input, dict) else {"value": node_input}
    base.update(fields or {})
    logger.debug(f"set_fields produced keys: {sorted(base)}")
    return base


def math_operation(
    node_input: Any,
    operation: str = "add",
    field: str = "value",
    operand: float = 1.0,
    **kwargs
) -> Dict[str, Any]:
    """
    Apply a basic math operation to a numeric field of the input record.

    Args:
        node_input: Input record; ``node_input[field]`` is the left operand (default 0)
        operation: add, subtract, multiply or divide
        field: Name of the input field to read
        operand: Right operand
        **kwargs: Ignored extra parameters

    Returns:
        Dictionary with the result and the operation applied

    Raises:
        ValueError: On division by zero, unknown operations or non-numeric input
    """
    current = node_input.get(field, 0) if isinstance(node_input, dict) else 0
    if isinstance(current, bool) or not isinstance(current, (int, float)):
        raise ValueError(f"Field '{field}' is not numeric: {current!r}")

    if operation == "add":
        result = current + operand
    elif operation == "subtract":
        result = current - operand
    elif operation == "multiply":
        result = current * operand
    elif operation == "divide":
        if operand == 0:
            logger.error("Division by zero attempted")
            raise ValueError("Cannot divide by zero")
        result = current / operand
    else:
        raise ValueError(f"Unknown operation: {operation}")

    logger.debug(f"math_operation {operation}({current}, {operand}) = {result}")
    return {"result": result, "operation": operation, "operand": operand}


BUILTIN_ACTIONS = [
    ("log_message", log_message, "Writes a message to the application log"),
    ("set_fields", set_fields, "Merges static fields into the input record"),
    ("math_operation", math_operation, "Performs basic math on a numeric input field"),
]


def register_builtin_actions(registry: ActionRegistry) -> None:
    """Register the built-in actions, skipping any name that is already taken."""
    for name, handler, description in BUILTIN_ACTIONS:
        if registry.action_exists(name):
            logger.info(f"Action already exists: {name}")
            continue
        registry.register_action(name, handler, description)

    logger.info("Built-in actions registration completed")
