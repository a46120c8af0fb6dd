"""Built-in actions for the workflow engine."""

from .builtin_actions import (
    log_message,
    set_fields,
    math_operation,
    register_builtin_actions,
)

__all__ = [
    "log_message",
    "set_fields",
    "math_operation",
    "register_builtin_actions",
]
