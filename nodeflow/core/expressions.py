"""Restricted expression and condition evaluation.

Expressions are evaluated with ``simpleeval`` over a whitelist of names and
pure functions. Nothing here performs I/O or touches interpreter state, so the
same evaluator can be shared by every concurrent execution.
"""

import ast
import json
import math
import re
from collections.abc import Mapping
from typing import Any, Dict, Iterable, List, Optional, Tuple

from simpleeval import EvalWithCompoundTypes, FeatureNotAvailable, InvalidExpression

from ..models.core import Condition
from .exceptions import ExpressionError
from .logging import get_logger

logger = get_logger(__name__)

_MISSING = object()


def _lower(value: Any) -> str:
    return _stringify(value).lower()


def _upper(value: Any) -> str:
    return _stringify(value).upper()


def _strip(value: Any) -> str:
    return _stringify(value).strip()


SAFE_FUNCTIONS: Dict[str, Any] = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "sum": sum,
    "sorted": sorted,
    "lower": _lower,
    "upper": _upper,
    "strip": _strip,
}

_LITERAL_NAMES = {"true": True, "false": False, "null": None}


def _walk_path(source: Any, parts: List[str]) -> Any:
    value = source
    for part in parts:
        if isinstance(value, Mapping) and part in value:
            value = value[part]
        elif isinstance(value, (list, tuple)) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return _MISSING
    return value


def resolve_variable(name: str, node_input: Any, variables: Optional[Mapping] = None) -> Any:
    """
    Resolve a (possibly dotted) variable name.

    The node input is searched first, then the execution variables. A key that
    literally contains dots wins over path traversal. Unknown names resolve to
    None.
    """
    parts = name.split(".")
    for source in (node_input, variables if variables is not None else {}):
        if isinstance(source, Mapping) and name in source:
            return source[name]
        value = _walk_path(source, parts)
        if value is not _MISSING:
            return value
    return None


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


def _to_number(value: Any) -> float:
    """Numeric coercion; anything that is not a number becomes NaN."""
    if isinstance(value, (bool, int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def _strict_equals(left: Any, right: Any) -> bool:
    """Equality where booleans never match numbers (True != 1)."""
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple, dict, set, frozenset)):
        return len(value) == 0
    return False


def check_expression_syntax(expression: str) -> Optional[str]:
    """Return a syntax error message for the expression, or None if it parses."""
    try:
        ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        return f"Invalid expression '{expression}': {e.msg}"
    return None


def check_regex(pattern: Any) -> Optional[str]:
    """Return an error message if the pattern does not compile, else None."""
    try:
        re.compile(_stringify(pattern))
    except re.error as e:
        return f"Invalid regular expression '{pattern}': {e}"
    return None


class RestrictedEval(EvalWithCompoundTypes):
    """simpleeval variant that only calls whitelisted functions by name.

    Method calls such as ``variables.clear()`` are rejected so an expression
    cannot mutate the input or the execution variables.
    """

    def _eval_call(self, node):
        if not isinstance(node.func, ast.Name):
            raise FeatureNotAvailable("Only whitelisted functions may be called; method calls are not allowed")
        if node.func.id not in self.functions:
            raise FeatureNotAvailable(f"Function '{node.func.id}' is not available")
        return super()._eval_call(node)


class ExpressionEvaluator:
    """Evaluates transform expressions and condition operators."""

    def __init__(self, functions: Optional[Dict[str, Any]] = None):
        self.functions = {**SAFE_FUNCTIONS, **(functions or {})}

    def _names(self, node_input: Any, variables: Mapping) -> Dict[str, Any]:
        names: Dict[str, Any] = dict(_LITERAL_NAMES)
        names.update(variables)
        if isinstance(node_input, Mapping):
            names.update(node_input)
        names["input"] = node_input
        names["data"] = node_input
        names["variables"] = variables
        return names

    def evaluate(self, expression: str, node_input: Any, variables: Optional[Mapping] = None) -> Any:
        """
        Evaluate a restricted expression against the node input and variables.

        Raises:
            ExpressionError: If the expression is invalid or fails to evaluate
        """
        evaluator = RestrictedEval(
            functions=self.functions,
            names=self._names(node_input, variables or {}),
        )
        try:
            return evaluator.eval(expression.strip())
        except InvalidExpression as e:
            raise ExpressionError(f"Transform expression error: {e}", expression=expression) from e
        except SyntaxError as e:
            raise ExpressionError(f"Transform expression error: invalid syntax ({e.msg})", expression=expression) from e
        except Exception as e:
            raise ExpressionError(f"Transform expression error: {e}", expression=expression) from e

    def evaluate_condition(self, condition: Condition, node_input: Any, variables: Optional[Mapping] = None) -> bool:
        """Evaluate a single condition; raises ExpressionError for a bad regex."""
        value = resolve_variable(condition.variable, node_input, variables)
        expected = condition.value
        operator = condition.operator

        if operator in ("equals", "not_equals"):
            if not condition.case_sensitive and isinstance(value, str) and isinstance(expected, str):
                matched = value.lower() == expected.lower()
            else:
                matched = _strict_equals(value, expected)
            return matched if operator == "equals" else not matched

        if operator == "greater_than":
            return _to_number(value) > _to_number(expected)

        if operator == "less_than":
            return _to_number(value) < _to_number(expected)

        if operator == "contains":
            haystack, needle = _stringify(value), _stringify(expected)
            if not condition.case_sensitive:
                haystack, needle = haystack.lower(), needle.lower()
            return needle in haystack

        if operator == "regex":
            flags = 0 if condition.case_sensitive else re.IGNORECASE
            try:
                return re.search(_stringify(expected), _stringify(value), flags) is not None
            except re.error as e:
                raise ExpressionError(f"Invalid regular expression '{expected}': {e}") from e

        if operator == "is_empty":
            return _is_empty(value)

        if operator == "is_not_empty":
            return not _is_empty(value)

        logger.warning(f"Unknown condition operator: {operator}")
        return False

    def evaluate_conditions(
        self,
        conditions: Iterable[Condition],
        logical_operator: str,
        node_input: Any,
        variables: Optional[Mapping] = None,
    ) -> Tuple[bool, List[bool]]:
        """Evaluate every condition and combine them with AND / OR."""
        results = [self.evaluate_condition(condition, node_input, variables) for condition in conditions]
        if logical_operator == "AND":
            return all(results), results
        return any(results), results
