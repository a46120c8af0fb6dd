"""Static validation of workflow definitions."""

from typing import Dict, List, Set

from ..models.core import (
    NodeType,
    TransformConfig,
    ConditionConfig,
    ValidationError,
    ValidationResult,
    ValidationWarning,
    WorkflowDefinition,
)
from .expressions import check_expression_syntax, check_regex
from .logging import get_logger

logger = get_logger(__name__)

_WHITE, _GREY, _BLACK = 0, 1, 2


class GraphValidator:
    """Checks trigger presence, edge references, connectivity, cycles and expressions."""

    def validate(self, definition: WorkflowDefinition) -> ValidationResult:
        """
        Validate a workflow definition for structural correctness.

        Args:
            definition: The workflow definition to validate

        Returns:
            ValidationResult: Validation results with errors and warnings
        """
        logger.debug(f"Validating workflow: {definition.id}")

        errors: List[ValidationError] = []
        warnings: List[ValidationWarning] = []

        self._validate_triggers(definition, errors)
        self._validate_edge_references(definition, errors)
        self._validate_unreachable_nodes(definition, warnings)
        self._validate_cycles(definition, errors)
        self._validate_expressions(definition, errors)
        self._validate_end_nodes(definition, warnings)

        result = ValidationResult(valid=len(errors) == 0, errors=errors, warnings=warnings)

        logger.debug(f"Workflow validation completed. Valid: {result.valid}, "
                     f"Errors: {len(result.errors)}, Warnings: {len(result.warnings)}")
        return result

    def _validate_triggers(self, definition: WorkflowDefinition, errors: List[ValidationError]):
        if not definition.trigger_nodes():
            errors.append(ValidationError(
                type="missing_connection",
                message="Workflow must have at least one trigger node",
                severity="critical",
            ))

    def _validate_edge_references(self, definition: WorkflowDefinition, errors: List[ValidationError]):
        node_ids = {node.id for node in definition.nodes}
        for edge in definition.edges:
            if edge.source not in node_ids:
                errors.append(ValidationError(
                    type="missing_connection",
                    message=f"Edge '{edge.id}' references non-existent source node: '{edge.source}'",
                    severity="critical",
                    edge_id=edge.id,
                ))
            if edge.target not in node_ids:
                errors.append(ValidationError(
                    type="missing_connection",
                    message=f"Edge '{edge.id}' references non-existent target node: '{edge.target}'",
                    severity="critical",
                    edge_id=edge.id,
                ))

    def _validate_unreachable_nodes(self, definition: WorkflowDefinition, warnings: List[ValidationWarning]):
        connected: Set[str] = set()
        for edge in definition.edges:
            connected.add(edge.source)
            connected.add(edge.target)

        for node in definition.nodes:
            if node.type != NodeType.TRIGGER and node.id not in connected:
                warnings.append(ValidationWarning(
                    node_id=node.id,
                    type="unreachable_node",
                    message=f'Node "{node.display_name}" is not connected to the workflow',
                    suggestion="Connect this node or remove it",
                ))

    def _validate_cycles(self, definition: WorkflowDefinition, errors: List[ValidationError]):
        if self.has_cycle(definition):
            errors.append(ValidationError(
                type="circular_dependency",
                message="Workflow contains circular dependencies",
                severity="critical",
            ))

    @staticmethod
    def has_cycle(definition: WorkflowDefinition) -> bool:
        """Check for a directed cycle with an iterative white/grey/black DFS."""
        adjacency: Dict[str, List[str]] = {node.id: [] for node in definition.nodes}
        for edge in definition.edges:
            adjacency.setdefault(edge.source, []).append(edge.target)
            adjacency.setdefault(edge.target, [])

        color = {node_id: _WHITE for node_id in adjacency}

        for root in adjacency:
            if color[root] != _WHITE:
                continue
            color[root] = _GREY
            stack = [(root, iter(adjacency[root]))]
            while stack:
                node_id, neighbors = stack[-1]
                for neighbor in neighbors:
                    if color[neighbor] == _GREY:
                        return True
                    if color[neighbor] == _WHITE:
                        color[neighbor] = _GREY
                        stack.append((neighbor, iter(adjacency[neighbor])))
                        break
                else:
                    color[node_id] = _BLACK
                    stack.pop()
        return False

    def _validate_expressions(self, definition: WorkflowDefinition, errors: List[ValidationError]):
        for node in definition.nodes:
            config = node.config
            if isinstance(config, TransformConfig):
                message = check_expression_syntax(config.expression)
                if message:
                    errors.append(ValidationError(
                        type="invalid_expression",
                        message=message,
                        severity="error",
                        node_id=node.id,
                    ))
            elif isinstance(config, ConditionConfig):
                for condition in config.conditions:
                    if condition.operator != "regex":
                        continue
                    message = check_regex(condition.value)
                    if message:
                        errors.append(ValidationError(
                            type="invalid_expression",
                            message=message,
                            severity="error",
                            node_id=node.id,
                        ))

    def _validate_end_nodes(self, definition: WorkflowDefinition, warnings: List[ValidationWarning]):
        for node in definition.nodes:
            if node.type == NodeType.END and definition.outgoing_edges(node.id):
                warnings.append(ValidationWarning(
                    node_id=node.id,
                    type="best_practice",
                    message=f'End node "{node.display_name}" has outgoing edges that are never followed',
                    suggestion="Remove the outgoing edges or change the node type",
                ))
