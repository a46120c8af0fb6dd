"""Core Pydantic models for the workflow engine."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class FlowModel(BaseModel):
    """Base model accepting both snake_case and the editor's camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NodeType(str, Enum):
    """Enumeration of supported node types."""
    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"
    TRANSFORM = "transform"
    DELAY = "delay"
    API = "api"
    END = "end"


class ExecutionStatusEnum(str, Enum):
    """Enumeration of workflow and node execution statuses."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ErrorHandling(str, Enum):
    """What to do when a node fails."""
    STOP = "stop"
    CONTINUE = "continue"


ConditionOperator = Literal[
    "equals",
    "not_equals",
    "greater_than",
    "less_than",
    "contains",
    "regex",
    "is_empty",
    "is_not_empty",
]

LogLevelName = Literal["debug", "info", "warn", "error"]


# Node configurations

class Condition(FlowModel):
    """A single comparison evaluated by a condition node."""
    variable: str = Field(..., description="Dotted path resolved against input, then variables")
    operator: ConditionOperator = Field(..., description="Comparison operator")
    value: Any = Field(None, description="Value to compare against")
    case_sensitive: bool = Field(True, description="Whether string comparisons are case sensitive")

    @field_validator('variable')
    @classmethod
    def validate_variable(cls, variable):
        if not variable or not variable.strip():
            raise ValueError("Condition variable cannot be empty")
        return variable.strip()


class ActionConfig(FlowModel):
    type: Literal["action"] = "action"
    action_type: str = Field(..., description="Name of the registered action to dispatch")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Parameters passed to the action")
    timeout: Optional[int] = Field(None, description="Action timeout in milliseconds")

    @field_validator('timeout')
    @classmethod
    def validate_timeout(cls, timeout):
        if timeout is not None and timeout <= 0:
            raise ValueError("Timeout must be a positive integer")
        return timeout


class ConditionConfig(FlowModel):
    type: Literal["condition"] = "condition"
    conditions: List[Condition] = Field(default_factory=list)
    logical_operator: Literal["AND", "OR"] = "AND"


class TransformConfig(FlowModel):
    type: Literal["transform"] = "transform"
    transform_type: Literal["map", "filter", "reduce", "merge"] = "map"
    expression: str = Field(..., description="Restricted expression evaluated against the node input")
    output_variable: Optional[str] = Field(None, description="Also store the result under this variable name")

    @field_validator('expression')
    @classmethod
    def validate_expression(cls, expression):
        if not expression or not expression.strip():
            raise ValueError("Transform expression cannot be empty")
        return expression


class DelayConfig(FlowModel):
    type: Literal["delay"] = "delay"
    duration: float = Field(..., ge=0, description="Delay length in the given unit")
    unit: Literal["seconds", "minutes", "hours", "days"] = "seconds"


class ApiAuthentication(FlowModel):
    type: Literal["none", "basic", "bearer", "api_key"] = "none"
    credentials: Dict[str, str] = Field(default_factory=dict)


class ApiConfig(FlowModel):
    type: Literal["api"] = "api"
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "GET"
    url: str
    headers: Optional[Dict[str, str]] = None
    body: Any = None
    authentication: Optional[ApiAuthentication] = None
    timeout: Optional[int] = Field(None, description="Request timeout in milliseconds")

    @field_validator('method', mode='before')
    @classmethod
    def normalize_method(cls, method):
        return method.upper() if isinstance(method, str) else method

    @field_validator('url')
    @classmethod
    def validate_url(cls, url):
        if not url or not url.strip():
            raise ValueError("API url cannot be empty")
        return url.strip()

    @field_validator('timeout')
    @classmethod
    def validate_timeout(cls, timeout):
        if timeout is not None and timeout <= 0:
            raise ValueError("Timeout must be a positive integer")
        return timeout


NodeConfig = Annotated[
    Union[ActionConfig, ConditionConfig, TransformConfig, DelayConfig, ApiConfig],
    Field(discriminator="type"),
]

_CONFIGLESS_TYPES = {NodeType.TRIGGER.value, NodeType.END.value}


# Workflow definition

class Node(FlowModel):
    """A node of a workflow graph."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(..., description="Unique identifier for the node")
    type: NodeType = Field(..., description="Node type")
    label: str = Field("", description="Human readable label")
    config: Optional[NodeConfig] = Field(None, description="Type specific configuration")

    @model_validator(mode='before')
    @classmethod
    def normalize_editor_shape(cls, data):
        """Flatten the editor's {"data": {"label", "config"}} shape and tag the config."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        editor_data = data.pop("data", None)
        if isinstance(editor_data, dict):
            data.setdefault("label", editor_data.get("label", ""))
            if "config" in editor_data:
                data.setdefault("config", editor_data["config"])

        node_type = data.get("type")
        if isinstance(node_type, Enum):
            node_type = node_type.value
        config = data.get("config")
        if node_type in _CONFIGLESS_TYPES:
            data["config"] = None
        elif isinstance(config, dict) and "type" not in config:
            data["config"] = {**config, "type": node_type}
        return data

    @field_validator('id')
    @classmethod
    def validate_id(cls, id_value):
        if not id_value or not id_value.strip():
            raise ValueError("Node ID cannot be empty")
        return id_value.strip()

    @model_validator(mode='after')
    def validate_config_matches_type(self):
        if self.type.value in _CONFIGLESS_TYPES:
            return self
        if self.config is None:
            raise ValueError(f"Node '{self.id}' of type '{self.type.value}' requires a config")
        if self.config.type != self.type.value:
            raise ValueError(
                f"Node '{self.id}' has type '{self.type.value}' but a '{self.config.type}' config"
            )
        return self

    @property
    def display_name(self) -> str:
        return self.label or self.id


class EdgeCondition(FlowModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: Literal["success", "error", "conditional"]
    expression: Optional[str] = None


class Edge(FlowModel):
    """A directed connection between two nodes."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(..., description="Unique identifier for the edge")
    source: str = Field(..., description="Source node ID")
    target: str = Field(..., description="Target node ID")
    label: Optional[str] = Field(None, description="Branch label used by condition nodes")
    condition: Optional[EdgeCondition] = None

    @property
    def is_true_branch(self) -> bool:
        return (self.condition is not None and self.condition.type == "success") or self.label == "true"

    @property
    def is_false_branch(self) -> bool:
        return (self.condition is not None and self.condition.type == "error") or self.label == "false"


class WorkflowSettings(FlowModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    error_handling: ErrorHandling = ErrorHandling.STOP


class WorkflowDefinition(FlowModel):
    """Complete, immutable definition of a workflow graph."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(..., description="Workflow ID")
    version: int = Field(1, description="Workflow version")
    name: str = Field("", description="Workflow name")
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)

    @field_validator('nodes')
    @classmethod
    def validate_unique_node_ids(cls, nodes):
        """Ensure all node IDs are unique."""
        node_ids = [node.id for node in nodes]
        if len(node_ids) != len(set(node_ids)):
            raise ValueError("All node IDs must be unique")
        return nodes

    def trigger_nodes(self) -> List[Node]:
        return [node for node in self.nodes if node.type == NodeType.TRIGGER]

    def outgoing_edges(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.source == node_id]


# Validation

class ValidationError(FlowModel):
    type: Literal[
        "missing_connection",
        "invalid_config",
        "circular_dependency",
        "invalid_expression",
        "type_mismatch",
    ]
    message: str
    severity: Literal["error", "critical"] = "critical"
    node_id: Optional[str] = None
    edge_id: Optional[str] = None


class ValidationWarning(FlowModel):
    node_id: Optional[str] = None
    edge_id: Optional[str] = None
    type: Literal["unreachable_node", "unused_variable", "performance", "best_practice"]
    message: str
    suggestion: Optional[str] = None


class ValidationResult(FlowModel):
    """Result of workflow validation."""
    valid: bool = Field(..., description="Whether the workflow is valid")
    errors: List[ValidationError] = Field(default_factory=list)
    warnings: List[ValidationWarning] = Field(default_factory=list)


# Execution records

class ExecutionLog(FlowModel):
    """A log line recorded for one execution."""
    timestamp: datetime
    level: LogLevelName
    message: str
    data: Any = None


class ExecutionError(FlowModel):
    """Error information attached to a node or a whole run."""
    code: str
    message: str
    timestamp: datetime
    recoverable: bool = False
    node_id: Optional[str] = None
    stack: Optional[str] = None


class NodeExecution(FlowModel):
    """Trace of a single node run."""
    node_id: str
    status: ExecutionStatusEnum = ExecutionStatusEnum.RUNNING
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[float] = Field(None, description="Duration in milliseconds")
    input: Any = None
    output: Any = None
    error: Optional[ExecutionError] = None
    logs: List[ExecutionLog] = Field(default_factory=list)


class WorkflowExecution(FlowModel):
    """Full trace of one workflow run."""
    id: str
    workflow_id: str
    workflow_version: int
    status: ExecutionStatusEnum = ExecutionStatusEnum.PENDING
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[float] = Field(None, description="Duration in milliseconds")
    node_executions: List[NodeExecution] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    triggered_by: str = "system"
    error: Optional[ExecutionError] = None
