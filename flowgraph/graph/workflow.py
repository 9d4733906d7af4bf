"""
Workflow documents - the nodes and edges an engine run executes.

A workflow is an ordered list of typed nodes plus the edges between them.
Documents use camelCase keys on the wire (``targetNodeId``,
``loopBodyNodeIds``); the models accept either spelling.

Node configuration is polymorphic per node type. ``NodeConfig.config`` keeps
the raw mapping and the typed accessors (``logic_config``,
``condition_config``, ``input_fields``) parse the shape each node type uses:

    WorkflowConfig(
        nodes=[
            NodeConfig(id="in", type="INPUT", name="Input",
                       config={"fields": [{"id": "f1", "name": "platform", "value": ""}]}),
            NodeConfig(id="route", type="LOGIC", name="Route",
                       config={"mode": "condition", "conditions": [...]}),
        ],
        edges=[EdgeConfig(id="e1", source="in", target="route")],
    )
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from flowgraph.config import ERROR_STRATEGIES


class NodeType(StrEnum):
    """Known node types. Unknown type strings are tolerated."""

    INPUT = "INPUT"
    PROCESS = "PROCESS"
    CODE = "CODE"
    OUTPUT = "OUTPUT"
    LOGIC = "LOGIC"
    CONDITION = "CONDITION"
    GROUP = "GROUP"
    NOTIFICATION = "NOTIFICATION"
    DATA = "DATA"
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    AUDIO = "AUDIO"
    HTTP = "HTTP"


class LogicMode(StrEnum):
    CONDITION = "condition"
    SPLIT = "split"
    MERGE = "merge"
    SWITCH = "switch"
    LOOP = "loop"


class LoopType(StrEnum):
    FOR_EACH = "forEach"
    TIMES = "times"
    WHILE = "while"


class WorkflowModel(BaseModel):
    """Base for workflow document models: camelCase aliases, unknown keys kept."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


# ---------------------------------------------------------------------------
# LOGIC node configuration
# ---------------------------------------------------------------------------


class LogicCondition(WorkflowModel):
    id: str = ""
    label: str | None = None
    expression: str = ""
    target_node_id: str | None = None


class LogicBranch(WorkflowModel):
    id: str = ""
    label: str = ""
    target_node_id: str | None = None


class LoopConfig(WorkflowModel):
    """Iteration settings of a LOGIC node in loop mode."""

    loop_type: str = Field(default=LoopType.FOR_EACH, description="forEach, times or while")
    iterable_source: str | None = Field(
        default=None, description="Variable path of the array a forEach loop walks"
    )
    loop_count: int | str | None = None
    loop_count_source: str | None = Field(
        default=None, description="Variable path resolving to the iteration count of a times loop"
    )
    while_condition: str | None = None
    loop_body_node_ids: list[str] = Field(default_factory=list)
    loop_namespace: str = "loop"
    max_iterations: int | None = Field(
        default=None, description="Iteration cap; the engine default (100) applies when unset"
    )
    collect_results: bool = True


class LogicNodeConfigData(WorkflowModel):
    """Configuration of a LOGIC node. Which fields matter depends on ``mode``."""

    mode: str = LogicMode.CONDITION

    # condition
    conditions: list[LogicCondition] = Field(default_factory=list)
    fallback_target_node_id: str | None = None

    # split / switch
    branches: list[LogicBranch] = Field(default_factory=list)
    switch_input: str | None = None

    # merge
    merge_from_node_ids: list[str] | None = None
    merge_strategy: str = "all"

    # loop
    loop_config: LoopConfig | None = None


# ---------------------------------------------------------------------------
# CONDITION / INPUT node configuration
# ---------------------------------------------------------------------------


class ConditionRule(WorkflowModel):
    """One ``{variable, operator, value}`` comparison of a CONDITION node."""

    variable: str = ""
    operator: str = "equals"
    value: Any = None


class ConditionNodeConfigData(WorkflowModel):
    conditions: list[ConditionRule] = Field(default_factory=list)
    evaluation_mode: str = Field(default="all", description="all or any")


class InputField(WorkflowModel):
    id: str = ""
    name: str
    value: Any = None


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


class NodeConfig(WorkflowModel):
    id: str
    type: str
    name: str = ""
    config: dict[str, Any] = Field(default_factory=dict)

    def logic_config(self) -> LogicNodeConfigData:
        return LogicNodeConfigData.model_validate(self.config)

    def condition_config(self) -> ConditionNodeConfigData:
        return ConditionNodeConfigData.model_validate(self.config)

    def input_fields(self) -> list[InputField]:
        return [InputField.model_validate(f) for f in self.config.get("fields") or []]


class EdgeConfig(WorkflowModel):
    id: str = ""
    source: str = Field(description="Source node ID")
    target: str = Field(description="Target node ID")
    source_handle: str | None = Field(
        default=None, description="Output port label on the source ('true' / 'false' ...)"
    )
    target_handle: str | None = None


class WorkflowSettings(WorkflowModel):
    error_strategy: str | None = Field(
        default=None, description="fail_fast, continue or collect; engine config when unset"
    )
    max_loop_iterations: int | None = None


class WorkflowConfig(WorkflowModel):
    """
    Complete workflow document.

    Immutable for the duration of a run: the engine works on copies when it
    needs to apply the caller's input.
    """

    id: str = ""
    name: str = ""
    version: int | str = 1

    nodes: list[NodeConfig] = Field(default_factory=list, description="Nodes in declaration order")
    edges: list[EdgeConfig] = Field(default_factory=list)

    global_variables: dict[str, Any] = Field(default_factory=dict)
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)

    def get_node(self, node_id: str) -> NodeConfig | None:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_outgoing_edges(self, node_id: str) -> list[EdgeConfig]:
        """Get all edges leaving a node, in declaration order."""
        return [e for e in self.edges if e.source == node_id]

    def get_incoming_edges(self, node_id: str) -> list[EdgeConfig]:
        """Get all edges entering a node, in declaration order."""
        return [e for e in self.edges if e.target == node_id]

    def validate(self) -> list[str]:
        """Validate the workflow structure. Returns a list of error messages."""
        errors = []

        strategy = self.settings.error_strategy
        if strategy is not None and strategy not in ERROR_STRATEGIES:
            errors.append(f"Unknown error strategy: '{strategy}'")
        max_iterations = self.settings.max_loop_iterations
        if max_iterations is not None and max_iterations <= 0:
            errors.append("maxLoopIterations must be positive")

        seen_ids: set[str] = set()
        for node in self.nodes:
            if node.id in seen_ids:
                errors.append(f"Duplicate node ID: '{node.id}'")
            seen_ids.add(node.id)

        for edge in self.edges:
            if edge.source not in seen_ids:
                errors.append(f"Edge '{edge.id}' references missing source '{edge.source}'")
            if edge.target not in seen_ids:
                errors.append(f"Edge '{edge.id}' references missing target '{edge.target}'")
            if edge.source == edge.target:
                errors.append(f"Edge '{edge.id}' connects node '{edge.source}' to itself")

        for node in self.nodes:
            if node.type != NodeType.LOGIC:
                continue
            try:
                logic = node.logic_config()
            except ValidationError as e:
                errors.append(f"Logic node '{node.id}' has invalid configuration: {e}")
                continue
            if logic.loop_config is None:
                continue
            for body_id in logic.loop_config.loop_body_node_ids:
                if body_id not in seen_ids:
                    errors.append(f"Loop node '{node.id}' references missing body node '{body_id}'")
                elif body_id == node.id:
                    errors.append(f"Loop node '{node.id}' lists itself as a body node")

        return errors
