"""
Typed results of LOGIC nodes.

Every LOGIC dispatch produces one of the models below. The engine stores it
on ``NodeOutput.logic`` and derives ``NodeOutput.data`` from it, so the
camelCase payload downstream nodes read and the variant skip propagation
matches on always agree.

    ConditionDecision / SwitchDecision  -> route to matchedTargetNodeId
    SplitDecision                       -> every branch stays active
    MergeResult                         -> fan-in report, never prunes
    LoopContinue / LoopComplete         -> loop state machine transitions
"""

from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from flowgraph.graph.workflow import LogicBranch, LogicCondition


class LogicDecision(BaseModel):
    """Base for LOGIC results. Keys listed in ``omit_when_none`` are dropped from
    the payload when unset."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    omit_when_none: ClassVar[tuple[str, ...]] = ()

    mode: str

    def to_data(self) -> dict[str, Any]:
        data = self.model_dump(by_alias=True)
        for key in self.omit_when_none:
            if data.get(key) is None:
                data.pop(key, None)
        return data


class ConditionDecision(LogicDecision):
    omit_when_none: ClassVar[tuple[str, ...]] = ("fallbackTargetNodeId", "evaluatedExpression")

    mode: Literal["condition"] = "condition"
    conditions: list[LogicCondition] = Field(default_factory=list)
    fallback_target_node_id: str | None = None
    matched: bool = False
    matched_condition_id: str | None = None
    matched_target_node_id: str | None = None
    evaluated_expression: str | None = None


class SwitchDecision(LogicDecision):
    omit_when_none: ClassVar[tuple[str, ...]] = ("fallbackTargetNodeId",)

    mode: Literal["switch"] = "switch"
    switch_input: str | None = None
    input_value: Any = None
    matched: bool = False
    matched_branch_id: str | None = None
    matched_target_node_id: str | None = None
    fallback_target_node_id: str | None = None


class SplitDecision(LogicDecision):
    mode: Literal["split"] = "split"
    branches: list[LogicBranch] = Field(default_factory=list)
    active_branch_ids: list[str] = Field(default_factory=list)


class MergeValidation(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_complete: bool
    total_expected: int
    completed_count: int
    missing_count: int
    failed_count: int
    completed_node_ids: list[str] = Field(default_factory=list)
    missing_node_ids: list[str] = Field(default_factory=list)
    failed_node_ids: list[str] = Field(default_factory=list)


class MergeResult(LogicDecision):
    omit_when_none: ClassVar[tuple[str, ...]] = ("mergeFromNodeIds", "warnings")

    mode: Literal["merge"] = "merge"
    merge_from_node_ids: list[str] | None = None
    merged: dict[str, Any] = Field(default_factory=dict)
    merge_strategy: str = "all"
    validation: MergeValidation
    warnings: list[str] | None = None
    is_complete: bool


class LoopContinue(LogicDecision):
    mode: Literal["loop"] = "loop"
    status: Literal["continue"] = "continue"
    loop_type: str
    current_index: int
    current_item: Any = None
    total_iterations: int | float | None = None
    is_first: bool
    is_last: bool
    loop_body_node_ids: list[str] = Field(default_factory=list)
    should_execute_body: Literal[True] = True
    iteration_count: int
    loop_namespace: str


class LoopComplete(LogicDecision):
    omit_when_none: ClassVar[tuple[str, ...]] = (
        "reason",
        "completedIterations",
        "results",
        "totalDuration",
        "error",
    )

    mode: Literal["loop"] = "loop"
    status: Literal["complete"] = "complete"
    reason: Literal["condition_false", "max_iterations_reached"] | None = None
    completed_iterations: int | None = None
    results: list[dict[str, Any]] | None = None
    total_duration: int | None = Field(default=None, description="Milliseconds since loop start")
    should_execute_body: Literal[False] = False
    error: str | None = None


class UnknownModeResult(LogicDecision):
    warning: str


RoutingDecision = ConditionDecision | SwitchDecision
