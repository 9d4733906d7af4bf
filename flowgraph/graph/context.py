"""Runtime state of one workflow run."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from flowgraph.graph.decisions import LogicDecision
from flowgraph.runtime.execution_schemas import ExecutionStatus


class NodeStatus(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class NodeOutput:
    """The recorded result of running one node once."""

    node_id: str
    node_name: str
    node_type: str
    status: NodeStatus = NodeStatus.SUCCESS
    data: Any = None
    error: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    duration_ms: int = 0
    token_usage: TokenUsage | None = None

    # Typed LOGIC result; ``data`` is derived from it
    logic: LogicDecision | None = None
    stacktrace: str | None = None

    @property
    def success(self) -> bool:
        return self.status == NodeStatus.SUCCESS


@dataclass
class LoopIterationContext:
    """State of one active loop. Lives in ``ExecutionContext.active_loops`` while
    the loop is mid-iteration and is removed when it completes."""

    loop_node_id: str
    loop_namespace: str
    current_index: int = 0
    iterable_array: list[Any] | None = None
    current_item: Any = None
    total_iterations: int | float | None = None
    is_first: bool = True
    is_last: bool = False
    accumulated_results: list[dict[str, Any]] = field(default_factory=list)
    loop_start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    nesting_level: int = 0


@dataclass
class ExecutionContext:
    """
    Shared mutable state for one workflow run.

    Passed by reference into every processor call. Not synchronised: the
    engine dispatches exactly one node at a time.
    """

    execution_id: str
    workflow_id: str = ""
    node_outputs: dict[str, NodeOutput] = field(default_factory=dict)
    global_variables: dict[str, Any] = field(default_factory=dict)
    loop_variables: dict[str, dict[str, Any]] = field(default_factory=dict)
    active_loops: dict[str, LoopIterationContext] = field(default_factory=dict)
    max_loop_iterations: int | None = None  # Per-run cap; a loop's own maxIterations wins

    def record(self, output: NodeOutput) -> None:
        """Write a node's latest output. Re-executions in a loop overwrite."""
        self.node_outputs[output.node_id] = output


@dataclass
class ExecutionResult:
    """Result of executing a workflow."""

    execution_id: str
    status: ExecutionStatus
    output: Any = None
    error: str | None = None
    failed_node_id: str | None = None
    duration_ms: int = 0
    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    path: list[str] = field(default_factory=list)  # Dispatched node IDs in order
    skipped_node_ids: list[str] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)  # Non-fatal node failures

    @property
    def success(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED
