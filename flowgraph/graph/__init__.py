"""Workflow graph: documents, the engine, node processors and skip propagation."""

from flowgraph.graph.context import (
    ExecutionContext,
    ExecutionResult,
    LoopIterationContext,
    NodeOutput,
    NodeStatus,
    TokenUsage,
)
from flowgraph.graph.decisions import (
    ConditionDecision,
    LogicDecision,
    LoopComplete,
    LoopContinue,
    MergeResult,
    SplitDecision,
    SwitchDecision,
    UnknownModeResult,
)
from flowgraph.graph.engine import WorkflowEngine
from flowgraph.graph.errors import (
    ErrorAnalysis,
    ExecutionOrderError,
    NodeExecutionError,
    WorkflowError,
    WorkflowValidationError,
    analyze_error,
)
from flowgraph.graph.order import get_execution_order
from flowgraph.graph.processors import (
    ConditionNodeProcessor,
    InputNodeProcessor,
    LogicNodeProcessor,
    NodeProcessor,
    OutputNodeProcessor,
    ProcessorRegistry,
)
from flowgraph.graph.routing import SkipPropagation, SkipReason
from flowgraph.graph.workflow import (
    EdgeConfig,
    LogicMode,
    LoopType,
    NodeConfig,
    NodeType,
    WorkflowConfig,
    WorkflowSettings,
)

__all__ = [
    # Documents
    "WorkflowConfig",
    "WorkflowSettings",
    "NodeConfig",
    "EdgeConfig",
    "NodeType",
    "LogicMode",
    "LoopType",
    # Runtime state
    "ExecutionContext",
    "ExecutionResult",
    "LoopIterationContext",
    "NodeOutput",
    "NodeStatus",
    "TokenUsage",
    # LOGIC decisions
    "LogicDecision",
    "ConditionDecision",
    "SwitchDecision",
    "SplitDecision",
    "MergeResult",
    "LoopContinue",
    "LoopComplete",
    "UnknownModeResult",
    # Execution
    "WorkflowEngine",
    "get_execution_order",
    "SkipPropagation",
    "SkipReason",
    # Processors
    "NodeProcessor",
    "ProcessorRegistry",
    "LogicNodeProcessor",
    "ConditionNodeProcessor",
    "InputNodeProcessor",
    "OutputNodeProcessor",
    # Errors
    "WorkflowError",
    "WorkflowValidationError",
    "ExecutionOrderError",
    "NodeExecutionError",
    "ErrorAnalysis",
    "analyze_error",
]
