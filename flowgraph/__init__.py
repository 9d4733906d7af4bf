"""
flowgraph - execute node-and-edge workflow documents.

A workflow is a list of typed nodes and the edges between them. The engine
runs them one at a time in dependency order; LOGIC nodes route, merge and
loop, and branches that are not taken are skipped.

    from flowgraph import WorkflowConfig, WorkflowEngine

    workflow = WorkflowConfig.model_validate(document)
    result = await WorkflowEngine(workflow).execute({"platform": "twitter"})
"""

from flowgraph.config import EngineConfig
from flowgraph.graph import (
    ExecutionContext,
    ExecutionResult,
    NodeOutput,
    NodeProcessor,
    ProcessorRegistry,
    WorkflowConfig,
    WorkflowEngine,
)
from flowgraph.runtime import EventBus, FileExecutionStore, InMemoryExecutionStore

__version__ = "0.1.0"

__all__ = [
    "EngineConfig",
    "ExecutionContext",
    "ExecutionResult",
    "NodeOutput",
    "NodeProcessor",
    "ProcessorRegistry",
    "WorkflowConfig",
    "WorkflowEngine",
    "EventBus",
    "FileExecutionStore",
    "InMemoryExecutionStore",
]
