"""Runtime services around the engine: persistence and lifecycle events."""

from flowgraph.runtime.event_bus import EventBus, EventType, ExecutionEvent
from flowgraph.runtime.execution_schemas import ExecutionRecord, ExecutionStatus, NodeLogEntry
from flowgraph.runtime.execution_store import (
    ExecutionStore,
    FileExecutionStore,
    InMemoryExecutionStore,
)

__all__ = [
    "EventBus",
    "EventType",
    "ExecutionEvent",
    "ExecutionRecord",
    "ExecutionStatus",
    "NodeLogEntry",
    "ExecutionStore",
    "FileExecutionStore",
    "InMemoryExecutionStore",
]
