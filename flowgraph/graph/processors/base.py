"""
Node processors - the per-type workers the engine dispatches to.

A processor receives the node and the shared ``ExecutionContext`` and
returns a ``NodeOutput``. Failures are reported through
``status=error`` rather than raised; an exception escaping ``process`` is
converted into an error output by the engine.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any

from flowgraph.graph.context import ExecutionContext, NodeOutput, NodeStatus, TokenUsage
from flowgraph.graph.workflow import NodeConfig


class NodeProcessor(ABC):
    """Base class for node processors."""

    node_type: str = ""

    @abstractmethod
    async def process(self, node: NodeConfig, context: ExecutionContext) -> NodeOutput:
        """Run the node against the context and report the result."""

    def build_output(
        self,
        node: NodeConfig,
        started_at: datetime,
        data: Any = None,
        status: NodeStatus = NodeStatus.SUCCESS,
        error: str | None = None,
        token_usage: TokenUsage | None = None,
    ) -> NodeOutput:
        """Stamp completion time and duration onto a result."""
        completed_at = datetime.now(UTC)
        return NodeOutput(
            node_id=node.id,
            node_name=node.name,
            node_type=node.type,
            status=status,
            data=data,
            error=error,
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=int((completed_at - started_at).total_seconds() * 1000),
            token_usage=token_usage,
        )
