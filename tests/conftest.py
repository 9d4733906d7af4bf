"""Shared fixtures: context and output factories, fake processors, workflow builders."""

from datetime import UTC, datetime
from typing import Any

import pytest

from flowgraph.graph.context import ExecutionContext, NodeOutput, NodeStatus, TokenUsage
from flowgraph.graph.processors.base import NodeProcessor
from flowgraph.graph.workflow import EdgeConfig, NodeConfig, WorkflowConfig
from flowgraph.observability import clear_trace_context


@pytest.fixture(autouse=True)
def _clean_trace_context():
    clear_trace_context()
    yield
    clear_trace_context()


# ---- Fake processors ----
class StaticProcessor(NodeProcessor):
    """Returns fixed data per node id (``{"value": node.id}`` by default)."""

    def __init__(
        self,
        node_type: str = "PROCESS",
        data: dict[str, Any] | None = None,
        tokens: int = 0,
    ):
        self.node_type = node_type
        self.data = data or {}
        self.tokens = tokens
        self.calls: list[str] = []

    async def process(self, node: NodeConfig, context: ExecutionContext) -> NodeOutput:
        self.calls.append(node.id)
        usage = None
        if self.tokens:
            usage = TokenUsage(
                prompt_tokens=self.tokens,
                completion_tokens=self.tokens,
                total_tokens=2 * self.tokens,
            )
        return self.build_output(
            node,
            datetime.now(UTC),
            data=self.data.get(node.id, {"value": node.id}),
            token_usage=usage,
        )


class FailingProcessor(NodeProcessor):
    """Reports ``status=error`` for the configured node ids, succeeds otherwise."""

    def __init__(self, node_type: str = "PROCESS", fail_ids: set[str] | None = None):
        self.node_type = node_type
        self.fail_ids = fail_ids
        self.calls: list[str] = []

    async def process(self, node: NodeConfig, context: ExecutionContext) -> NodeOutput:
        self.calls.append(node.id)
        if self.fail_ids is None or node.id in self.fail_ids:
            return self.build_output(
                node, datetime.now(UTC), status=NodeStatus.ERROR, error="boom"
            )
        return self.build_output(node, datetime.now(UTC), data={"value": node.id})


class RaisingProcessor(NodeProcessor):
    node_type = "CODE"

    async def process(self, node: NodeConfig, context: ExecutionContext) -> NodeOutput:
        raise RuntimeError("ReferenceError: x is not defined")


class LoopItemProcessor(NodeProcessor):
    """Echoes the current ``loop`` namespace item, doubled when it is a number."""

    node_type = "PROCESS"

    def __init__(self, namespace: str = "loop"):
        self.namespace = namespace
        self.calls: list[Any] = []

    async def process(self, node: NodeConfig, context: ExecutionContext) -> NodeOutput:
        item = context.global_variables[self.namespace]["item"]
        self.calls.append(item)
        value = item * 2 if isinstance(item, int) else item
        return self.build_output(node, datetime.now(UTC), data={"value": value})


@pytest.fixture
def context() -> ExecutionContext:
    return ExecutionContext(execution_id="exec_test", workflow_id="wf_test")


@pytest.fixture
def record_output():
    """Factory: write a NodeOutput into a context."""

    def _record(
        context: ExecutionContext,
        node_id: str,
        data: Any = None,
        name: str | None = None,
        node_type: str = "PROCESS",
        status: NodeStatus = NodeStatus.SUCCESS,
        error: str | None = None,
    ) -> NodeOutput:
        output = NodeOutput(
            node_id=node_id,
            node_name=name if name is not None else node_id,
            node_type=node_type,
            status=status,
            data=data,
            error=error,
        )
        context.record(output)
        return output

    return _record


@pytest.fixture
def build_workflow():
    """Factory: ``build_workflow(nodes, edges)`` with edges as (source, target[, handle])."""

    def _build(
        nodes: list[dict[str, Any] | NodeConfig],
        edges: list[tuple] = (),
        **kwargs: Any,
    ) -> WorkflowConfig:
        node_models = [
            node if isinstance(node, NodeConfig) else NodeConfig.model_validate(node)
            for node in nodes
        ]
        edge_models = []
        for index, edge in enumerate(edges):
            source, target = edge[0], edge[1]
            handle = edge[2] if len(edge) > 2 else None
            edge_models.append(
                EdgeConfig(id=f"e{index}", source=source, target=target, source_handle=handle)
            )
        return WorkflowConfig(
            id=kwargs.pop("id", "wf_test"),
            name=kwargs.pop("name", "Test workflow"),
            nodes=node_models,
            edges=edge_models,
            **kwargs,
        )

    return _build


def process_node(node_id: str, name: str | None = None) -> dict[str, Any]:
    return {"id": node_id, "type": "PROCESS", "name": name or node_id, "config": {}}
