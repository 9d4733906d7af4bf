"""
Skip propagation - which nodes must not run given the outputs so far.

Two strategies decide which edges are *not taken*, selected by the shape of
the source node's output:

- Output-driven routing: a LOGIC node whose output is a routing decision
  (condition or switch mode) takes only the edges leading to its
  ``matchedTargetNodeId``. A decision that names no target (no match and no
  fallback) prunes nothing. Split, merge and loop outputs take every edge.
- Branch ports: a CONDITION node with a boolean ``result`` does not take the
  edges leaving its losing port (``sourceHandle`` ``"false"`` when the result
  is true, ``"true"`` otherwise).

Failed nodes take none of their edges. Skips then spread forward under the
join-safety rule: a node is skipped only when *every* inbound edge is dead
(not taken, from a failed node, or from a skipped node). A single surviving
inbound path spares it, and a matched routing target is never skipped by a
branch decision. Merge-capable nodes ignore deaths caused by failures so they
can run with whatever partial input survived.

The skip set is a pure function of the workflow and the recorded outputs.
Nodes and edges are walked in declaration order, so identical inputs give
identical results.
"""

from collections.abc import Callable, Mapping
from enum import StrEnum

from flowgraph.graph.context import NodeOutput, NodeStatus
from flowgraph.graph.decisions import RoutingDecision
from flowgraph.graph.order import get_execution_order
from flowgraph.graph.workflow import EdgeConfig, LogicMode, NodeConfig, NodeType, WorkflowConfig

IndexedEdge = tuple[int, EdgeConfig]
EdgeStrategy = Callable[[NodeOutput, list[IndexedEdge]], set[int]]


class SkipReason(StrEnum):
    BRANCH_NOT_TAKEN = "branch_not_taken"
    UPSTREAM_FAILED = "upstream_failed"


def is_merge_node(node: NodeConfig) -> bool:
    """Default merge-capable predicate: LOGIC nodes in merge mode."""
    return node.type == NodeType.LOGIC and node.config.get("mode") == LogicMode.MERGE


def routing_untaken_edges(output: NodeOutput, outgoing: list[IndexedEdge]) -> set[int]:
    """Edges of a routing decision that do not lead to the matched target."""
    decision = output.logic
    if not isinstance(decision, RoutingDecision):
        return set()
    target = decision.matched_target_node_id
    if target is None:
        return set()
    return {index for index, edge in outgoing if edge.target != target}


def port_untaken_edges(output: NodeOutput, outgoing: list[IndexedEdge]) -> set[int]:
    """Edges leaving the losing port of a boolean CONDITION result."""
    result = output.data.get("result") if isinstance(output.data, dict) else None
    if not isinstance(result, bool):
        return set()
    losing_port = "false" if result else "true"
    return {index for index, edge in outgoing if edge.source_handle == losing_port}


def select_strategy(output: NodeOutput) -> EdgeStrategy | None:
    """Pick the edge strategy that matches the output's shape."""
    if isinstance(output.logic, RoutingDecision):
        return routing_untaken_edges
    if output.node_type == NodeType.CONDITION:
        return port_untaken_edges
    return None


class SkipPropagation:
    """
    Computes the skip set of a workflow against recorded outputs.

    Example:
        propagation = SkipPropagation(workflow)
        skipped = propagation.compute(context.node_outputs)
        if node.id in skipped:
            ...  # do not dispatch; skipped[node.id] says why
    """

    def __init__(
        self,
        workflow: WorkflowConfig,
        order: list[NodeConfig] | None = None,
        is_merge_capable: Callable[[NodeConfig], bool] | None = None,
    ):
        self.workflow = workflow
        self.order = order if order is not None else get_execution_order(
            workflow.nodes, workflow.edges
        )
        predicate = is_merge_capable or is_merge_node
        self._merge_capable = {node.id for node in workflow.nodes if predicate(node)}

        self._outgoing: dict[str, list[IndexedEdge]] = {}
        self._incoming: dict[str, list[IndexedEdge]] = {}
        for index, edge in enumerate(workflow.edges):
            self._outgoing.setdefault(edge.source, []).append((index, edge))
            self._incoming.setdefault(edge.target, []).append((index, edge))

    def compute(self, node_outputs: Mapping[str, NodeOutput]) -> dict[str, SkipReason]:
        """Return ``{node_id: reason}`` for every node that must not run."""
        untaken: set[int] = set()
        protected: set[str] = set()
        failed: set[str] = set()

        for node_id, output in node_outputs.items():
            if output.status == NodeStatus.ERROR:
                failed.add(node_id)
                continue
            if output.status != NodeStatus.SUCCESS:
                continue
            strategy = select_strategy(output)
            if strategy is None:
                continue
            untaken |= strategy(output, self._outgoing.get(node_id, []))
            if isinstance(output.logic, RoutingDecision):
                if output.logic.matched_target_node_id:
                    protected.add(output.logic.matched_target_node_id)

        skipped: dict[str, SkipReason] = {}
        if not untaken and not failed:
            return skipped

        for node in self.order:
            reason = self._dead_reason(node.id, untaken, failed, skipped)
            if reason is None:
                continue
            if reason == SkipReason.BRANCH_NOT_TAKEN and node.id in protected:
                continue
            skipped[node.id] = reason

        return skipped

    def _dead_reason(
        self,
        node_id: str,
        untaken: set[int],
        failed: set[str],
        skipped: dict[str, SkipReason],
    ) -> SkipReason | None:
        """Why every inbound edge of the node is dead, or None if one survives."""
        inbound = self._incoming.get(node_id)
        if not inbound:
            return None

        merge_capable = node_id in self._merge_capable
        saw_failure = False
        for index, edge in inbound:
            if index in untaken:
                continue
            if edge.source in failed:
                state = SkipReason.UPSTREAM_FAILED
            else:
                state = skipped.get(edge.source)
            if state is None:
                return None
            if state == SkipReason.UPSTREAM_FAILED:
                if merge_capable:
                    return None
                saw_failure = True

        return SkipReason.UPSTREAM_FAILED if saw_failure else SkipReason.BRANCH_NOT_TAKEN
