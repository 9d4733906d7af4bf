"""
Execution order resolution.

The engine runs nodes one at a time in a single linear order in which every
edge's source comes before its target. Independent nodes keep their
declaration order: Kahn's algorithm with a FIFO queue seeded in declaration
order.

A GROUP node runs after the last of its ``childNodeIds``.
"""

from collections import deque
from collections.abc import Callable

from flowgraph.graph.errors import ExecutionOrderError
from flowgraph.graph.workflow import EdgeConfig, NodeConfig, NodeType

OrderResolver = Callable[[list[NodeConfig], list[EdgeConfig]], list[NodeConfig]]


def get_execution_order(nodes: list[NodeConfig], edges: list[EdgeConfig]) -> list[NodeConfig]:
    """
    Topologically sort the nodes.

    Edges referencing unknown node ids are ignored.

    Raises:
        ExecutionOrderError: If the graph contains a cycle
    """
    node_ids = {node.id for node in nodes}
    successors: dict[str, list[str]] = {node.id: [] for node in nodes}
    in_degree: dict[str, int] = {node.id: 0 for node in nodes}

    for edge in edges:
        if edge.source not in node_ids or edge.target not in node_ids:
            continue
        successors[edge.source].append(edge.target)
        in_degree[edge.target] += 1

    for node in nodes:
        if node.type != NodeType.GROUP:
            continue
        child_ids = node.config.get("childNodeIds") or []
        if not child_ids:
            continue
        last_child = child_ids[-1]
        if last_child in node_ids and node.id not in successors[last_child]:
            successors[last_child].append(node.id)
            in_degree[node.id] += 1

    by_id = {node.id: node for node in nodes}
    queue = deque(node.id for node in nodes if in_degree[node.id] == 0)
    ordered: list[NodeConfig] = []
    seen: set[str] = set()

    while queue:
        node_id = queue.popleft()
        if node_id in seen:
            continue
        seen.add(node_id)
        ordered.append(by_id[node_id])
        for successor in successors[node_id]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                queue.append(successor)

    if len(ordered) != len(by_id):
        remaining = [node.id for node in nodes if node.id not in seen]
        raise ExecutionOrderError(f"工作流中存在循环依赖: {', '.join(remaining)}")

    return ordered
