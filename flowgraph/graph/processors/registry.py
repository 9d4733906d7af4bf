"""Node type -> processor lookup."""

import logging

from flowgraph.graph.processors.base import NodeProcessor

logger = logging.getLogger(__name__)


class ProcessorRegistry:
    """
    Maps node types to processors.

    Node types without a processor are skipped by the engine, so a registry
    only needs the types a deployment actually runs.

    Example:
        registry = ProcessorRegistry.with_builtins()
        registry.register(MyHttpProcessor())   # node_type = "HTTP"
    """

    def __init__(self, processors: list[NodeProcessor] | None = None):
        self._processors: dict[str, NodeProcessor] = {}
        for processor in processors or []:
            self.register(processor)

    @classmethod
    def with_builtins(cls, max_loop_iterations: int | None = None) -> "ProcessorRegistry":
        """Registry holding the LOGIC, CONDITION, INPUT and OUTPUT processors."""
        from flowgraph.graph.processors.condition import ConditionNodeProcessor
        from flowgraph.graph.processors.io import InputNodeProcessor, OutputNodeProcessor
        from flowgraph.graph.processors.logic import LogicNodeProcessor

        return cls(
            [
                LogicNodeProcessor(default_max_iterations=max_loop_iterations),
                ConditionNodeProcessor(),
                InputNodeProcessor(),
                OutputNodeProcessor(),
            ]
        )

    def register(self, processor: NodeProcessor, node_type: str | None = None) -> None:
        """Register a processor for its ``node_type`` (or an explicit type)."""
        key = node_type or processor.node_type
        if not key:
            raise ValueError(f"{type(processor).__name__} does not declare a node_type")
        if key in self._processors:
            logger.debug(f"Replacing processor for node type {key}")
        self._processors[key] = processor

    def unregister(self, node_type: str) -> bool:
        return self._processors.pop(node_type, None) is not None

    def get(self, node_type: str) -> NodeProcessor | None:
        return self._processors.get(node_type)

    def __contains__(self, node_type: str) -> bool:
        return node_type in self._processors

    @property
    def node_types(self) -> list[str]:
        return list(self._processors)
