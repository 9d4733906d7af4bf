"""Built-in node processors and the processor registry."""

from flowgraph.graph.processors.base import NodeProcessor
from flowgraph.graph.processors.condition import ConditionNodeProcessor
from flowgraph.graph.processors.io import InputNodeProcessor, OutputNodeProcessor
from flowgraph.graph.processors.logic import LogicNodeProcessor
from flowgraph.graph.processors.registry import ProcessorRegistry

__all__ = [
    "NodeProcessor",
    "ProcessorRegistry",
    "LogicNodeProcessor",
    "ConditionNodeProcessor",
    "InputNodeProcessor",
    "OutputNodeProcessor",
]
