"""INPUT and OUTPUT node processors."""

import json
from datetime import UTC, datetime
from typing import Any

from flowgraph.graph.context import ExecutionContext, NodeOutput, NodeStatus
from flowgraph.graph.expression import render_template, to_js_string
from flowgraph.graph.processors.base import NodeProcessor
from flowgraph.graph.workflow import NodeConfig


class InputNodeProcessor(NodeProcessor):
    """Publishes the node's fields as ``{name: value}``.

    The engine has already merged the caller's initial input into the field
    values by the time this runs.
    """

    node_type = "INPUT"

    async def process(self, node: NodeConfig, context: ExecutionContext) -> NodeOutput:
        started_at = datetime.now(UTC)
        data = {field.name: field.value for field in node.input_fields()}
        return self.build_output(node, started_at, data=data)


class OutputNodeProcessor(NodeProcessor):
    """
    Renders the run's final output.

    With a ``prompt`` template the content is the rendered template.
    Without one, the outputs of every successful node so far are formatted
    as ``text`` (default), ``markdown`` or ``json``.
    """

    node_type = "OUTPUT"

    async def process(self, node: NodeConfig, context: ExecutionContext) -> NodeOutput:
        started_at = datetime.now(UTC)
        output_format = node.config.get("format") or "text"
        prompt = node.config.get("prompt") or ""

        if prompt.strip():
            content = render_template(prompt, context)
        else:
            all_outputs = {
                output.node_name or output.node_id: output.data
                for output in context.node_outputs.values()
                if output.status == NodeStatus.SUCCESS
            }
            content = format_outputs(all_outputs, output_format)

        data = {"content": content, "format": output_format}
        return self.build_output(node, started_at, data=data)


def format_outputs(data: dict[str, Any], output_format: str) -> str:
    if output_format == "text":
        return _to_text(data)
    if output_format == "markdown":
        return _to_markdown(data)
    return json.dumps(data, ensure_ascii=False, indent=2, default=str)


def _to_text(obj: dict[str, Any], indent: str = "") -> str:
    result = ""
    for key, value in obj.items():
        if isinstance(value, dict):
            result += f"{indent}{key}:\n"
            result += _to_text(value, indent + "  ")
        elif isinstance(value, list):
            result += f"{indent}{key}:\n"
            result += _to_text({str(i): v for i, v in enumerate(value)}, indent + "  ")
        else:
            result += f"{indent}{key}: {to_js_string(value)}\n"
    return result


def _to_markdown(obj: dict[str, Any], level: int = 1) -> str:
    result = ""
    heading = "#" * min(level, 6)
    for key, value in obj.items():
        if isinstance(value, dict):
            result += f"{heading} {key}\n\n"
            result += _to_markdown(value, level + 1)
        elif isinstance(value, list):
            result += f"{heading} {key}\n\n"
            for item in value:
                item_json = json.dumps(item, ensure_ascii=False, separators=(",", ":"), default=str)
                result += f"- {item_json}\n"
            result += "\n"
        else:
            result += f"**{key}**: {to_js_string(value)}\n\n"
    return result
