"""
CONDITION node processor.

Evaluates ``{variable, operator, value}`` comparisons and reports a boolean
``result``. Edges leaving a CONDITION node carry ``sourceHandle`` ``"true"``
or ``"false"``; the losing port's branch is pruned by skip propagation.

Variables are ``{{nodeId.data.field}}`` paths into the recorded output of a
node (looked up by id, then by name).
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any

from flowgraph.graph.context import ExecutionContext, NodeOutput, NodeStatus
from flowgraph.graph.expression import get_nested_value, strict_equals
from flowgraph.graph.processors.base import NodeProcessor
from flowgraph.graph.workflow import ConditionRule, NodeConfig

logger = logging.getLogger(__name__)


def _output_view(output: NodeOutput) -> dict[str, Any]:
    return {
        "nodeId": output.node_id,
        "nodeName": output.node_name,
        "nodeType": output.node_type,
        "status": str(output.status),
        "data": output.data,
        "error": output.error,
    }


def resolve_variable(variable: str, context: ExecutionContext) -> Any:
    """Resolve ``{{nodeId.path}}`` against the recorded node outputs."""
    clean = variable.strip()
    if clean.startswith("{{"):
        clean = clean[2:]
    if clean.endswith("}}"):
        clean = clean[:-2]
    clean = clean.strip()
    if not clean:
        return None

    head, _, path = clean.partition(".")
    output = context.node_outputs.get(head)
    if output is None:
        output = next((o for o in context.node_outputs.values() if o.node_name == head), None)
    if output is None:
        return None

    view = _output_view(output)
    return get_nested_value(view, path) if path else view


def _normalize(value: Any) -> str | int | float | bool | None:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
    return str(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def evaluate_rule(rule: ConditionRule, context: ExecutionContext) -> bool:
    left = _normalize(resolve_variable(rule.variable, context))
    right = _normalize(rule.value)
    operator = rule.operator

    if operator == "equals":
        return strict_equals(left, right)
    if operator == "notEquals":
        return not strict_equals(left, right)

    if operator in ("greaterThan", "lessThan", "greaterOrEqual", "lessOrEqual"):
        if not (_is_number(left) and _is_number(right)):
            return False
        if operator == "greaterThan":
            return left > right
        if operator == "lessThan":
            return left < right
        if operator == "greaterOrEqual":
            return left >= right
        return left <= right

    both_strings = isinstance(left, str) and isinstance(right, str)
    if operator == "contains":
        return both_strings and right in left
    if operator == "notContains":
        return not both_strings or right not in left
    if operator == "startsWith":
        return both_strings and left.startswith(right)
    if operator == "endsWith":
        return both_strings and left.endswith(right)
    if operator == "isEmpty":
        return left is None or left == ""
    if operator == "isNotEmpty":
        return left is not None and left != ""

    logger.warning(f"Unknown condition operator: {operator}")
    return False


def evaluate_rules(
    rules: list[ConditionRule], evaluation_mode: str, context: ExecutionContext
) -> bool:
    """``all`` requires every rule, ``any`` one of them. No rules is true."""
    if not rules:
        return True
    if evaluation_mode == "any":
        return any(evaluate_rule(r, context) for r in rules)
    return all(evaluate_rule(r, context) for r in rules)


class ConditionNodeProcessor(NodeProcessor):
    node_type = "CONDITION"

    async def process(self, node: NodeConfig, context: ExecutionContext) -> NodeOutput:
        started_at = datetime.now(UTC)
        config = node.condition_config()

        if not config.conditions:
            return self.build_output(
                node,
                started_at,
                data={},
                status=NodeStatus.ERROR,
                error="CONDITION node must have at least one condition",
            )

        result = evaluate_rules(config.conditions, config.evaluation_mode, context)
        return self.build_output(
            node,
            started_at,
            data={
                "result": result,
                "conditionsMet": result,
                "evaluatedConditions": [
                    {
                        "variable": rule.variable,
                        "operator": rule.operator,
                        "value": rule.value,
                        "resolved": resolve_variable(rule.variable, context),
                        "passed": evaluate_rule(rule, context),
                    }
                    for rule in config.conditions
                ],
            },
        )
