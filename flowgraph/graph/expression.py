"""
Restricted condition language used by LOGIC nodes.

Expressions are plain strings such as::

    {{InputNode.platform}} === "wechat" && {{score.value}} >= 60

Evaluation happens in two phases:

1. Interpolation - every ``{{path}}`` is replaced by a literal. Strings and
   objects become JSON, booleans ``true`` / ``false``, numbers their JS string
   form, unresolved paths the token ``null``.
2. Evaluation - the resulting text is split and compared without a parser:

   - ``true`` / ``false`` literals
   - ``&&`` splits into parts that must all hold, otherwise ``||`` splits into
     parts of which one must hold (flat, no precedence, no parentheses)
   - one binary comparison ``=== !== == != >= <= > <``
   - one ``.includes(...)`` on a string or array
   - otherwise the truthiness of the literal

Value semantics follow JavaScript: ``===`` is strict, ``==`` is loose,
ordering operators coerce both sides to numbers, ``[]`` and ``{}`` are truthy.
Anything that fails to evaluate counts as false.
"""

import json
import logging
import math
import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from flowgraph.graph.context import ExecutionContext

logger = logging.getLogger(__name__)

VARIABLE_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")
COMPARISON_PATTERN = re.compile(r"^(.+?)\s*(===|!==|==|!=|>=|<=|>|<)\s*(.+)$")
INCLUDES_PATTERN = re.compile(r"(.+?)\.includes\((.+)\)")

_DECIMAL_PATTERN = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_RADIX_PATTERN = re.compile(r"^0([xXoObB])([0-9a-fA-F]+)$")
_RADIX_BASES = {"x": 16, "o": 8, "b": 2}


class _Undefined:
    """The JavaScript ``undefined`` literal; distinct from ``null`` (None)."""

    def __repr__(self) -> str:
        return "undefined"

    def __bool__(self) -> bool:
        return False


UNDEFINED = _Undefined()


# ---------------------------------------------------------------------------
# Variable resolution
# ---------------------------------------------------------------------------


def get_nested_value(obj: Any, path: str) -> Any:
    """Walk a dotted path through dicts and lists. Returns None when any step is missing."""
    current = obj
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            if part not in current:
                return None
            current = current[part]
        elif isinstance(current, list):
            if part == "length":
                current = len(current)
            elif part.isdigit() and int(part) < len(current):
                current = current[int(part)]
            else:
                return None
        else:
            return None
    return current


def resolve_variable_path(path: str, context: "ExecutionContext") -> Any:
    """
    Resolve ``nodeNameOrId.field.path`` against the context.

    The head is matched against recorded outputs by node name or id (in the
    order outputs were first recorded), then against global variables.
    """
    trimmed = path.strip()
    if not trimmed:
        return None

    dot_index = trimmed.find(".")
    if dot_index > 0:
        head, field_path = trimmed[:dot_index], trimmed[dot_index + 1 :]
    else:
        head, field_path = trimmed, None

    for output in context.node_outputs.values():
        if output.node_name == head or output.node_id == head:
            if not field_path:
                return output.data
            return get_nested_value(output.data or {}, field_path)

    if field_path:
        base = context.global_variables.get(head)
        if isinstance(base, (dict, list)):
            return get_nested_value(base, field_path)
        return None

    return context.global_variables.get(head)


# ---------------------------------------------------------------------------
# JavaScript value helpers
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def format_number(value: int | float) -> str:
    """Render a number the way JavaScript's ``String()`` does."""
    if isinstance(value, int):
        return str(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    text = repr(value)
    return text.replace("e-0", "e-").replace("e+0", "e+")


def to_js_string(value: Any) -> str:
    """JavaScript ``String(value)``."""
    if value is UNDEFINED:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if _is_number(value):
        return format_number(value)
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return ",".join("" if v is None or v is UNDEFINED else to_js_string(v) for v in value)
    if isinstance(value, dict):
        return "[object Object]"
    return str(value)


def parse_js_number(text: str) -> float:
    """JavaScript ``Number(text)`` for strings. Returns NaN when not numeric."""
    stripped = text.strip()
    if not stripped:
        return 0.0
    if stripped in ("Infinity", "+Infinity"):
        return math.inf
    if stripped == "-Infinity":
        return -math.inf
    if _DECIMAL_PATTERN.match(stripped):
        return float(stripped)
    radix = _RADIX_PATTERN.match(stripped)
    if radix:
        try:
            return float(int(radix.group(2), _RADIX_BASES[radix.group(1).lower()]))
        except ValueError:
            return math.nan
    return math.nan


def to_js_number(value: Any) -> float:
    """JavaScript ``Number(value)``."""
    if value is None:
        return 0.0
    if value is UNDEFINED:
        return math.nan
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if _is_number(value):
        return float(value)
    if isinstance(value, str):
        return parse_js_number(value)
    if isinstance(value, list):
        return parse_js_number(to_js_string(value))
    return math.nan


def is_truthy(value: Any) -> bool:
    """JavaScript truthiness: empty string, 0, NaN, null and undefined are false."""
    if value is None or value is UNDEFINED:
        return False
    if isinstance(value, bool):
        return value
    if _is_number(value):
        return not (value == 0 or math.isnan(value))
    if isinstance(value, str):
        return len(value) > 0
    if isinstance(value, (list, dict)):
        return True
    return bool(value)


def strict_equals(left: Any, right: Any) -> bool:
    """JavaScript ``===``. Arrays and objects compare by identity."""
    if left is UNDEFINED or right is UNDEFINED or left is None or right is None:
        return left is right
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    return left is right


def loose_equals(left: Any, right: Any) -> bool:
    """JavaScript ``==``."""
    left_nullish = left is None or left is UNDEFINED
    right_nullish = right is None or right is UNDEFINED
    if left_nullish or right_nullish:
        return left_nullish and right_nullish

    if isinstance(left, bool):
        return loose_equals(to_js_number(left), right)
    if isinstance(right, bool):
        return loose_equals(left, to_js_number(right))

    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    if _is_number(left) and isinstance(right, str):
        return left == parse_js_number(right)
    if isinstance(left, str) and _is_number(right):
        return parse_js_number(left) == right

    left_object = isinstance(left, (list, dict))
    right_object = isinstance(right, (list, dict))
    if left_object and right_object:
        return left is right
    if left_object:
        return loose_equals(to_js_string(left), right)
    if right_object:
        return loose_equals(left, to_js_string(right))
    return left == right


# ---------------------------------------------------------------------------
# Interpolation and evaluation
# ---------------------------------------------------------------------------


def _literal(value: Any) -> str:
    if value is None or value is UNDEFINED:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if _is_number(value):
        return format_number(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
    return str(value)


def interpolate(expression: str, context: "ExecutionContext") -> str:
    """Replace every ``{{path}}`` in the expression with a literal."""
    return VARIABLE_PATTERN.sub(
        lambda m: _literal(resolve_variable_path(m.group(1).strip(), context)), expression
    )


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Unsupported JSON constant: {name}")


def parse_value(text: str) -> Any:
    """Parse a literal: null, undefined, booleans, quoted strings, numbers, JSON, else raw text."""
    trimmed = text.strip()

    if trimmed == "null":
        return None
    if trimmed == "undefined":
        return UNDEFINED
    if trimmed == "true":
        return True
    if trimmed == "false":
        return False

    if (trimmed.startswith('"') and trimmed.endswith('"')) or (
        trimmed.startswith("'") and trimmed.endswith("'")
    ):
        return trimmed[1:-1]

    number = parse_js_number(trimmed)
    if not math.isnan(number):
        return int(number) if number.is_integer() and abs(number) < 2**53 else number

    try:
        return json.loads(trimmed, parse_constant=_reject_constant)
    except ValueError:
        return trimmed


def _compare(left: Any, operator: str, right: Any) -> bool:
    if operator == "===":
        return strict_equals(left, right)
    if operator == "!==":
        return not strict_equals(left, right)
    if operator == "==":
        return loose_equals(left, right)
    if operator == "!=":
        return not loose_equals(left, right)

    left_number, right_number = to_js_number(left), to_js_number(right)
    if operator == ">":
        return left_number > right_number
    if operator == "<":
        return left_number < right_number
    if operator == ">=":
        return left_number >= right_number
    if operator == "<=":
        return left_number <= right_number
    return False


def safe_evaluate(expression: str) -> bool:
    """Evaluate an already interpolated expression."""
    trimmed = expression.strip()

    if trimmed == "true":
        return True
    if trimmed == "false":
        return False

    if "&&" in trimmed:
        return all(safe_evaluate(part.strip()) for part in trimmed.split("&&"))

    if "||" in trimmed:
        return any(safe_evaluate(part.strip()) for part in trimmed.split("||"))

    comparison = COMPARISON_PATTERN.match(trimmed)
    if comparison:
        left_text, operator, right_text = comparison.groups()
        return _compare(parse_value(left_text), operator, parse_value(right_text))

    if "includes(" in trimmed:
        includes = INCLUDES_PATTERN.search(trimmed)
        if includes:
            haystack = parse_value(includes.group(1))
            needle = parse_value(includes.group(2))
            if isinstance(haystack, str) and isinstance(needle, str):
                return needle in haystack
            if isinstance(haystack, list):
                return any(_same_value_zero(item, needle) for item in haystack)

    return is_truthy(parse_value(trimmed))


def _same_value_zero(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right) and math.isnan(left) and math.isnan(right):
        return True
    return strict_equals(left, right)


def evaluate_condition(expression: str | None, context: "ExecutionContext") -> bool:
    """Interpolate and evaluate an expression. Empty or failing expressions are false."""
    expression = (expression or "").strip()
    if not expression:
        return False

    try:
        return safe_evaluate(interpolate(expression, context))
    except Exception as e:
        logger.warning(f"Condition expression evaluation failed: {expression} ({e})")
        return False


# ---------------------------------------------------------------------------
# Text templates
# ---------------------------------------------------------------------------


def _has_reference(path: str, context: "ExecutionContext") -> bool:
    head = path.split(".", 1)[0] if path.find(".") > 0 else path
    if any(o.node_name == head or o.node_id == head for o in context.node_outputs.values()):
        return True
    return head in context.global_variables


def render_template(text: str, context: "ExecutionContext") -> str:
    """
    Substitute ``{{path}}`` references in free text (prompts, output templates).

    Unlike condition interpolation this produces readable text: strings are
    inserted raw, objects as indented JSON, missing fields as an empty string.
    A reference to an unknown node or variable is left untouched.
    """

    def replace(match: re.Match) -> str:
        path = match.group(1).strip()
        if not _has_reference(path, context):
            logger.warning(f"Variable reference not found: {match.group(0)}")
            return match.group(0)
        value = resolve_variable_path(path, context)
        if value is None:
            return ""
        if isinstance(value, (dict, list)):
            return json.dumps(value, ensure_ascii=False, indent=2, default=str)
        return to_js_string(value)

    return VARIABLE_PATTERN.sub(replace, text)
