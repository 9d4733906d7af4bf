"""
LOGIC node processor.

Modes:
- condition: pick the first condition whose expression holds (or the fallback)
- split:     activate every branch
- switch:    route by the value of a variable to the branch labelled with it
- merge:     gather upstream outputs and report which are missing or failed
- loop:      forEach / times / while state machine, one transition per call

The processor never jumps anywhere itself. It reports a typed decision and
the engine turns it into control flow: routing decisions feed skip
propagation, loop transitions drive the loop body. Every dispatch reports
``status=success``; problems are part of the decision data.
"""

import logging
import math
import re
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from flowgraph.config import DEFAULT_MAX_LOOP_ITERATIONS
from flowgraph.graph.context import (
    ExecutionContext,
    LoopIterationContext,
    NodeOutput,
    NodeStatus,
)
from flowgraph.graph.decisions import (
    ConditionDecision,
    LogicDecision,
    LoopComplete,
    LoopContinue,
    MergeResult,
    MergeValidation,
    SplitDecision,
    SwitchDecision,
    UnknownModeResult,
)
from flowgraph.graph.expression import (
    evaluate_condition,
    resolve_variable_path,
    to_js_number,
    to_js_string,
)
from flowgraph.graph.processors.base import NodeProcessor
from flowgraph.graph.workflow import (
    LogicMode,
    LogicNodeConfigData,
    LoopConfig,
    LoopType,
    NodeConfig,
)

logger = logging.getLogger(__name__)

_BRACED_PATH = re.compile(r"^\{\{\s*([^{}]+?)\s*\}\}$")


class LoopConfigurationError(ValueError):
    """A loop that cannot start. Reported as a terminal ``complete`` with ``error``."""


class LogicNodeProcessor(NodeProcessor):
    node_type = "LOGIC"

    def __init__(self, default_max_iterations: int | None = None):
        self.default_max_iterations = default_max_iterations or DEFAULT_MAX_LOOP_ITERATIONS

    async def process(self, node: NodeConfig, context: ExecutionContext) -> NodeOutput:
        started_at = datetime.now(UTC)
        decision = self.decide(node, context)
        output = self.build_output(node, started_at, data=decision.to_data())
        output.logic = decision
        return output

    def decide(self, node: NodeConfig, context: ExecutionContext) -> LogicDecision:
        """Evaluate the node's mode against the context."""
        try:
            config = node.logic_config()
        except ValidationError as e:
            logger.warning(f"LOGIC node '{node.id}' has an invalid configuration: {e}")
            mode = node.config.get("mode") or LogicMode.CONDITION
            return UnknownModeResult(mode=str(mode), warning=f"逻辑节点配置无效: {e}")

        mode = config.mode or LogicMode.CONDITION
        if mode == LogicMode.CONDITION:
            return self.execute_condition(config, context)
        if mode == LogicMode.SPLIT:
            return self.execute_split(config)
        if mode == LogicMode.SWITCH:
            return self.execute_switch(config, context)
        if mode == LogicMode.MERGE:
            return self.execute_merge(config, context)
        if mode == LogicMode.LOOP:
            return self.execute_loop(node.id, config, context)

        return UnknownModeResult(mode=mode, warning=f"未知的逻辑模式: {mode}")

    # ------------------------------------------------------------------
    # Routing modes
    # ------------------------------------------------------------------

    def execute_condition(
        self, config: LogicNodeConfigData, context: ExecutionContext
    ) -> ConditionDecision:
        """First condition whose expression holds wins; later ones are not evaluated."""
        for condition in config.conditions:
            if evaluate_condition(condition.expression, context):
                return ConditionDecision(
                    conditions=config.conditions,
                    fallback_target_node_id=config.fallback_target_node_id,
                    matched=True,
                    matched_condition_id=condition.id,
                    matched_target_node_id=condition.target_node_id,
                    evaluated_expression=condition.expression,
                )

        return ConditionDecision(
            conditions=config.conditions,
            fallback_target_node_id=config.fallback_target_node_id,
            matched=False,
            matched_condition_id=None,
            matched_target_node_id=config.fallback_target_node_id or None,
        )

    def execute_split(self, config: LogicNodeConfigData) -> SplitDecision:
        return SplitDecision(
            branches=config.branches,
            active_branch_ids=[branch.id for branch in config.branches],
        )

    def execute_switch(
        self, config: LogicNodeConfigData, context: ExecutionContext
    ) -> SwitchDecision:
        """Match the input value against branch labels, then branch ids."""
        path = _strip_braces(config.switch_input or "").strip()

        value = resolve_variable_path(path, context) if path else None
        key = None if value is None else to_js_string(value)

        branch = None
        if key is not None:
            branch = next((b for b in config.branches if b.label == key), None)
            if branch is None:
                branch = next((b for b in config.branches if b.id == key), None)

        if branch is not None:
            return SwitchDecision(
                switch_input=config.switch_input,
                input_value=value,
                matched=True,
                matched_branch_id=branch.id,
                matched_target_node_id=branch.target_node_id,
                fallback_target_node_id=config.fallback_target_node_id,
            )

        return SwitchDecision(
            switch_input=config.switch_input,
            input_value=value,
            matched=False,
            matched_branch_id=None,
            matched_target_node_id=config.fallback_target_node_id or None,
            fallback_target_node_id=config.fallback_target_node_id,
        )

    # ------------------------------------------------------------------
    # Merge mode
    # ------------------------------------------------------------------

    def execute_merge(self, config: LogicNodeConfigData, context: ExecutionContext) -> MergeResult:
        """
        Gather upstream outputs.

        Requested ids (``mergeFromNodeIds``, default: every recorded output)
        are partitioned into completed, failed and missing. Failed outputs are
        still merged since their data may describe the failure. Incompleteness
        is reported, never raised.
        """
        merge_from = config.merge_from_node_ids or []

        merged: dict[str, Any] = {}
        completed_ids: list[str] = []
        missing_ids: list[str] = []
        failed_ids: list[str] = []

        if merge_from:
            candidates = [(node_id, context.node_outputs.get(node_id)) for node_id in merge_from]
        else:
            candidates = list(context.node_outputs.items())

        for node_id, output in candidates:
            if output is None:
                missing_ids.append(node_id)
                continue
            if output.status == NodeStatus.ERROR:
                failed_ids.append(node_id)
            else:
                completed_ids.append(node_id)
            merged[node_id] = output.data

        validation = MergeValidation(
            is_complete=not missing_ids,
            total_expected=len(merge_from) or len(context.node_outputs),
            completed_count=len(completed_ids),
            missing_count=len(missing_ids),
            failed_count=len(failed_ids),
            completed_node_ids=completed_ids,
            missing_node_ids=missing_ids,
            failed_node_ids=failed_ids,
        )

        warnings = []
        if missing_ids:
            warnings.append(f"以下节点尚未完成执行: {', '.join(missing_ids)}")
        if failed_ids:
            warnings.append(f"以下节点执行失败: {', '.join(failed_ids)}")

        return MergeResult(
            merge_from_node_ids=merge_from or None,
            merged=merged,
            merge_strategy=config.merge_strategy or "all",
            validation=validation,
            warnings=warnings or None,
            is_complete=validation.is_complete and not failed_ids,
        )

    # ------------------------------------------------------------------
    # Loop mode
    # ------------------------------------------------------------------

    def execute_loop(
        self, node_id: str, config: LogicNodeConfigData, context: ExecutionContext
    ) -> LoopContinue | LoopComplete:
        """
        Advance the loop state machine by one transition.

        The first call initialises the loop; each later call first collects
        the outputs of the pass that just ran, then moves to the next index.
        The caller runs the body between calls until ``complete``.
        """
        loop_config = config.loop_config
        if loop_config is None:
            return LoopComplete(error="循环配置缺失")

        loop_ctx = context.active_loops.get(node_id)
        if loop_ctx is None:
            try:
                loop_ctx = self._initialize_loop(node_id, loop_config, context)
            except LoopConfigurationError as e:
                logger.warning(f"Loop '{node_id}' cannot start: {e}")
                return LoopComplete(error=str(e))
            context.active_loops[node_id] = loop_ctx
            logger.info(
                f"Loop '{node_id}' started ({loop_config.loop_type}, "
                f"total={loop_ctx.total_iterations}, nesting={loop_ctx.nesting_level})"
            )
        else:
            self._collect_iteration_result(loop_ctx, loop_config, context)
            loop_ctx.current_index += 1
            self._advance(loop_ctx, loop_config)

        max_iterations = loop_config.max_iterations
        if max_iterations is None:
            max_iterations = context.max_loop_iterations or self.default_max_iterations
        if loop_ctx.current_index >= max_iterations:
            logger.warning(f"Loop '{node_id}' stopped at the iteration cap ({max_iterations})")
            return self._complete_loop(node_id, loop_ctx, context, "max_iterations_reached")

        if not self._should_continue(loop_ctx, loop_config, context):
            return self._complete_loop(node_id, loop_ctx, context, "condition_false")

        self._expose_loop_variables(loop_ctx, context)

        return LoopContinue(
            loop_type=loop_config.loop_type,
            current_index=loop_ctx.current_index,
            current_item=loop_ctx.current_item,
            total_iterations=loop_ctx.total_iterations,
            is_first=loop_ctx.is_first,
            is_last=loop_ctx.is_last,
            loop_body_node_ids=list(loop_config.loop_body_node_ids),
            iteration_count=loop_ctx.current_index + 1,
            loop_namespace=loop_ctx.loop_namespace,
        )

    def _initialize_loop(
        self, node_id: str, loop_config: LoopConfig, context: ExecutionContext
    ) -> LoopIterationContext:
        loop_ctx = LoopIterationContext(
            loop_node_id=node_id,
            loop_namespace=loop_config.loop_namespace or "loop",
            nesting_level=len(context.active_loops),
        )

        if loop_config.loop_type == LoopType.FOR_EACH:
            if not loop_config.iterable_source:
                raise LoopConfigurationError("forEach 循环必须指定数据源 (iterableSource)")
            array = resolve_variable_path(_strip_braces(loop_config.iterable_source), context)
            if not isinstance(array, list):
                raise LoopConfigurationError(
                    f"forEach 循环源必须是数组，得到: {_js_typeof(array)}"
                )
            loop_ctx.iterable_array = array
            loop_ctx.total_iterations = len(array)
            loop_ctx.current_item = array[0] if array else None
            loop_ctx.is_last = len(array) <= 1

        elif loop_config.loop_type == LoopType.TIMES:
            if loop_config.loop_count_source:
                resolved = resolve_variable_path(
                    _strip_braces(loop_config.loop_count_source), context
                )
            else:
                resolved = loop_config.loop_count if loop_config.loop_count is not None else 1
            count = math.nan if resolved is None else to_js_number(resolved)
            if math.isnan(count):
                raise LoopConfigurationError(f"times 循环次数无效: {to_js_string(resolved)}")
            loop_ctx.total_iterations = int(count) if count.is_integer() else count
            loop_ctx.is_last = count <= 1

        elif loop_config.loop_type == LoopType.WHILE:
            loop_ctx.total_iterations = None

        else:
            raise LoopConfigurationError(f"未知的循环类型: {loop_config.loop_type}")

        return loop_ctx

    def _should_continue(
        self, loop_ctx: LoopIterationContext, loop_config: LoopConfig, context: ExecutionContext
    ) -> bool:
        if loop_config.loop_type == LoopType.FOR_EACH:
            return loop_ctx.current_index < len(loop_ctx.iterable_array or [])
        if loop_config.loop_type == LoopType.TIMES:
            return loop_ctx.current_index < (loop_ctx.total_iterations or 0)
        if loop_config.loop_type == LoopType.WHILE:
            return evaluate_condition(loop_config.while_condition, context)
        return False

    def _advance(self, loop_ctx: LoopIterationContext, loop_config: LoopConfig) -> None:
        loop_ctx.is_first = False
        index = loop_ctx.current_index

        if loop_config.loop_type == LoopType.FOR_EACH and loop_ctx.iterable_array is not None:
            array = loop_ctx.iterable_array
            loop_ctx.current_item = array[index] if index < len(array) else None
            loop_ctx.is_last = index == len(array) - 1
        elif loop_config.loop_type == LoopType.TIMES and loop_ctx.total_iterations:
            loop_ctx.is_last = index == loop_ctx.total_iterations - 1

    def _collect_iteration_result(
        self, loop_ctx: LoopIterationContext, loop_config: LoopConfig, context: ExecutionContext
    ) -> None:
        """Snapshot the body outputs of the pass that just finished."""
        if not loop_config.collect_results:
            return

        iteration_result = {
            body_id: context.node_outputs[body_id].data
            for body_id in loop_config.loop_body_node_ids
            if body_id in context.node_outputs
        }
        if iteration_result:
            loop_ctx.accumulated_results.append(iteration_result)

    def _expose_loop_variables(
        self, loop_ctx: LoopIterationContext, context: ExecutionContext
    ) -> None:
        """Publish the current iteration under the loop namespace.

        ``loop_variables`` holds the live view; ``global_variables`` gets a
        mirror (plus the results so far) so ``{{loop.item}}`` resolves.
        """
        namespace = loop_ctx.loop_namespace
        total = loop_ctx.total_iterations

        context.loop_variables[namespace] = {
            "item": loop_ctx.current_item,
            "index": loop_ctx.current_index,
            "isFirst": loop_ctx.is_first,
            "isLast": loop_ctx.is_last,
            "total": total if total is not None else -1,
        }
        context.global_variables[namespace] = {
            "item": loop_ctx.current_item,
            "index": loop_ctx.current_index,
            "isFirst": loop_ctx.is_first,
            "isLast": loop_ctx.is_last,
            "total": total,
            "results": loop_ctx.accumulated_results,
        }

    def _complete_loop(
        self,
        node_id: str,
        loop_ctx: LoopIterationContext,
        context: ExecutionContext,
        reason: str,
    ) -> LoopComplete:
        context.active_loops.pop(node_id, None)
        context.loop_variables.pop(loop_ctx.loop_namespace, None)

        elapsed = datetime.now(UTC) - loop_ctx.loop_start_time
        logger.info(
            f"Loop '{node_id}' complete ({reason}) after {loop_ctx.current_index} iteration(s)"
        )
        return LoopComplete(
            reason=reason,
            completed_iterations=loop_ctx.current_index,
            results=list(loop_ctx.accumulated_results),
            total_duration=int(elapsed.total_seconds() * 1000),
        )


def _strip_braces(path: str) -> str:
    braced = _BRACED_PATH.match(path.strip())
    return braced.group(1) if braced else path


def _js_typeof(value: Any) -> str:
    if value is None:
        return "undefined"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return "object"
