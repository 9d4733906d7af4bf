"""
Workflow Engine - runs a workflow document node by node.

The engine:
1. Validates the workflow and resolves a linear execution order
2. Merges the caller's input into the INPUT nodes
3. Walks the order, consulting skip propagation before each dispatch
4. Dispatches each node to the processor registered for its type
5. Drives loops by re-running their body between loop re-entries
6. Applies the error strategy (fail_fast, continue or collect)
7. Persists the execution record and node logs, and publishes events
"""

import logging
import time
import traceback
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from flowgraph.config import EngineConfig
from flowgraph.graph.context import (
    ExecutionContext,
    ExecutionResult,
    NodeOutput,
    NodeStatus,
    TokenUsage,
)
from flowgraph.graph.decisions import LoopContinue
from flowgraph.graph.errors import (
    NodeExecutionError,
    WorkflowError,
    WorkflowValidationError,
    analyze_error,
)
from flowgraph.graph.order import OrderResolver, get_execution_order
from flowgraph.graph.processors.base import NodeProcessor
from flowgraph.graph.processors.registry import ProcessorRegistry
from flowgraph.graph.routing import SkipPropagation
from flowgraph.graph.workflow import LogicMode, NodeConfig, NodeType, WorkflowConfig
from flowgraph.observability import set_trace_context
from flowgraph.runtime.event_bus import EventBus
from flowgraph.runtime.execution_schemas import ExecutionRecord, ExecutionStatus, NodeLogEntry
from flowgraph.runtime.execution_store import ExecutionStore, InMemoryExecutionStore

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """
    Executes workflow documents.

    Example:
        engine = WorkflowEngine(workflow, store=FileExecutionStore("~/.flowgraph/storage"))
        result = await engine.execute({"platform": "twitter"})
        if result.success:
            print(result.output)
        else:
            print(result.error, engine.context.node_outputs)
    """

    def __init__(
        self,
        workflow: WorkflowConfig,
        registry: ProcessorRegistry | None = None,
        store: ExecutionStore | None = None,
        event_bus: EventBus | None = None,
        config: EngineConfig | None = None,
        order_resolver: OrderResolver = get_execution_order,
        is_merge_capable: Callable[[NodeConfig], bool] | None = None,
    ):
        """
        Initialize the engine.

        Args:
            workflow: The workflow document to run
            registry: Node type -> processor; built-in processors by default
            store: Where execution records and node logs go (in memory by default)
            event_bus: Optional bus for lifecycle events
            config: Engine defaults; the workflow's ``settings`` override them
            order_resolver: ``(nodes, edges) -> ordered nodes``
            is_merge_capable: Which nodes keep running when an upstream node fails
        """
        self.workflow = workflow
        self.config = config or EngineConfig()
        self.error_strategy = workflow.settings.error_strategy or self.config.error_strategy
        self.max_loop_iterations = (
            workflow.settings.max_loop_iterations or self.config.max_loop_iterations
        )
        self.registry = registry or ProcessorRegistry.with_builtins(self.max_loop_iterations)
        self.store = store or InMemoryExecutionStore()
        self.event_bus = event_bus
        self.order_resolver = order_resolver
        self.is_merge_capable = is_merge_capable

        self.context: ExecutionContext | None = None

        # Per-run state, reset by execute()
        self._skips: SkipPropagation | None = None
        self._loop_owner: dict[str, str] = {}
        self._loop_bodies: dict[str, list[NodeConfig]] = {}
        self._loop_feeders: dict[str, list[NodeConfig]] = {}
        self._handled: set[str] = set()
        self._skip_reasons: dict[str, str] = {}
        self._path: list[str] = []
        self._skipped: list[str] = []
        self._errors: list[dict[str, Any]] = []
        self._tokens = TokenUsage()
        self._final_output: Any = None
        self._error_detail: dict[str, Any] | None = None

    async def execute(self, initial_input: dict[str, Any] | None = None) -> ExecutionResult:
        """
        Run the workflow once.

        Args:
            initial_input: Flat ``{field name: value}`` map applied to INPUT nodes

        Returns:
            ExecutionResult. ``self.context`` holds the outputs recorded so far,
            including after a failed run.
        """
        initial_input = dict(initial_input or {})
        execution_id = f"exec_{uuid.uuid4().hex[:12]}"
        start = time.perf_counter()

        self.context = ExecutionContext(
            execution_id=execution_id,
            workflow_id=self.workflow.id,
            global_variables={**self.workflow.global_variables, "triggerInput": initial_input},
            max_loop_iterations=self.max_loop_iterations,
        )
        self._reset()

        set_trace_context(workflow_id=self.workflow.id, execution_id=execution_id)
        await self._persist(
            "create",
            self.store.create_execution,
            ExecutionRecord(
                execution_id=execution_id,
                workflow_id=self.workflow.id,
                workflow_name=self.workflow.name,
                input=initial_input,
                started_at=datetime.now(UTC).isoformat(),
            ),
        )

        logger.info(f"Starting execution of workflow '{self.workflow.name or self.workflow.id}'")

        try:
            errors = self.workflow.validate()
            if errors:
                raise WorkflowValidationError(errors)

            order = self.order_resolver(self.workflow.nodes, self.workflow.edges)
            order = self._apply_input(order, initial_input)
            self._skips = SkipPropagation(
                self.workflow, order=order, is_merge_capable=self.is_merge_capable
            )
            self._index_loops(order)

            await self._persist(
                "update", self.store.update_execution, execution_id, status=ExecutionStatus.RUNNING
            )
            if self.event_bus:
                await self.event_bus.emit_execution_started(
                    self.workflow.id, execution_id, initial_input
                )

            for node in order:
                if node.id in self._loop_owner or node.id in self._handled:
                    continue
                await self._run_node(node)

            for node in order:
                if node.id not in self._loop_owner or node.id in self._skipped:
                    continue
                if node.id not in self.context.node_outputs:
                    reason = self._skip_reasons.get(self._loop_owner[node.id], "loop_body_not_run")
                    await self._mark_skipped(node, reason)

        except WorkflowError as e:
            duration_ms = int((time.perf_counter() - start) * 1000)
            failed_node_id = e.node_id if isinstance(e, NodeExecutionError) else None
            logger.error(f"Execution failed: {e}")
            return await self._finish(ExecutionStatus.FAILED, duration_ms, str(e), failed_node_id)

        except Exception as e:
            duration_ms = int((time.perf_counter() - start) * 1000)
            logger.exception(f"Execution crashed: {e}")
            return await self._finish(ExecutionStatus.FAILED, duration_ms, str(e))

        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            f"Execution complete: {len(self._path)} dispatch(es), "
            f"{len(self._skipped)} skipped, {self._tokens.total_tokens} tokens, {duration_ms}ms"
        )
        return await self._finish(ExecutionStatus.COMPLETED, duration_ms)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _reset(self) -> None:
        self._skips = None
        self._loop_owner = {}
        self._loop_bodies = {}
        self._loop_feeders = {}
        self._handled = set()
        self._skip_reasons = {}
        self._path = []
        self._skipped = []
        self._errors = []
        self._tokens = TokenUsage()
        self._final_output = None
        self._error_detail = None

    def _apply_input(
        self, order: list[NodeConfig], initial_input: dict[str, Any]
    ) -> list[NodeConfig]:
        """Copy INPUT nodes with the caller's values written into matching fields."""
        if not initial_input:
            return order

        applied = []
        for node in order:
            if node.type == NodeType.INPUT and isinstance(node.config.get("fields"), list):
                node = node.model_copy(deep=True)
                for field in node.config["fields"]:
                    if isinstance(field, dict) and field.get("name") in initial_input:
                        field["value"] = initial_input[field["name"]]
            applied.append(node)
        return applied

    def _index_loops(self, order: list[NodeConfig]) -> None:
        """
        Assign every loop body node to the loop that drives it.

        A node listed by several loops belongs to the innermost one (the loop
        that is itself nested deepest). Each loop's body runs in global order.
        """
        bodies: dict[str, list[str]] = {}
        for node in order:
            if node.type != NodeType.LOGIC or node.config.get("mode") != LogicMode.LOOP:
                continue
            loop_config = node.logic_config().loop_config
            if loop_config is not None:
                bodies[node.id] = list(loop_config.loop_body_node_ids)

        def depth(loop_id: str, seen: frozenset[str] = frozenset()) -> int:
            parents = [
                parent
                for parent, body in bodies.items()
                if loop_id in body and parent not in seen and parent != loop_id
            ]
            if not parents:
                return 0
            return 1 + max(depth(parent, seen | {loop_id}) for parent in parents)

        depths = {loop_id: depth(loop_id) for loop_id in bodies}
        for loop_id, body in bodies.items():
            for body_id in body:
                owner = self._loop_owner.get(body_id)
                if owner is None or depths[loop_id] > depths[owner]:
                    self._loop_owner[body_id] = loop_id

        self._loop_bodies = {
            loop_id: [node for node in order if self._loop_owner.get(node.id) == loop_id]
            for loop_id in bodies
        }
        self._loop_feeders = {
            loop_id: self._feeders_of(loop_id, body, order)
            for loop_id, body in self._loop_bodies.items()
        }

    def _feeders_of(
        self, loop_id: str, body: list[NodeConfig], order: list[NodeConfig]
    ) -> list[NodeConfig]:
        """
        Non-body upstream nodes of a loop's body, in global order.

        These may sit after the loop node in the order, so they are dispatched
        before the first body pass. The walk stops at the loop node itself and
        keeps only nodes driven at the same nesting level as the loop.
        """
        sources: dict[str, list[str]] = {}
        for edge in self.workflow.edges:
            sources.setdefault(edge.target, []).append(edge.source)

        body_ids = {node.id for node in body}
        owner = self._loop_owner.get(loop_id)
        upstream: set[str] = set()
        pending = list(body_ids)
        while pending:
            for source in sources.get(pending.pop(), []):
                if source == loop_id or source in body_ids or source in upstream:
                    continue
                upstream.add(source)
                pending.append(source)

        return [
            node
            for node in order
            if node.id in upstream and self._loop_owner.get(node.id) == owner
        ]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _run_node(self, node: NodeConfig) -> None:
        """Skip check, dispatch, and loop driving for one node."""
        self._handled.add(node.id)
        skipped = self._skips.compute(self.context.node_outputs)
        if node.id in skipped:
            await self._mark_skipped(node, skipped[node.id])
            return

        processor = self.registry.get(node.type)
        if processor is None:
            logger.warning(f"No processor registered for node type '{node.type}'")
            await self._mark_skipped(node, "no_processor")
            return

        output = await self._execute_node(node, processor)
        if output.status != NodeStatus.SUCCESS:
            return

        if node.type == NodeType.OUTPUT:
            self._final_output = output.data
        if isinstance(output.logic, LoopContinue):
            await self._drive_loop(node, processor, output)

    async def _execute_node(self, node: NodeConfig, processor: NodeProcessor) -> NodeOutput:
        """Dispatch one node and record everything about the result."""
        set_trace_context(node_id=node.id)
        if self.event_bus:
            await self.event_bus.emit_node_started(
                self.workflow.id, self.context.execution_id, node.id, node.type
            )

        started_at = datetime.now(UTC)
        try:
            output = await processor.process(node, self.context)
        except Exception as e:
            completed_at = datetime.now(UTC)
            output = NodeOutput(
                node_id=node.id,
                node_name=node.name,
                node_type=node.type,
                status=NodeStatus.ERROR,
                error=str(e) or type(e).__name__,
                started_at=started_at,
                completed_at=completed_at,
                duration_ms=int((completed_at - started_at).total_seconds() * 1000),
                stacktrace=traceback.format_exc(),
            )

        self.context.record(output)
        self._path.append(node.id)
        if output.token_usage:
            self._tokens.prompt_tokens += output.token_usage.prompt_tokens
            self._tokens.completion_tokens += output.token_usage.completion_tokens
            self._tokens.total_tokens += output.token_usage.total_tokens
        await self._persist("node log", self.store.append_node_log, self._log_entry(output))

        if output.status == NodeStatus.ERROR:
            await self._handle_failure(node, output)
        else:
            logger.info(
                f"Node '{node.name or node.id}' completed in {output.duration_ms}ms",
                extra={
                    "event": "node_completed",
                    "node_type": node.type,
                    "duration_ms": output.duration_ms,
                },
            )
            if self.event_bus:
                await self.event_bus.emit_node_completed(
                    self.workflow.id,
                    self.context.execution_id,
                    node.id,
                    duration_ms=output.duration_ms,
                    data=output.data,
                )

        set_trace_context(node_id=None)
        return output

    async def _drive_loop(
        self, node: NodeConfig, processor: NodeProcessor, output: NodeOutput
    ) -> None:
        """Run the loop body once per ``continue`` until the loop node reports complete."""
        body = self._loop_bodies.get(node.id, [])
        body_ids = {body_node.id for body_node in body}
        decision = output.logic

        for feeder in self._loop_feeders.get(node.id, []):
            if feeder.id not in self._handled:
                await self._run_node(feeder)

        while isinstance(decision, LoopContinue):
            logger.debug(
                f"Loop '{node.id}' iteration {decision.iteration_count} "
                f"({len(body)} body node(s))"
            )
            if self.event_bus:
                await self.event_bus.emit_loop_iteration(
                    self.workflow.id,
                    self.context.execution_id,
                    node.id,
                    decision.current_index,
                    decision.current_item,
                )

            self._handled.difference_update(body_ids)
            for body_node in body:
                if body_node.id not in self._handled:
                    await self._run_node(body_node)

            output = await self._execute_node(node, processor)
            if output.status != NodeStatus.SUCCESS:
                return
            decision = output.logic

    async def _handle_failure(self, node: NodeConfig, output: NodeOutput) -> None:
        """Apply the error strategy to a node that reported ``status=error``."""
        analysis = analyze_error(output.error, node.type)
        logger.error(
            f"Node '{node.name or node.id}' failed: {output.error}",
            extra={"event": "node_failed", "node_type": node.type, "status": "error"},
        )
        if analysis.code:
            logger.info(f"Failure analysis [{analysis.code}]: {analysis.friendly_message}")
        self._error_detail = analysis.to_dict()

        if self.event_bus:
            await self.event_bus.emit_node_failed(
                self.workflow.id,
                self.context.execution_id,
                node.id,
                output.error or "",
                analysis=analysis.to_dict(),
            )

        if self.error_strategy == "fail_fast":
            raise NodeExecutionError(node.id, node.name or node.id, output.error)

        self._errors.append(
            {"nodeId": node.id, "nodeName": node.name or node.id, "error": output.error}
        )

    async def _mark_skipped(self, node: NodeConfig, reason: str) -> None:
        logger.info(
            f"Skipping node '{node.name or node.id}' ({reason})",
            extra={"event": "node_skipped", "node_id": node.id, "status": "skipped"},
        )
        if node.id not in self._skipped:
            self._skipped.append(node.id)
        self._skip_reasons[node.id] = reason

        now = datetime.now(UTC).isoformat()
        entry = NodeLogEntry(
            execution_id=self.context.execution_id,
            node_id=node.id,
            node_name=node.name,
            node_type=node.type,
            status=str(NodeStatus.SKIPPED),
            data={"reason": reason},
            started_at=now,
            completed_at=now,
        )
        await self._persist("node log", self.store.append_node_log, entry)
        if self.event_bus:
            await self.event_bus.emit_node_skipped(
                self.workflow.id, self.context.execution_id, node.id, reason
            )

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _log_entry(self, output: NodeOutput) -> NodeLogEntry:
        usage = output.token_usage or TokenUsage()
        return NodeLogEntry(
            execution_id=self.context.execution_id,
            node_id=output.node_id,
            node_name=output.node_name,
            node_type=output.node_type,
            status=str(output.status),
            data=output.data,
            error=output.error,
            stacktrace=output.stacktrace or "",
            started_at=output.started_at.isoformat(),
            completed_at=output.completed_at.isoformat() if output.completed_at else "",
            duration_ms=output.duration_ms,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
        )

    def _final_payload(self) -> Any:
        output = self._final_output
        if self.error_strategy != "collect" or not self._errors:
            return output
        if isinstance(output, dict):
            return {**output, "_errors": list(self._errors)}
        if output is None:
            return {"_errors": list(self._errors)}
        return {"output": output, "_errors": list(self._errors)}

    async def _finish(
        self,
        status: ExecutionStatus,
        duration_ms: int,
        error: str | None = None,
        failed_node_id: str | None = None,
    ) -> ExecutionResult:
        execution_id = self.context.execution_id
        result = ExecutionResult(
            execution_id=execution_id,
            status=status,
            output=self._final_payload(),
            error=error,
            failed_node_id=failed_node_id,
            duration_ms=duration_ms,
            total_tokens=self._tokens.total_tokens,
            prompt_tokens=self._tokens.prompt_tokens,
            completion_tokens=self._tokens.completion_tokens,
            path=list(self._path),
            skipped_node_ids=list(self._skipped),
            errors=list(self._errors),
        )

        await self._persist(
            "update",
            self.store.update_execution,
            execution_id,
            status=status,
            output=result.output,
            error=error,
            error_detail=self._error_detail if failed_node_id else None,
            failed_node_id=failed_node_id,
            completed_at=datetime.now(UTC).isoformat(),
            duration_ms=duration_ms,
            total_tokens=result.total_tokens,
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
            path=result.path,
            skipped_node_ids=result.skipped_node_ids,
        )

        if self.event_bus:
            if status == ExecutionStatus.COMPLETED:
                await self.event_bus.emit_execution_completed(
                    self.workflow.id, execution_id, result.output, duration_ms
                )
            else:
                await self.event_bus.emit_execution_failed(
                    self.workflow.id, execution_id, error or "", failed_node_id
                )

        return result

    async def _persist(self, what: str, operation: Callable, *args: Any, **kwargs: Any) -> None:
        """Run a store operation. A storage failure never fails the run."""
        try:
            await operation(*args, **kwargs)
        except Exception as e:
            logger.warning(f"Failed to persist execution {what}: {e}")
