"""
Event Bus - Pub/sub of workflow execution lifecycle events.

Lets embedding applications:
- Follow a run node by node (started / completed / failed / skipped)
- Observe loop iterations
- Wait for a run to finish

Handlers are awaited by ``publish``; the engine publishes between node
dispatches, so a slow handler delays the run but never overlaps a node.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of events that can be published."""

    # Execution lifecycle
    EXECUTION_STARTED = "execution_started"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"

    # Node lifecycle
    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    NODE_FAILED = "node_failed"
    NODE_SKIPPED = "node_skipped"

    # Loop driver
    LOOP_ITERATION = "loop_iteration"


@dataclass
class ExecutionEvent:
    """An event emitted while a workflow runs."""

    type: EventType
    workflow_id: str
    execution_id: str
    node_id: str | None = None  # Which node the event is about
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "workflow_id": self.workflow_id,
            "execution_id": self.execution_id,
            "node_id": self.node_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


# Type for event handlers
EventHandler = Callable[[ExecutionEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscription to events."""

    id: str
    event_types: set[EventType]
    handler: EventHandler
    filter_workflow: str | None = None  # Only receive events from this workflow
    filter_node: str | None = None  # Only receive events about this node
    filter_execution: str | None = None  # Only receive events from this execution


class EventBus:
    """
    Pub/sub event bus for execution lifecycle events.

    Features:
    - Async event handling
    - Type-based subscriptions
    - Workflow/node/execution filtering
    - Event history for debugging

    Example:
        bus = EventBus()

        async def on_node_failed(event: ExecutionEvent):
            print(f"Node {event.node_id} failed: {event.data['error']}")

        bus.subscribe(
            event_types=[EventType.NODE_FAILED],
            handler=on_node_failed,
        )

        engine = WorkflowEngine(workflow, event_bus=bus)
        await engine.execute()
    """

    def __init__(
        self,
        max_history: int = 1000,
        max_concurrent_handlers: int = 10,
    ):
        """
        Initialize event bus.

        Args:
            max_history: Maximum events to keep in history
            max_concurrent_handlers: Maximum concurrent handler executions
        """
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[ExecutionEvent] = []
        self._max_history = max_history
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._subscription_counter = 0
        self._lock = asyncio.Lock()

    def subscribe(
        self,
        event_types: list[EventType],
        handler: EventHandler,
        filter_workflow: str | None = None,
        filter_node: str | None = None,
        filter_execution: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"

        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_workflow=filter_workflow,
            filter_node=filter_node,
            filter_execution=filter_execution,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types}")

        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns True if it existed."""
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: ExecutionEvent) -> None:
        """Publish an event to all matching subscribers."""
        async with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history = self._event_history[-self._max_history :]

        matching_handlers = [
            s.handler for s in list(self._subscriptions.values()) if self._matches(s, event)
        ]
        if matching_handlers:
            await self._execute_handlers(event, matching_handlers)

    def _matches(self, subscription: Subscription, event: ExecutionEvent) -> bool:
        """Check if a subscription matches an event."""
        if event.type not in subscription.event_types:
            return False
        if subscription.filter_workflow and subscription.filter_workflow != event.workflow_id:
            return False
        if subscription.filter_node and subscription.filter_node != event.node_id:
            return False
        if subscription.filter_execution and subscription.filter_execution != event.execution_id:
            return False
        return True

    async def _execute_handlers(
        self,
        event: ExecutionEvent,
        handlers: list[EventHandler],
    ) -> None:
        """Execute handlers concurrently with rate limiting."""

        async def run_handler(handler: EventHandler) -> None:
            async with self._semaphore:
                try:
                    await handler(event)
                except Exception as e:
                    logger.error(f"Handler error for {event.type}: {e}")

        await asyncio.gather(*[run_handler(h) for h in handlers], return_exceptions=True)

    # === CONVENIENCE PUBLISHERS ===

    async def emit_execution_started(
        self,
        workflow_id: str,
        execution_id: str,
        input_data: dict[str, Any] | None = None,
    ) -> None:
        await self.publish(
            ExecutionEvent(
                type=EventType.EXECUTION_STARTED,
                workflow_id=workflow_id,
                execution_id=execution_id,
                data={"input": input_data or {}},
            )
        )

    async def emit_execution_completed(
        self,
        workflow_id: str,
        execution_id: str,
        output: Any = None,
        duration_ms: int = 0,
    ) -> None:
        await self.publish(
            ExecutionEvent(
                type=EventType.EXECUTION_COMPLETED,
                workflow_id=workflow_id,
                execution_id=execution_id,
                data={"output": output, "duration_ms": duration_ms},
            )
        )

    async def emit_execution_failed(
        self,
        workflow_id: str,
        execution_id: str,
        error: str,
        failed_node_id: str | None = None,
    ) -> None:
        await self.publish(
            ExecutionEvent(
                type=EventType.EXECUTION_FAILED,
                workflow_id=workflow_id,
                execution_id=execution_id,
                node_id=failed_node_id,
                data={"error": error},
            )
        )

    async def emit_node_started(
        self,
        workflow_id: str,
        execution_id: str,
        node_id: str,
        node_type: str,
    ) -> None:
        await self.publish(
            ExecutionEvent(
                type=EventType.NODE_STARTED,
                workflow_id=workflow_id,
                execution_id=execution_id,
                node_id=node_id,
                data={"node_type": node_type},
            )
        )

    async def emit_node_completed(
        self,
        workflow_id: str,
        execution_id: str,
        node_id: str,
        duration_ms: int = 0,
        data: Any = None,
    ) -> None:
        await self.publish(
            ExecutionEvent(
                type=EventType.NODE_COMPLETED,
                workflow_id=workflow_id,
                execution_id=execution_id,
                node_id=node_id,
                data={"duration_ms": duration_ms, "data": data},
            )
        )

    async def emit_node_failed(
        self,
        workflow_id: str,
        execution_id: str,
        node_id: str,
        error: str,
        analysis: dict[str, Any] | None = None,
    ) -> None:
        """Emit node failed event, with the error analysis when available."""
        await self.publish(
            ExecutionEvent(
                type=EventType.NODE_FAILED,
                workflow_id=workflow_id,
                execution_id=execution_id,
                node_id=node_id,
                data={"error": error, "analysis": analysis or {}},
            )
        )

    async def emit_node_skipped(
        self,
        workflow_id: str,
        execution_id: str,
        node_id: str,
        reason: str,
    ) -> None:
        await self.publish(
            ExecutionEvent(
                type=EventType.NODE_SKIPPED,
                workflow_id=workflow_id,
                execution_id=execution_id,
                node_id=node_id,
                data={"reason": reason},
            )
        )

    async def emit_loop_iteration(
        self,
        workflow_id: str,
        execution_id: str,
        node_id: str,
        index: int,
        item: Any = None,
    ) -> None:
        await self.publish(
            ExecutionEvent(
                type=EventType.LOOP_ITERATION,
                workflow_id=workflow_id,
                execution_id=execution_id,
                node_id=node_id,
                data={"index": index, "item": item},
            )
        )

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        event_type: EventType | None = None,
        execution_id: str | None = None,
        node_id: str | None = None,
        limit: int = 100,
    ) -> list[ExecutionEvent]:
        """
        Get event history with optional filtering.

        Returns:
            List of matching events (most recent first)
        """
        events = self._event_history[::-1]

        if event_type:
            events = [e for e in events if e.type == event_type]
        if execution_id:
            events = [e for e in events if e.execution_id == execution_id]
        if node_id:
            events = [e for e in events if e.node_id == node_id]

        return events[:limit]

    def get_stats(self) -> dict:
        """Get event bus statistics."""
        type_counts: dict[str, int] = {}
        for event in self._event_history:
            type_counts[event.type.value] = type_counts.get(event.type.value, 0) + 1

        return {
            "total_events": len(self._event_history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": type_counts,
        }

    # === WAITING OPERATIONS ===

    async def wait_for(
        self,
        event_type: EventType,
        workflow_id: str | None = None,
        node_id: str | None = None,
        execution_id: str | None = None,
        timeout: float | None = None,
    ) -> ExecutionEvent | None:
        """
        Wait for a specific event to occur.

        Returns:
            The event if received, None if timeout
        """
        result: ExecutionEvent | None = None
        event_received = asyncio.Event()

        async def handler(event: ExecutionEvent) -> None:
            nonlocal result
            result = event
            event_received.set()

        sub_id = self.subscribe(
            event_types=[event_type],
            handler=handler,
            filter_workflow=workflow_id,
            filter_node=node_id,
            filter_execution=execution_id,
        )

        try:
            if timeout:
                try:
                    await asyncio.wait_for(event_received.wait(), timeout=timeout)
                except TimeoutError:
                    return None
            else:
                await event_received.wait()

            return result
        finally:
            self.unsubscribe(sub_id)
