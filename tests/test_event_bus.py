"""Tests for EventBus subscriptions, history and waiting."""

import asyncio
import logging

import pytest

from flowgraph.runtime.event_bus import EventBus, EventType, ExecutionEvent


def node_event(event_type: EventType, node_id: str = "A", execution_id: str = "exec_1"):
    return ExecutionEvent(
        type=event_type,
        workflow_id="wf_1",
        execution_id=execution_id,
        node_id=node_id,
    )


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_handlers_receive_matching_types(self):
        bus = EventBus()
        received: list[ExecutionEvent] = []

        async def handler(event: ExecutionEvent):
            received.append(event)

        bus.subscribe([EventType.NODE_FAILED], handler)

        await bus.publish(node_event(EventType.NODE_COMPLETED))
        await bus.publish(node_event(EventType.NODE_FAILED))

        assert [e.type for e in received] == [EventType.NODE_FAILED]

    @pytest.mark.asyncio
    async def test_node_and_execution_filters(self):
        bus = EventBus()
        received: list[str] = []

        async def handler(event: ExecutionEvent):
            received.append(f"{event.execution_id}:{event.node_id}")

        bus.subscribe(
            [EventType.NODE_STARTED],
            handler,
            filter_node="B",
            filter_execution="exec_2",
        )

        await bus.publish(node_event(EventType.NODE_STARTED, "A", "exec_2"))
        await bus.publish(node_event(EventType.NODE_STARTED, "B", "exec_1"))
        await bus.publish(node_event(EventType.NODE_STARTED, "B", "exec_2"))

        assert received == ["exec_2:B"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        received: list[ExecutionEvent] = []

        async def handler(event: ExecutionEvent):
            received.append(event)

        sub_id = bus.subscribe([EventType.NODE_SKIPPED], handler)

        assert bus.unsubscribe(sub_id) is True
        assert bus.unsubscribe(sub_id) is False
        await bus.publish(node_event(EventType.NODE_SKIPPED))
        assert received == []

    @pytest.mark.asyncio
    async def test_handler_errors_are_logged_not_raised(self, caplog):
        bus = EventBus()
        received: list[ExecutionEvent] = []

        async def broken(event: ExecutionEvent):
            raise RuntimeError("handler exploded")

        async def healthy(event: ExecutionEvent):
            received.append(event)

        bus.subscribe([EventType.NODE_COMPLETED], broken)
        bus.subscribe([EventType.NODE_COMPLETED], healthy)

        with caplog.at_level(logging.ERROR, logger="flowgraph.runtime.event_bus"):
            await bus.publish(node_event(EventType.NODE_COMPLETED))

        assert len(received) == 1
        assert "handler exploded" in caplog.text


class TestHistory:
    @pytest.mark.asyncio
    async def test_history_most_recent_first_with_filters(self):
        bus = EventBus()
        await bus.emit_execution_started("wf_1", "exec_1", {"platform": "wechat"})
        await bus.emit_node_started("wf_1", "exec_1", "A", "PROCESS")
        await bus.emit_node_skipped("wf_1", "exec_1", "B", "branch_not_taken")
        await bus.emit_execution_completed("wf_1", "exec_1", output="done", duration_ms=5)

        history = bus.get_history()
        skipped = bus.get_history(event_type=EventType.NODE_SKIPPED)
        about_a = bus.get_history(node_id="A")

        assert [e.type for e in history] == [
            EventType.EXECUTION_COMPLETED,
            EventType.NODE_SKIPPED,
            EventType.NODE_STARTED,
            EventType.EXECUTION_STARTED,
        ]
        assert skipped[0].data == {"reason": "branch_not_taken"}
        assert [e.type for e in about_a] == [EventType.NODE_STARTED]
        assert history[-1].data == {"input": {"platform": "wechat"}}
        assert len(bus.get_history(limit=2)) == 2

    @pytest.mark.asyncio
    async def test_history_is_bounded(self):
        bus = EventBus(max_history=3)

        for index in range(5):
            await bus.emit_loop_iteration("wf_1", "exec_1", "loop", index, item=index)

        indexes = [e.data["index"] for e in bus.get_history()]
        assert indexes == [4, 3, 2]

    @pytest.mark.asyncio
    async def test_stats(self):
        bus = EventBus()

        async def handler(event: ExecutionEvent):
            pass

        bus.subscribe([EventType.NODE_FAILED], handler)
        await bus.emit_node_failed("wf_1", "exec_1", "A", "boom", {"code": "NETWORK_ERROR"})
        await bus.emit_node_failed("wf_1", "exec_1", "B", "boom")
        await bus.emit_execution_failed("wf_1", "exec_1", "boom", failed_node_id="A")

        stats = bus.get_stats()

        assert stats["total_events"] == 3
        assert stats["subscriptions"] == 1
        assert stats["events_by_type"] == {"node_failed": 2, "execution_failed": 1}

    def test_event_to_dict(self):
        event = node_event(EventType.NODE_COMPLETED)

        data = event.to_dict()

        assert data["type"] == "node_completed"
        assert data["node_id"] == "A"
        assert data["timestamp"] == event.timestamp.isoformat()


class TestWaitFor:
    @pytest.mark.asyncio
    async def test_wait_for_receives_event(self):
        bus = EventBus()

        waiter = asyncio.create_task(
            bus.wait_for(EventType.EXECUTION_COMPLETED, execution_id="exec_1", timeout=1.0)
        )
        await asyncio.sleep(0)
        await bus.emit_execution_completed("wf_1", "exec_2")
        await bus.emit_execution_completed("wf_1", "exec_1", output={"ok": True})

        event = await waiter

        assert event is not None
        assert event.execution_id == "exec_1"
        assert event.data["output"] == {"ok": True}
        assert bus.get_stats()["subscriptions"] == 0

    @pytest.mark.asyncio
    async def test_wait_for_timeout_returns_none(self):
        bus = EventBus()

        event = await bus.wait_for(EventType.EXECUTION_FAILED, timeout=0.01)

        assert event is None
        assert bus.get_stats()["subscriptions"] == 0
