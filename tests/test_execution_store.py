"""Tests for the execution stores - InMemoryExecutionStore and FileExecutionStore."""

from pathlib import Path

import pytest

from flowgraph.runtime.execution_schemas import ExecutionRecord, ExecutionStatus, NodeLogEntry
from flowgraph.runtime.execution_store import (
    FileExecutionStore,
    InMemoryExecutionStore,
    _validate_key,
)

# === HELPER FUNCTIONS ===


def make_record(
    execution_id: str = "exec_1",
    workflow_id: str = "wf_1",
    started_at: str = "2026-01-01T00:00:00+00:00",
) -> ExecutionRecord:
    return ExecutionRecord(
        execution_id=execution_id,
        workflow_id=workflow_id,
        workflow_name="Test workflow",
        input={"platform": "wechat"},
        started_at=started_at,
    )


def make_entry(execution_id: str = "exec_1", node_id: str = "A", **kwargs) -> NodeLogEntry:
    return NodeLogEntry(
        execution_id=execution_id,
        node_id=node_id,
        node_name=node_id,
        node_type="PROCESS",
        status=kwargs.pop("status", "success"),
        **kwargs,
    )


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path: Path):
    if request.param == "memory":
        return InMemoryExecutionStore()
    return FileExecutionStore(tmp_path)


# === SHARED CONTRACT ===


class TestExecutionStoreContract:
    @pytest.mark.asyncio
    async def test_create_and_load(self, store):
        await store.create_execution(make_record())

        loaded = await store.load_execution("exec_1")

        assert loaded is not None
        assert loaded.status == ExecutionStatus.PENDING
        assert loaded.workflow_name == "Test workflow"
        assert loaded.input == {"platform": "wechat"}

    @pytest.mark.asyncio
    async def test_load_missing_returns_none(self, store):
        assert await store.load_execution("exec_missing") is None
        assert await store.load_node_logs("exec_missing") == []

    @pytest.mark.asyncio
    async def test_duplicate_create_rejected(self, store):
        await store.create_execution(make_record())

        with pytest.raises(ValueError, match="already exists"):
            await store.create_execution(make_record())

    @pytest.mark.asyncio
    async def test_update_applies_changes(self, store):
        await store.create_execution(make_record())

        updated = await store.update_execution(
            "exec_1",
            status=ExecutionStatus.COMPLETED,
            output={"content": "done"},
            path=["A", "B"],
        )
        loaded = await store.load_execution("exec_1")

        assert updated.status == ExecutionStatus.COMPLETED
        assert loaded.status == ExecutionStatus.COMPLETED
        assert loaded.output == {"content": "done"}
        assert loaded.path == ["A", "B"]

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, store):
        with pytest.raises(KeyError):
            await store.update_execution("exec_missing", status=ExecutionStatus.RUNNING)

    @pytest.mark.asyncio
    async def test_node_logs_keep_append_order(self, store):
        await store.create_execution(make_record())
        await store.append_node_log(make_entry(node_id="A", data={"value": 1}))
        await store.append_node_log(make_entry(node_id="B", status="skipped"))
        await store.append_node_log(make_entry(node_id="A", data={"value": 2}))

        logs = await store.load_node_logs("exec_1")

        assert [entry.node_id for entry in logs] == ["A", "B", "A"]
        assert logs[0].data == {"value": 1}
        assert logs[1].status == "skipped"
        assert logs[2].data == {"value": 2}

    @pytest.mark.asyncio
    async def test_list_executions_filters_and_sorts(self, store):
        await store.create_execution(make_record("exec_1", started_at="2026-01-01T00:00:00"))
        await store.create_execution(make_record("exec_2", started_at="2026-01-03T00:00:00"))
        await store.create_execution(
            make_record("exec_3", workflow_id="wf_2", started_at="2026-01-02T00:00:00")
        )
        await store.update_execution("exec_2", status=ExecutionStatus.FAILED)

        everything = await store.list_executions()
        failed = await store.list_executions(status=ExecutionStatus.FAILED)
        by_workflow = await store.list_executions(workflow_id="wf_1")
        limited = await store.list_executions(limit=1)

        assert [r.execution_id for r in everything] == ["exec_2", "exec_3", "exec_1"]
        assert [r.execution_id for r in failed] == ["exec_2"]
        assert [r.execution_id for r in by_workflow] == ["exec_2", "exec_1"]
        assert [r.execution_id for r in limited] == ["exec_2"]


# === IN-MEMORY SPECIFICS ===


class TestInMemoryExecutionStore:
    @pytest.mark.asyncio
    async def test_loaded_records_are_copies(self):
        store = InMemoryExecutionStore()
        await store.create_execution(make_record())

        loaded = await store.load_execution("exec_1")
        loaded.path.append("tampered")

        assert (await store.load_execution("exec_1")).path == []


# === FILE STORE SPECIFICS ===


class TestFileExecutionStore:
    @pytest.mark.asyncio
    async def test_layout_on_disk(self, tmp_path: Path):
        store = FileExecutionStore(tmp_path)
        await store.create_execution(make_record())
        await store.append_node_log(make_entry())

        execution_dir = tmp_path / "executions" / "exec_1"
        assert (execution_dir / "execution.json").exists()
        assert (execution_dir / "nodes.jsonl").exists()
        assert not (execution_dir / "execution.tmp").exists()

    @pytest.mark.asyncio
    async def test_node_log_written_immediately(self, tmp_path: Path):
        store = FileExecutionStore(tmp_path)
        await store.create_execution(make_record())

        await store.append_node_log(make_entry(data={"text": "你好"}))

        content = (tmp_path / "executions" / "exec_1" / "nodes.jsonl").read_text("utf-8")
        assert content.count("\n") == 1
        assert "你好" in content

    @pytest.mark.asyncio
    async def test_corrupt_jsonl_line_skipped(self, tmp_path: Path):
        store = FileExecutionStore(tmp_path)
        await store.create_execution(make_record())
        await store.append_node_log(make_entry(node_id="A"))

        path = tmp_path / "executions" / "exec_1" / "nodes.jsonl"
        with open(path, "a", encoding="utf-8") as f:
            f.write('{"execution_id": "exec_1", "node_id": \n')
            f.write("\n")
        await store.append_node_log(make_entry(node_id="B"))

        logs = await store.load_node_logs("exec_1")

        assert [entry.node_id for entry in logs] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_corrupt_record_reads_as_missing(self, tmp_path: Path):
        store = FileExecutionStore(tmp_path)
        await store.create_execution(make_record())
        (tmp_path / "executions" / "exec_1" / "execution.json").write_text("{", "utf-8")

        assert await store.load_execution("exec_1") is None
        assert await store.list_executions() == []

    @pytest.mark.asyncio
    async def test_list_without_directory(self, tmp_path: Path):
        store = FileExecutionStore(tmp_path / "nothing-here")

        assert await store.list_executions() == []

    @pytest.mark.asyncio
    async def test_reopened_store_sees_records(self, tmp_path: Path):
        await FileExecutionStore(tmp_path).create_execution(make_record())

        loaded = await FileExecutionStore(str(tmp_path)).load_execution("exec_1")

        assert loaded is not None
        assert loaded.workflow_id == "wf_1"

    @pytest.mark.asyncio
    async def test_traversal_ids_rejected(self, tmp_path: Path):
        store = FileExecutionStore(tmp_path)

        with pytest.raises(ValueError):
            await store.create_execution(make_record("../escape"))


class TestValidateKey:
    @pytest.mark.parametrize(
        "key",
        ["", "   ", "a/b", "a\\b", "..", ".hidden", "x..y", "C:evil", "nul\x00byte"],
    )
    def test_rejected(self, key):
        with pytest.raises(ValueError):
            _validate_key(key)

    def test_accepted(self):
        _validate_key("exec_0123456789ab")
