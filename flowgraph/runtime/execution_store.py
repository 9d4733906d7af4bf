"""Storage for execution records and per-node logs.

The engine creates a record when a run starts, moves it through
PENDING -> RUNNING -> COMPLETED | FAILED and appends one node log entry per
dispatch or skip. Two implementations are provided:

- ``InMemoryExecutionStore``: dict-backed, for tests and embedding.
- ``FileExecutionStore``: one directory per execution. Node logs use JSONL
  so every entry is on disk as soon as it is logged; the record itself is
  rewritten atomically on each status change.

Storage layout (file store)::

    {base_path}/
      executions/
        {execution_id}/
          execution.json   # ExecutionRecord, rewritten on every update
          nodes.jsonl      # NodeLogEntry, appended per node
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from flowgraph.runtime.execution_schemas import ExecutionRecord, ExecutionStatus, NodeLogEntry

logger = logging.getLogger(__name__)


class ExecutionStore(ABC):
    """Persistence contract owed by the engine."""

    @abstractmethod
    async def create_execution(self, record: ExecutionRecord) -> None:
        """Persist a new execution record."""

    @abstractmethod
    async def update_execution(self, execution_id: str, **changes: Any) -> ExecutionRecord:
        """Apply field changes to an existing record and return the updated record."""

    @abstractmethod
    async def append_node_log(self, entry: NodeLogEntry) -> None:
        """Append one node log entry."""

    @abstractmethod
    async def load_execution(self, execution_id: str) -> ExecutionRecord | None:
        """Load a record, or None if it does not exist."""

    @abstractmethod
    async def load_node_logs(self, execution_id: str) -> list[NodeLogEntry]:
        """Load node log entries in append order."""

    async def list_executions(
        self,
        status: ExecutionStatus | str = "",
        workflow_id: str = "",
        limit: int = 20,
    ) -> list[ExecutionRecord]:
        """List records, most recent first, optionally filtered."""
        records = []
        for record in await self._all_records():
            if status and record.status != status:
                continue
            if workflow_id and record.workflow_id != workflow_id:
                continue
            records.append(record)
        records.sort(key=lambda r: r.started_at, reverse=True)
        return records[:limit]

    @abstractmethod
    async def _all_records(self) -> list[ExecutionRecord]: ...


class InMemoryExecutionStore(ExecutionStore):
    def __init__(self) -> None:
        self._records: dict[str, ExecutionRecord] = {}
        self._node_logs: dict[str, list[NodeLogEntry]] = {}

    async def create_execution(self, record: ExecutionRecord) -> None:
        if record.execution_id in self._records:
            raise ValueError(f"Execution '{record.execution_id}' already exists")
        self._records[record.execution_id] = record.model_copy(deep=True)
        self._node_logs[record.execution_id] = []

    async def update_execution(self, execution_id: str, **changes: Any) -> ExecutionRecord:
        record = self._records.get(execution_id)
        if record is None:
            raise KeyError(f"Execution '{execution_id}' not found")
        updated = record.model_copy(update=changes)
        self._records[execution_id] = updated
        return updated.model_copy(deep=True)

    async def append_node_log(self, entry: NodeLogEntry) -> None:
        self._node_logs.setdefault(entry.execution_id, []).append(entry.model_copy(deep=True))

    async def load_execution(self, execution_id: str) -> ExecutionRecord | None:
        record = self._records.get(execution_id)
        return record.model_copy(deep=True) if record is not None else None

    async def load_node_logs(self, execution_id: str) -> list[NodeLogEntry]:
        return [e.model_copy(deep=True) for e in self._node_logs.get(execution_id, [])]

    async def _all_records(self) -> list[ExecutionRecord]:
        return [r.model_copy(deep=True) for r in self._records.values()]


class FileExecutionStore(ExecutionStore):
    """File-backed store. Each execution gets its own directory."""

    def __init__(self, base_path: str | Path) -> None:
        self.base_path = Path(base_path)
        self._executions_dir = self.base_path / "executions"

    def _execution_dir(self, execution_id: str) -> Path:
        _validate_key(execution_id)
        return self._executions_dir / execution_id

    async def create_execution(self, record: ExecutionRecord) -> None:
        execution_dir = self._execution_dir(record.execution_id)
        if await asyncio.to_thread((execution_dir / "execution.json").exists):
            raise ValueError(f"Execution '{record.execution_id}' already exists")
        await asyncio.to_thread(execution_dir.mkdir, parents=True, exist_ok=True)
        await _write_json(execution_dir / "execution.json", record.model_dump())

    async def update_execution(self, execution_id: str, **changes: Any) -> ExecutionRecord:
        record = await self.load_execution(execution_id)
        if record is None:
            raise KeyError(f"Execution '{execution_id}' not found")
        updated = record.model_copy(update=changes)
        path = self._execution_dir(execution_id) / "execution.json"
        await _write_json(path, updated.model_dump())
        return updated

    async def append_node_log(self, entry: NodeLogEntry) -> None:
        execution_dir = self._execution_dir(entry.execution_id)
        line = json.dumps(entry.model_dump(), ensure_ascii=False, default=str) + "\n"

        def _append() -> None:
            execution_dir.mkdir(parents=True, exist_ok=True)
            with open(execution_dir / "nodes.jsonl", "a", encoding="utf-8") as f:
                f.write(line)

        await asyncio.to_thread(_append)

    async def load_execution(self, execution_id: str) -> ExecutionRecord | None:
        data = await _read_json(self._execution_dir(execution_id) / "execution.json")
        return ExecutionRecord(**data) if data is not None else None

    async def load_node_logs(self, execution_id: str) -> list[NodeLogEntry]:
        path = self._execution_dir(execution_id) / "nodes.jsonl"
        return await asyncio.to_thread(_read_jsonl_as_models, path, NodeLogEntry)

    async def _all_records(self) -> list[ExecutionRecord]:
        def _scan() -> list[str]:
            if not self._executions_dir.exists():
                return []
            return [d.name for d in self._executions_dir.iterdir() if d.is_dir()]

        records = []
        for execution_id in await asyncio.to_thread(_scan):
            record = await self.load_execution(execution_id)
            if record is not None:
                records.append(record)
        return records


# -------------------------------------------------------------------
# Module-level helpers
# -------------------------------------------------------------------


def _validate_key(key: str) -> None:
    """
    Validate an execution id before using it as a directory name.

    Raises:
        ValueError: If the key is empty or could escape the storage directory
    """
    if not key or key.strip() == "":
        raise ValueError("Key cannot be empty")

    if "/" in key or "\\" in key:
        raise ValueError(f"Invalid key format: path separators not allowed in '{key}'")

    if ".." in key or key.startswith("."):
        raise ValueError(f"Invalid key format: path traversal detected in '{key}'")

    if len(key) > 1 and key[1] == ":":
        raise ValueError(f"Invalid key format: absolute paths not allowed in '{key}'")

    if "\x00" in key:
        raise ValueError("Invalid key format: null bytes not allowed")


async def _write_json(path: Path, data: dict) -> None:
    """Write JSON atomically: write to .tmp then rename."""
    tmp = path.with_suffix(".tmp")
    content = json.dumps(data, indent=2, ensure_ascii=False, default=str)

    def _write() -> None:
        tmp.write_text(content, encoding="utf-8")
        tmp.replace(path)

    await asyncio.to_thread(_write)


async def _read_json(path: Path) -> dict | None:
    """Read and parse a JSON file. Returns None if missing or corrupt."""

    def _read() -> dict | None:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to read %s: %s", path, e)
            return None

    return await asyncio.to_thread(_read)


def _read_jsonl_as_models(path: Path, model_cls: type) -> list:
    """Parse a JSONL file into a list of Pydantic model instances.

    Skips blank lines and corrupt lines (partial writes from crashes).
    """
    results = []
    if not path.exists():
        return results
    try:
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    results.append(model_cls(**json.loads(line)))
                except (json.JSONDecodeError, TypeError, ValueError) as e:
                    logger.warning("Skipping corrupt JSONL line in %s: %s", path, e)
    except OSError as e:
        logger.warning("Failed to read %s: %s", path, e)
    return results
