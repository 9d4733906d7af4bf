"""Pydantic models for persisted execution records.

Record level:  one ExecutionRecord per run (status, totals, timing, output)
Node level:    one NodeLogEntry per node dispatch or skip, appended as it happens
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class ExecutionStatus(StrEnum):
    """Lifecycle of a run: PENDING -> RUNNING -> COMPLETED | FAILED."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class NodeLogEntry(BaseModel):
    """One node dispatch (or skip) within a run.

    Loop body nodes produce one entry per pass, so a node id may repeat.
    """

    execution_id: str
    node_id: str
    node_name: str = ""
    node_type: str = ""
    status: str = ""  # "success"|"error"|"skipped"
    data: Any = None
    error: str | None = None
    stacktrace: str = ""  # Full stack trace if the processor raised
    started_at: str = ""  # ISO timestamp
    completed_at: str = ""
    duration_ms: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ExecutionRecord(BaseModel):
    """Run-level record for one workflow execution."""

    execution_id: str
    workflow_id: str = ""
    workflow_name: str = ""
    status: ExecutionStatus = ExecutionStatus.PENDING
    input: dict[str, Any] = Field(default_factory=dict)
    output: Any = None
    error: str | None = None
    error_detail: dict[str, Any] | None = None  # analyze_error() output for the failing node
    failed_node_id: str | None = None
    started_at: str = ""  # ISO timestamp
    completed_at: str = ""
    duration_ms: int = 0
    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    path: list[str] = Field(default_factory=list)
    skipped_node_ids: list[str] = Field(default_factory=list)
