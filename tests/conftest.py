"""Shared test doubles for the remote provider."""

from __future__ import annotations

import itertools
from collections import defaultdict
from pathlib import Path
from typing import Sequence

import pytest

from docassist.models import (
    Annotation,
    IndexState,
    IndexStatus,
    MessageText,
    RunState,
    RunStatus,
    ThreadMessage,
)
from docassist.remote.client import AgentSpec


class FakeRemoteClient:
    """Scriptable in-memory stand-in for the Assistants API.

    ``index_statuses`` is consumed one entry per status read (the last entry
    repeats). ``run_script`` is consumed one entry per ``create_run``: a
    ``RunState``-shaped tuple ``(status, error_code)`` or an exception to
    raise. ``replies`` is consumed per completed run: a ``MessageText`` or
    ``None`` for an assistant message without text.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.calls: list[str] = []
        self.failures: dict[str, list[Exception]] = defaultdict(list)
        self.index_statuses: list[IndexStatus] = [IndexStatus.READY]
        self.run_script: list[object] = []
        self.replies: list[MessageText | None] = []
        self.messages: dict[str, list[ThreadMessage]] = defaultdict(list)
        self.runs: dict[str, dict[str, RunState]] = defaultdict(dict)
        self.pending_outcomes: dict[str, RunState] = {}
        self.agents: dict[str, AgentSpec] = {}
        self.deleted: list[tuple[str, str]] = []
        self.cancelled: list[str] = []
        self.uploaded: list[Path] = []

    def _next(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def fail(self, operation: str, exc: Exception, times: int = 1) -> None:
        self.failures[operation].extend([exc] * times)

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)

    # provisioning
    def upload_file(self, path: Path) -> str:
        self._enter("upload_file")
        self.uploaded.append(Path(path))
        return self._next("file")

    def create_index(self, *, name: str, expiry_days: int) -> str:
        self._enter("create_index")
        self.index_expiry_days = expiry_days
        return self._next("vs")

    def attach_file(self, index_ref: str, file_ref: str) -> None:
        self._enter("attach_file")

    def get_index(self, index_ref: str) -> IndexState:
        self._enter("get_index")
        status = self.index_statuses.pop(0) if len(self.index_statuses) > 1 else self.index_statuses[0]
        return IndexState(index_ref=index_ref, status=status, completed_files=1 if status is IndexStatus.READY else 0)

    def create_agent(self, index_ref: str, spec: AgentSpec) -> str:
        self._enter("create_agent")
        agent_ref = self._next("asst")
        self.agents[agent_ref] = spec
        return agent_ref

    def create_thread(self) -> str:
        self._enter("create_thread")
        return self._next("thread")

    # conversation
    def post_message(self, thread_ref: str, content: str) -> str:
        self._enter("post_message")
        message_id = self._next("msg")
        self.messages[thread_ref].append(
            ThreadMessage(
                message_id=message_id,
                role="user",
                texts=(MessageText(value=content),),
                created_at=len(self.messages[thread_ref]) + 1,
            )
        )
        return message_id

    def create_run(self, thread_ref: str, agent_ref: str) -> RunState:
        self._enter("create_run")
        outcome = self.run_script.pop(0) if self.run_script else ("completed", None)
        if isinstance(outcome, Exception):
            raise outcome
        status, error_code = outcome
        run_id = self._next("run")
        final = RunState(
            run_id=run_id,
            status=RunStatus(status),
            last_error_code=error_code,
            last_error_message="Run did not complete" if error_code else None,
        )
        self.pending_outcomes[run_id] = final
        queued = RunState(run_id=run_id, status=RunStatus.QUEUED)
        self.runs[thread_ref][run_id] = queued
        return queued

    def get_run(self, thread_ref: str, run_id: str) -> RunState:
        self._enter("get_run")
        final = self.pending_outcomes.pop(run_id, None)
        if final is not None:
            self.runs[thread_ref][run_id] = final
            if final.status is RunStatus.COMPLETED:
                self._append_reply(thread_ref)
        return self.runs[thread_ref][run_id]

    def _append_reply(self, thread_ref: str) -> None:
        reply = self.replies.pop(0) if self.replies else MessageText(value="The main topic is photosynthesis.")
        self.messages[thread_ref].append(
            ThreadMessage(
                message_id=self._next("msg"),
                role="assistant",
                texts=() if reply is None else (reply,),
                created_at=len(self.messages[thread_ref]) + 1,
            )
        )

    def seed_run(self, thread_ref: str, status: RunStatus) -> str:
        run_id = self._next("run")
        self.runs[thread_ref][run_id] = RunState(run_id=run_id, status=status)
        return run_id

    def list_runs(self, thread_ref: str) -> Sequence[RunState]:
        self._enter("list_runs")
        return list(self.runs[thread_ref].values())

    def cancel_run(self, thread_ref: str, run_id: str) -> None:
        self._enter("cancel_run")
        self.cancelled.append(run_id)
        self.runs[thread_ref][run_id] = RunState(run_id=run_id, status=RunStatus.CANCELLED)

    def list_messages(self, thread_ref: str, *, limit: int, order: str = "desc") -> Sequence[ThreadMessage]:
        self._enter("list_messages")
        ordered = list(reversed(self.messages[thread_ref])) if order == "desc" else list(self.messages[thread_ref])
        return ordered[:limit]

    # teardown
    def delete_agent(self, agent_ref: str) -> None:
        self._enter("delete_agent")
        self.deleted.append(("agent", agent_ref))

    def delete_index(self, index_ref: str) -> None:
        self._enter("delete_index")
        self.deleted.append(("index", index_ref))

    def delete_file(self, file_ref: str) -> None:
        self._enter("delete_file")
        self.deleted.append(("file", file_ref))


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def cited_text(file_ref: str) -> MessageText:
    """Answer with three citations and one file-path annotation interleaved."""

    value = "Plants use light【4:0†source】 to make sugar【4:1†source】 stored as starch【sandbox】 in leaves【4:2†source】."
    annotations = []
    for literal, kind in (
        ("【4:0†source】", "file_citation"),
        ("【4:1†source】", "file_citation"),
        ("【sandbox】", "file_path"),
        ("【4:2†source】", "file_citation"),
    ):
        start = value.index(literal)
        annotations.append(
            Annotation(
                type=kind,
                text=literal,
                start_index=start,
                end_index=start + len(literal),
                file_ref=file_ref,
                quote=None if literal.endswith("2†source】") else f"quote for {literal}",
            )
        )
    return MessageText(value=value, annotations=tuple(annotations))


@pytest.fixture()
def remote() -> FakeRemoteClient:
    return FakeRemoteClient()


@pytest.fixture()
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture()
def document(tmp_path: Path) -> Path:
    path = tmp_path / "lesson.pdf"
    path.write_bytes(b"%PDF-1.4 photosynthesis lesson")
    return path
