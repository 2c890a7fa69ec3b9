"""Shared domain models used across the docassist pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Sequence


class IndexStatus(str, Enum):
    """Indexing state of a remote vector index."""

    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class RunStatus(str, Enum):
    """Lifecycle states of one agent run on a thread."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    REQUIRES_ACTION = "requires_action"
    CANCELLING = "cancelling"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    INCOMPLETE = "incomplete"

    @property
    def is_active(self) -> bool:
        return self in _ACTIVE_RUN_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self not in _ACTIVE_RUN_STATUSES


_ACTIVE_RUN_STATUSES = frozenset(
    {RunStatus.QUEUED, RunStatus.IN_PROGRESS, RunStatus.REQUIRES_ACTION, RunStatus.CANCELLING}
)

# Statuses that the preemption step cancels before a new question is posted.
PREEMPTIBLE_RUN_STATUSES = frozenset({RunStatus.QUEUED, RunStatus.IN_PROGRESS, RunStatus.REQUIRES_ACTION})


@dataclass(frozen=True)
class IndexState:
    """Snapshot of a remote index as returned by a status poll."""

    index_ref: str
    status: IndexStatus
    completed_files: int = 0
    failed_files: int = 0


@dataclass(frozen=True)
class RunState:
    """Snapshot of one run."""

    run_id: str
    status: RunStatus
    last_error_code: str | None = None
    last_error_message: str | None = None

    @property
    def failure_reason(self) -> str:
        if self.last_error_code or self.last_error_message:
            return f"{self.last_error_code or 'error'}: {self.last_error_message or ''}".strip()
        return self.status.value


@dataclass(frozen=True)
class Annotation:
    """Annotation attached to a span of generated text.

    ``start_index``/``end_index`` delimit the annotated span in the raw text
    (end exclusive); either may be missing when the provider omits offsets.
    """

    type: str
    text: str
    start_index: int | None = None
    end_index: int | None = None
    file_ref: str | None = None
    quote: str | None = None


@dataclass(frozen=True)
class MessageText:
    """One text payload of a thread message."""

    value: str
    annotations: Sequence[Annotation] = field(default_factory=tuple)


@dataclass(frozen=True)
class ThreadMessage:
    """Message stored on a conversation thread."""

    message_id: str
    role: str
    texts: Sequence[MessageText] = field(default_factory=tuple)
    created_at: int = 0

    @property
    def first_text(self) -> MessageText | None:
        for text in self.texts:
            if text.value:
                return text
        return None


@dataclass(frozen=True)
class Session:
    """Identifiers of the remote resources backing one document conversation."""

    file_ref: str | None = None
    index_ref: str | None = None
    agent_ref: str | None = None
    thread_ref: str | None = None
    document_name: str | None = None
    established_at: datetime | None = None

    @property
    def ready(self) -> bool:
        return bool(self.agent_ref) and bool(self.thread_ref)

    @property
    def is_empty(self) -> bool:
        return not (self.file_ref or self.index_ref or self.agent_ref or self.thread_ref)


EMPTY_SESSION = Session()


@dataclass(frozen=True)
class Citation:
    """Pointer from an answer marker back to the source document."""

    ordinal: int
    quote: str
    file_ref: str | None


@dataclass(frozen=True)
class Answer:
    """Answer produced by the agent with its citations."""

    text: str
    citations: Sequence[Citation]
    attempts: int = 1
    latency_ms: float = 0.0


@dataclass(frozen=True)
class HistoryEntry:
    role: str
    content: str
    timestamp: int


@dataclass(frozen=True)
class TeardownResult:
    """Outcome of a teardown; errors are collected, never raised."""

    errors: Sequence[str] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class SessionStatus:
    """Read-only snapshot reported to status and health endpoints."""

    initialized: bool
    has_agent: bool
    has_index: bool
    has_thread: bool
    has_file: bool
    agent_ref: str | None
    index_ref: str | None
    thread_ref: str | None
    file_ref: str | None
    ready: bool

    @classmethod
    def from_session(cls, session: Session, *, initialized: bool) -> "SessionStatus":
        return cls(
            initialized=initialized,
            has_agent=bool(session.agent_ref),
            has_index=bool(session.index_ref),
            has_thread=bool(session.thread_ref),
            has_file=bool(session.file_ref),
            agent_ref=session.agent_ref,
            index_ref=session.index_ref,
            thread_ref=session.thread_ref,
            file_ref=session.file_ref,
            ready=initialized and session.ready,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "initialized": self.initialized,
            "has_agent": self.has_agent,
            "has_index": self.has_index,
            "has_thread": self.has_thread,
            "has_file": self.has_file,
            "agent_ref": self.agent_ref,
            "index_ref": self.index_ref,
            "thread_ref": self.thread_ref,
            "file_ref": self.file_ref,
            "ready": self.ready,
        }
