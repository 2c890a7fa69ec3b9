"""Remote client adapter over the OpenAI Assistants API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol, Sequence, TypeVar

import openai
from openai import OpenAI

from docassist.errors import RateLimitedError, RemoteCallError, is_rate_limit_error
from docassist.models import (
    Annotation,
    IndexState,
    IndexStatus,
    MessageText,
    RunState,
    RunStatus,
    ThreadMessage,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_INDEX_STATUS_MAP: Mapping[str, IndexStatus] = {
    "in_progress": IndexStatus.PENDING,
    "completed": IndexStatus.READY,
    "expired": IndexStatus.FAILED,
}


@dataclass(frozen=True)
class AgentSpec:
    """Parameters for the question-answering agent bound to an index."""

    name: str
    instructions: str
    model: str
    temperature: float = 0.3


class RemoteClient(Protocol):
    """Protocol describing the provider calls the core depends on."""

    def upload_file(self, path: Path) -> str:
        """Upload a local document and return its file reference."""

    def create_index(self, *, name: str, expiry_days: int) -> str:
        """Create an empty vector index and return its reference."""

    def attach_file(self, index_ref: str, file_ref: str) -> None:
        """Register an uploaded file with an index."""

    def get_index(self, index_ref: str) -> IndexState:
        """Return the current indexing state."""

    def create_agent(self, index_ref: str, spec: AgentSpec) -> str:
        """Create an agent retrieving from ``index_ref``."""

    def create_thread(self) -> str:
        """Create an empty conversation thread."""

    def post_message(self, thread_ref: str, content: str) -> str:
        """Append a user message and return its id."""

    def create_run(self, thread_ref: str, agent_ref: str) -> RunState:
        """Start the agent on the thread's current history."""

    def get_run(self, thread_ref: str, run_id: str) -> RunState:
        """Return the state of one run."""

    def list_runs(self, thread_ref: str) -> Sequence[RunState]:
        """Return the runs recorded on a thread."""

    def cancel_run(self, thread_ref: str, run_id: str) -> None:
        """Request cancellation of a run."""

    def list_messages(self, thread_ref: str, *, limit: int, order: str = "desc") -> Sequence[ThreadMessage]:
        """Return thread messages, newest first by default."""

    def delete_agent(self, agent_ref: str) -> None: ...

    def delete_index(self, index_ref: str) -> None: ...

    def delete_file(self, file_ref: str) -> None: ...


class OpenAIAssistantsClient:
    """``RemoteClient`` backed by the official ``openai`` SDK.

    Provider errors are converted to :class:`RateLimitedError` when they
    signal throttling and to :class:`RemoteCallError` otherwise.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str | None = None,
        timeout: float = 60.0,
        client: Any | None = None,
    ) -> None:
        self._client = client or OpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
        LOGGER.info("OpenAI Assistants client initialised (base_url=%s)", base_url or "default")

    def _call(self, operation: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return fn(*args, **kwargs)
        except openai.APIError as exc:
            status_code = getattr(exc, "status_code", None)
            code = getattr(exc, "code", None)
            if is_rate_limit_error(exc):
                raise RateLimitedError(
                    f"{operation} throttled: {exc.message}",
                    status_code=status_code,
                    code=code,
                ) from exc
            raise RemoteCallError(f"{operation} failed: {exc.message}", operation=operation) from exc

    def upload_file(self, path: Path) -> str:
        with Path(path).open("rb") as handle:
            file = self._call("upload_file", self._client.files.create, file=handle, purpose="assistants")
        return file.id

    def create_index(self, *, name: str, expiry_days: int) -> str:
        store = self._call(
            "create_index",
            self._client.vector_stores.create,
            name=name,
            expires_after={"anchor": "last_active_at", "days": expiry_days},
        )
        return store.id

    def attach_file(self, index_ref: str, file_ref: str) -> None:
        self._call(
            "attach_file",
            self._client.vector_stores.files.create,
            vector_store_id=index_ref,
            file_id=file_ref,
        )

    def get_index(self, index_ref: str) -> IndexState:
        store = self._call("get_index", self._client.vector_stores.retrieve, index_ref)
        counts = getattr(store, "file_counts", None)
        completed = int(getattr(counts, "completed", 0) or 0)
        failed = int(getattr(counts, "failed", 0) or 0)
        status = _INDEX_STATUS_MAP.get(str(store.status), IndexStatus.PENDING)
        if status is IndexStatus.READY and completed == 0 and failed > 0:
            status = IndexStatus.FAILED
        return IndexState(index_ref=store.id, status=status, completed_files=completed, failed_files=failed)

    def create_agent(self, index_ref: str, spec: AgentSpec) -> str:
        assistant = self._call(
            "create_agent",
            self._client.beta.assistants.create,
            name=spec.name,
            instructions=spec.instructions,
            model=spec.model,
            tools=[{"type": "file_search"}],
            tool_resources={"file_search": {"vector_store_ids": [index_ref]}},
            temperature=spec.temperature,
        )
        return assistant.id

    def create_thread(self) -> str:
        thread = self._call("create_thread", self._client.beta.threads.create)
        return thread.id

    def post_message(self, thread_ref: str, content: str) -> str:
        message = self._call(
            "post_message",
            self._client.beta.threads.messages.create,
            thread_ref,
            role="user",
            content=content,
        )
        return message.id

    def create_run(self, thread_ref: str, agent_ref: str) -> RunState:
        run = self._call("create_run", self._client.beta.threads.runs.create, thread_ref, assistant_id=agent_ref)
        return _to_run_state(run)

    def get_run(self, thread_ref: str, run_id: str) -> RunState:
        run = self._call("get_run", self._client.beta.threads.runs.retrieve, run_id, thread_id=thread_ref)
        return _to_run_state(run)

    def list_runs(self, thread_ref: str) -> Sequence[RunState]:
        page = self._call("list_runs", self._client.beta.threads.runs.list, thread_ref)
        return [_to_run_state(run) for run in page.data]

    def cancel_run(self, thread_ref: str, run_id: str) -> None:
        self._call("cancel_run", self._client.beta.threads.runs.cancel, run_id, thread_id=thread_ref)

    def list_messages(self, thread_ref: str, *, limit: int, order: str = "desc") -> Sequence[ThreadMessage]:
        page = self._call(
            "list_messages",
            self._client.beta.threads.messages.list,
            thread_ref,
            limit=limit,
            order=order,
        )
        return [_to_thread_message(message) for message in page.data]

    def delete_agent(self, agent_ref: str) -> None:
        self._call("delete_agent", self._client.beta.assistants.delete, agent_ref)

    def delete_index(self, index_ref: str) -> None:
        self._call("delete_index", self._client.vector_stores.delete, index_ref)

    def delete_file(self, file_ref: str) -> None:
        self._call("delete_file", self._client.files.delete, file_ref)


def _to_run_state(run: Any) -> RunState:
    try:
        status = RunStatus(str(run.status))
    except ValueError:
        LOGGER.warning("Unknown run status %r for run %s; treating as failed", run.status, run.id)
        status = RunStatus.FAILED
    last_error = getattr(run, "last_error", None)
    return RunState(
        run_id=run.id,
        status=status,
        last_error_code=getattr(last_error, "code", None) if last_error else None,
        last_error_message=getattr(last_error, "message", None) if last_error else None,
    )


def _to_annotation(raw: Any) -> Annotation:
    kind = str(getattr(raw, "type", ""))
    citation = getattr(raw, "file_citation", None) if kind == "file_citation" else None
    file_path = getattr(raw, "file_path", None) if kind == "file_path" else None
    source = citation or file_path
    return Annotation(
        type=kind,
        text=getattr(raw, "text", "") or "",
        start_index=getattr(raw, "start_index", None),
        end_index=getattr(raw, "end_index", None),
        file_ref=getattr(source, "file_id", None) if source else None,
        quote=getattr(citation, "quote", None) if citation else None,
    )


def _to_thread_message(message: Any) -> ThreadMessage:
    texts: list[MessageText] = []
    for block in message.content or []:
        if getattr(block, "type", None) != "text":
            continue
        text = getattr(block, "text", None)
        if text is None:
            continue
        annotations = tuple(_to_annotation(item) for item in (getattr(text, "annotations", None) or []))
        texts.append(MessageText(value=getattr(text, "value", "") or "", annotations=annotations))
    return ThreadMessage(
        message_id=message.id,
        role=str(message.role),
        texts=tuple(texts),
        created_at=int(getattr(message, "created_at", 0) or 0),
    )
