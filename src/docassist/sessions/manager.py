"""Single-writer handle holding the active document session."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Callable

from docassist.config import Settings
from docassist.errors import NotInitializedError
from docassist.metrics.observability import PipelineMetrics, get_logger
from docassist.models import EMPTY_SESSION, Answer, HistoryEntry, Session, SessionStatus, TeardownResult
from docassist.remote.client import OpenAIAssistantsClient, RemoteClient
from docassist.services.prompts import Task, build_task_prompt
from docassist.services.query import QueryConfig, QueryOrchestrator
from docassist.sessions.lifecycle import LifecycleConfig, SessionLifecycle


class SessionManager:
    """Owns the one active session and serialises every operation on it.

    Remote operations run under a single lock, retry sleeps included, so the
    session is never mutated while a query is in flight. ``is_ready`` and
    ``get_status`` read the current immutable snapshot without locking.
    """

    def __init__(
        self,
        client: RemoteClient | None,
        *,
        lifecycle_config: LifecycleConfig | None = None,
        query_config: QueryConfig | None = None,
        history_limit: int = 20,
        default_language: str = "english",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._lifecycle = SessionLifecycle(client, lifecycle_config, sleep=sleep) if client else None
        self._orchestrator = QueryOrchestrator(client, query_config, sleep=sleep) if client else None
        self._history_limit = history_limit
        self._default_language = default_language
        self._session: Session = EMPTY_SESSION
        self._lock = threading.Lock()
        self._logger = get_logger("sessions")

    @property
    def initialized(self) -> bool:
        return self._client is not None

    @property
    def session(self) -> Session:
        return self._session

    def is_ready(self) -> bool:
        return self.initialized and self._session.ready

    def get_status(self) -> SessionStatus:
        return SessionStatus.from_session(self._session, initialized=self.initialized)

    def _require_client(self) -> None:
        if self._client is None:
            raise NotInitializedError("Remote client not initialised: no API credentials configured")

    def _publish(self, session: Session) -> None:
        self._session = session
        PipelineMetrics.session_ready.set(1 if session.ready else 0)

    def establish_session(self, document_path: Path | str) -> Session:
        """Replace any active session with one built from ``document_path``."""

        self._require_client()
        with self._lock:
            if not self._session.is_empty:
                self._logger.info("sessions.replacing", thread_ref=self._session.thread_ref)
                self._lifecycle.teardown(self._session)
                self._publish(EMPTY_SESSION)
            session = self._lifecycle.establish_session(document_path)
            self._publish(session)
            return session

    def ask(self, question: str) -> Answer:
        self._require_client()
        with self._lock:
            return self._orchestrator.ask(self._session, question)

    def ask_task(self, task: Task | str, language: str | None = None) -> Answer:
        prompt = build_task_prompt(task, language, default_language=self._default_language)
        self._logger.info("sessions.task", task=Task(task).value, language=language or self._default_language)
        return self.ask(prompt)

    def get_history(self, limit: int | None = None) -> list[HistoryEntry]:
        self._require_client()
        with self._lock:
            return self._orchestrator.get_history(
                self._session, self._history_limit if limit is None else limit
            )

    def reset_conversation(self) -> str:
        self._require_client()
        with self._lock:
            session = self._lifecycle.reset_conversation(self._session)
            self._publish(session)
            return session.thread_ref

    def teardown(self) -> TeardownResult:
        """Release every remote resource; the session is empty afterwards."""

        if self._client is None:
            return TeardownResult()
        with self._lock:
            try:
                return self._lifecycle.teardown(self._session)
            finally:
                self._publish(EMPTY_SESSION)


def build_session_manager(settings: Settings, *, client: RemoteClient | None = None) -> SessionManager:
    """Wire a manager from settings; without credentials it stays uninitialised."""

    if client is None and settings.has_credentials:
        client = OpenAIAssistantsClient(
            settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.openai_timeout_seconds,
        )
    return SessionManager(
        client,
        lifecycle_config=LifecycleConfig(
            index_name=settings.index_name,
            index_expiry_days=settings.index_expiry_days,
            poll_interval_seconds=settings.index_poll_interval_seconds,
            poll_max_attempts=settings.index_poll_max_attempts,
            agent_name=settings.assistant_name,
            agent_model=settings.assistant_model,
            agent_temperature=settings.assistant_temperature,
        ),
        query_config=QueryConfig(
            max_retries=settings.max_retries,
            run_rate_limit_backoff_seconds=settings.run_rate_limit_backoff_seconds,
            error_rate_limit_backoff_seconds=settings.error_rate_limit_backoff_seconds,
            run_poll_interval_seconds=settings.run_poll_interval_seconds,
            run_poll_max_attempts=settings.run_poll_max_attempts,
            cancel_grace_seconds=settings.cancel_grace_seconds,
            repost_message_on_retry=settings.repost_message_on_retry,
        ),
        history_limit=settings.history_limit,
        default_language=settings.default_language,
    )
