"""Provisioning and teardown of the remote resources behind a session."""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from docassist.errors import DocumentNotFoundError, IndexingFailedError, NoAgentError
from docassist.metrics.observability import PipelineMetrics, TimedSection, get_logger
from docassist.models import EMPTY_SESSION, IndexStatus, Session, TeardownResult
from docassist.remote.client import AgentSpec, RemoteClient
from docassist.services.prompts import ASSISTANT_INSTRUCTIONS


@dataclass(frozen=True)
class LifecycleConfig:
    """Configuration for session provisioning."""

    index_name: str = "docassist Document Store"
    index_expiry_days: int = 7
    poll_interval_seconds: float = 1.0
    poll_max_attempts: int = 60
    agent_name: str = "Education Automation Assistant"
    agent_model: str = "gpt-4o-mini"
    agent_temperature: float = 0.3
    agent_instructions: str = ASSISTANT_INSTRUCTIONS


class SessionLifecycle:
    """Turns an uploaded document into a ready session and tears it down again."""

    def __init__(
        self,
        client: RemoteClient,
        config: LifecycleConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._config = config or LifecycleConfig()
        self._sleep = sleep
        self._logger = get_logger("lifecycle")

    def establish_session(self, document_path: Path | str) -> Session:
        """Provision file, index, agent and thread for ``document_path``.

        Any failure rolls back whatever was already created and re-raises the
        original exception.
        """

        path = Path(document_path)
        if not path.is_file():
            raise DocumentNotFoundError(f"File not found: {path}")

        session = replace(EMPTY_SESSION, document_name=path.name)
        try:
            with TimedSection(PipelineMetrics.provisioning_latency.observe):
                session = replace(session, file_ref=self._client.upload_file(path))
                self._logger.info("session.file_uploaded", file_ref=session.file_ref)

                index_ref = self._client.create_index(
                    name=self._config.index_name,
                    expiry_days=self._config.index_expiry_days,
                )
                session = replace(session, index_ref=index_ref)
                self._logger.info("session.index_created", index_ref=index_ref)

                self._client.attach_file(index_ref, session.file_ref)
                attempts = self._wait_for_index(index_ref)
                PipelineMetrics.index_poll_attempts.observe(attempts)

                agent_ref = self._client.create_agent(
                    index_ref,
                    AgentSpec(
                        name=self._config.agent_name,
                        instructions=self._config.agent_instructions,
                        model=self._config.agent_model,
                        temperature=self._config.agent_temperature,
                    ),
                )
                session = replace(session, agent_ref=agent_ref)
                self._logger.info("session.agent_created", agent_ref=agent_ref)

                session = replace(
                    session,
                    thread_ref=self._client.create_thread(),
                    established_at=datetime.now(timezone.utc),
                )
        except Exception as exc:
            PipelineMetrics.provisioning_failures.inc()
            self._logger.error("session.setup_failed", error=str(exc), document=path.name)
            rollback = self.teardown(session)
            if not rollback.ok:
                self._logger.warning("session.rollback_incomplete", errors=list(rollback.errors))
            raise

        self._logger.info(
            "session.established",
            file_ref=session.file_ref,
            index_ref=session.index_ref,
            agent_ref=session.agent_ref,
            thread_ref=session.thread_ref,
        )
        return session

    def _wait_for_index(self, index_ref: str) -> int:
        status = IndexStatus.PENDING
        for attempt in range(1, self._config.poll_max_attempts + 1):
            state = self._client.get_index(index_ref)
            status = state.status
            if status is IndexStatus.READY:
                self._logger.info(
                    "session.index_ready",
                    index_ref=index_ref,
                    attempts=attempt,
                    completed_files=state.completed_files,
                )
                return attempt
            if status is IndexStatus.FAILED:
                break
            if attempt < self._config.poll_max_attempts:
                self._sleep(self._config.poll_interval_seconds)
        raise IndexingFailedError(
            f"Index processing failed with status: {status.value}",
            status=status.value,
        )

    def teardown(self, session: Session) -> TeardownResult:
        """Delete agent, index and file; collect failures instead of raising.

        The thread is left to expire on the provider side. Callers must treat
        the session as empty afterwards whatever the outcome.
        """

        if session.is_empty:
            return TeardownResult()

        errors: list[str] = []
        deletions = (
            ("agent", session.agent_ref, self._client.delete_agent),
            ("index", session.index_ref, self._client.delete_index),
            ("file", session.file_ref, self._client.delete_file),
        )
        for resource, ref, delete in deletions:
            if not ref:
                continue
            try:
                delete(ref)
            except Exception as exc:
                PipelineMetrics.teardown_errors.labels(resource=resource).inc()
                errors.append(f"Failed to delete {resource}: {exc}")
                continue
            self._logger.info("session.resource_deleted", resource=resource, ref=ref)

        if session.thread_ref:
            self._logger.info("session.thread_released", thread_ref=session.thread_ref)
        if errors:
            self._logger.warning("session.teardown_incomplete", errors=errors)
        else:
            self._logger.info("session.teardown_complete")
        return TeardownResult(errors=tuple(errors))

    def reset_conversation(self, session: Session) -> Session:
        """Start a fresh thread, keeping the indexed document and agent."""

        if not session.agent_ref:
            raise NoAgentError("No agent to reset conversation for")
        thread_ref = self._client.create_thread()
        self._logger.info("session.conversation_reset", previous=session.thread_ref, thread_ref=thread_ref)
        return replace(session, thread_ref=thread_ref)
