"""Query orchestration against an established session."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from tenacity import RetryCallState, Retrying, retry_if_exception, retry_if_result, stop_after_attempt

from docassist.errors import (
    RATE_LIMIT_MARKER,
    EmptyQuestionError,
    NoActiveSessionError,
    RateLimitedError,
    RunFailedError,
    RunTimeoutError,
    is_rate_limit_error,
)
from docassist.metrics.observability import PipelineMetrics, get_logger
from docassist.models import (
    PREEMPTIBLE_RUN_STATUSES,
    Answer,
    HistoryEntry,
    RunState,
    RunStatus,
    Session,
)
from docassist.remote.client import RemoteClient
from docassist.services.citations import extract_citations

NO_TEXT_FALLBACK = (
    "The assistant processed the document but didn't return a text response. "
    "This can happen if the document content is restricted or unreadable."
)


def _is_rate_limited_run(run: RunState) -> bool:
    return run.last_error_code == RATE_LIMIT_MARKER or RATE_LIMIT_MARKER in run.failure_reason


def _is_retryable_outcome(result: object) -> bool:
    return isinstance(result, RunState) and _is_rate_limited_run(result)


@dataclass(frozen=True)
class QueryConfig:
    """Configuration for query execution."""

    max_retries: int = 5
    run_rate_limit_backoff_seconds: float = 30.0
    error_rate_limit_backoff_seconds: float = 35.0
    run_poll_interval_seconds: float = 1.0
    run_poll_max_attempts: int = 300
    cancel_grace_seconds: float = 1.0
    repost_message_on_retry: bool = False


@dataclass
class _AskProgress:
    """What one ``ask`` has achieved so far, carried across retries."""

    question: str
    start: float
    attempts: int = 0
    message_posted: bool = False
    in_flight: RunState | None = None
    run_completed: bool = False


class QueryOrchestrator:
    """Asks questions on a session's thread and parses the answers."""

    def __init__(
        self,
        client: RemoteClient,
        config: QueryConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._config = config or QueryConfig()
        self._sleep = sleep
        self._logger = get_logger("query")

    def ask(self, session: Session, question: str) -> Answer:
        """Answer ``question`` on the session's thread.

        Throttling, raised or reported by a failed run, is retried up to
        ``max_retries`` times. Each retry resumes where the previous attempt
        stopped: a posted question is not posted again, a run still in flight
        is polled again, and a completed run only has its answer re-read.
        """

        if not session.ready:
            raise NoActiveSessionError("Assistant not set up. Upload a document first.")
        if not question or not question.strip():
            raise EmptyQuestionError("Question cannot be empty")

        progress = _AskProgress(question=question, start=time.perf_counter())
        self._preempt_active_runs(session.thread_ref)

        retrying = Retrying(
            stop=stop_after_attempt(self._config.max_retries + 1),
            wait=self._backoff,
            retry=retry_if_exception(is_rate_limit_error) | retry_if_result(_is_retryable_outcome),
            before_sleep=self._log_retry,
            retry_error_callback=self._retries_exhausted,
            sleep=self._sleep,
        )
        try:
            outcome = retrying(self._attempt, session, progress)
        except Exception as exc:
            self._logger.error("query.failed", attempts=progress.attempts, error=str(exc))
            raise

        if isinstance(outcome, RunState):
            reason = outcome.failure_reason
            raise RunFailedError(f"Assistant run failed: {reason}", status=outcome.status.value, reason=reason)
        PipelineMetrics.observe_query(time.perf_counter() - progress.start, progress.attempts)
        return outcome

    def _attempt(self, session: Session, progress: _AskProgress) -> Answer | RunState:
        progress.attempts += 1
        if not progress.run_completed:
            run = self._advance_run(session, progress)
            self._logger.info("query.run_finished", attempt=progress.attempts, status=run.status.value)
            if run.status is not RunStatus.COMPLETED:
                return run
            progress.run_completed = True
        return self._read_answer(session, attempts=progress.attempts, start=progress.start)

    def _advance_run(self, session: Session, progress: _AskProgress) -> RunState:
        thread_ref = session.thread_ref
        if progress.in_flight is not None and self._config.repost_message_on_retry:
            self._cancel_quietly(thread_ref, progress.in_flight.run_id, event="query.abandoned_cancel_failed")
            progress.in_flight = None

        if progress.in_flight is None:
            if not progress.message_posted or self._config.repost_message_on_retry:
                self._client.post_message(thread_ref, progress.question)
                progress.message_posted = True
            self._logger.info("query.run_started", attempt=progress.attempts, thread_ref=thread_ref)
            progress.in_flight = self._client.create_run(thread_ref, session.agent_ref)
        else:
            self._logger.info("query.run_resumed", attempt=progress.attempts, run_id=progress.in_flight.run_id)

        run = self._poll_run(thread_ref, progress)
        progress.in_flight = None
        return run

    def _backoff(self, retry_state: RetryCallState) -> float:
        if retry_state.outcome is not None and retry_state.outcome.failed:
            return self._config.error_rate_limit_backoff_seconds
        return self._config.run_rate_limit_backoff_seconds

    def _log_retry(self, retry_state: RetryCallState) -> None:
        failed = retry_state.outcome.failed
        PipelineMetrics.rate_limit_retries.labels(source="error" if failed else "run").inc()
        self._logger.warning(
            "query.retry",
            reason="rate_limit_error" if failed else "rate_limited_run",
            retry=retry_state.attempt_number,
            max_retries=self._config.max_retries,
            wait_seconds=self._backoff(retry_state),
        )

    def _retries_exhausted(self, retry_state: RetryCallState) -> RunState:
        outcome = retry_state.outcome
        attempts = retry_state.attempt_number
        if not outcome.failed:
            self._logger.error("query.rate_limit_exhausted", attempts=attempts, reason="rate_limited_run")
            return outcome.result()
        exc = outcome.exception()
        self._logger.error("query.rate_limit_exhausted", attempts=attempts, error=str(exc))
        if isinstance(exc, RateLimitedError):
            raise exc
        raise RateLimitedError(
            f"Rate limit persisted after {attempts} attempts: {exc}",
            status_code=getattr(exc, "status_code", None),
            code=getattr(exc, "code", None),
        ) from exc

    def _preempt_active_runs(self, thread_ref: str) -> None:
        """Cancel stale runs on the thread; failures are logged, never raised."""

        requested: list[str] = []
        try:
            runs = self._client.list_runs(thread_ref)
        except Exception as exc:
            self._logger.warning("query.preempt_list_failed", error=str(exc))
            return
        for run in runs:
            if run.status not in PREEMPTIBLE_RUN_STATUSES:
                continue
            if not self._cancel_quietly(thread_ref, run.run_id, event="query.cancel_failed"):
                continue
            PipelineMetrics.cancelled_runs.inc()
            self._logger.info("query.cancel_requested", run_id=run.run_id, status=run.status.value)
            requested.append(run.run_id)

        if not requested:
            return
        self._sleep(self._config.cancel_grace_seconds)
        for run_id in requested:
            try:
                state = self._client.get_run(thread_ref, run_id)
            except Exception as exc:
                self._logger.warning("query.cancel_check_failed", run_id=run_id, error=str(exc))
                continue
            if state.status.is_active:
                self._logger.warning("query.cancel_pending", run_id=run_id, status=state.status.value)

    def _cancel_quietly(self, thread_ref: str, run_id: str, *, event: str) -> bool:
        try:
            self._client.cancel_run(thread_ref, run_id)
        except Exception as exc:
            self._logger.warning(event, run_id=run_id, error=str(exc))
            return False
        return True

    def _poll_run(self, thread_ref: str, progress: _AskProgress) -> RunState:
        """Poll the in-flight run until it is terminal; ``progress`` tracks the latest state."""

        run = progress.in_flight
        for _ in range(self._config.run_poll_max_attempts):
            if run.status.is_terminal:
                return run
            self._sleep(self._config.run_poll_interval_seconds)
            run = self._client.get_run(thread_ref, run.run_id)
            progress.in_flight = run
        if run.status.is_terminal:
            return run

        self._cancel_quietly(thread_ref, run.run_id, event="query.timeout_cancel_failed")
        progress.in_flight = None
        raise RunTimeoutError(
            f"Run {run.run_id} did not finish after {self._config.run_poll_max_attempts} status checks "
            f"(last status: {run.status.value})"
        )

    def _read_answer(self, session: Session, *, attempts: int, start: float) -> Answer:
        messages = self._client.list_messages(session.thread_ref, limit=1, order="desc")
        latest = messages[0] if messages else None
        if latest is None or latest.role != "assistant":
            raise RunFailedError("No assistant response found", status=RunStatus.COMPLETED.value)

        payload = latest.first_text
        if payload is None:
            self._logger.warning("query.no_text_content", message_id=latest.message_id)
            return Answer(
                text=NO_TEXT_FALLBACK,
                citations=[],
                attempts=attempts,
                latency_ms=(time.perf_counter() - start) * 1000,
            )

        text, citations = extract_citations(payload.value, payload.annotations)
        self._logger.info(
            "query.answered",
            answer_chars=len(text),
            citation_count=len(citations),
            attempts=attempts,
        )
        return Answer(
            text=text,
            citations=citations,
            attempts=attempts,
            latency_ms=(time.perf_counter() - start) * 1000,
        )

    def get_history(self, session: Session, limit: int = 20) -> list[HistoryEntry]:
        """Return up to ``limit`` most recent messages, oldest first."""

        if not session.thread_ref:
            raise NoActiveSessionError("No active conversation thread")
        if limit <= 0:
            return []
        messages = self._client.list_messages(session.thread_ref, limit=limit, order="desc")
        entries = [
            HistoryEntry(
                role=message.role,
                content=message.texts[0].value if message.texts else "",
                timestamp=message.created_at,
            )
            for message in messages
        ]
        entries.reverse()
        return entries
