"""Tests for the single-writer session manager."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FakeRemoteClient, SleepRecorder
from docassist.config import Settings
from docassist.errors import IndexingFailedError, NoActiveSessionError, NoAgentError, NotInitializedError
from docassist.models import IndexStatus, Session
from docassist.services.prompts import Task
from docassist.sessions.manager import SessionManager, build_session_manager


def make_manager(remote: FakeRemoteClient, sleeps: SleepRecorder) -> SessionManager:
    return SessionManager(remote, sleep=sleeps)


def _assert_ready_invariant(session: Session) -> None:
    assert session.ready == (bool(session.agent_ref) and bool(session.thread_ref))


def test_status_reflects_established_session(remote, sleeps, document: Path) -> None:
    manager = make_manager(remote, sleeps)
    assert not manager.is_ready()
    assert manager.get_status().to_dict()["ready"] is False

    session = manager.establish_session(document)

    status = manager.get_status().to_dict()
    assert manager.is_ready()
    assert status == {
        "initialized": True,
        "has_agent": True,
        "has_index": True,
        "has_thread": True,
        "has_file": True,
        "agent_ref": session.agent_ref,
        "index_ref": session.index_ref,
        "thread_ref": session.thread_ref,
        "file_ref": session.file_ref,
        "ready": True,
    }


def test_ready_invariant_holds_after_every_operation(remote, sleeps, document: Path) -> None:
    manager = make_manager(remote, sleeps)
    _assert_ready_invariant(manager.session)
    manager.establish_session(document)
    _assert_ready_invariant(manager.session)
    manager.ask("What is the main topic?")
    _assert_ready_invariant(manager.session)
    manager.reset_conversation()
    _assert_ready_invariant(manager.session)
    manager.teardown()
    _assert_ready_invariant(manager.session)
    assert not manager.is_ready()


def test_new_upload_tears_down_previous_session(remote, sleeps, document: Path) -> None:
    manager = make_manager(remote, sleeps)
    first = manager.establish_session(document)

    second = manager.establish_session(document)

    assert second.agent_ref != first.agent_ref
    assert remote.deleted == [("agent", first.agent_ref), ("index", first.index_ref), ("file", first.file_ref)]
    assert manager.session == second


def test_failed_upload_leaves_no_session(remote, sleeps, document: Path) -> None:
    manager = make_manager(remote, sleeps)
    manager.establish_session(document)
    remote.index_statuses = [IndexStatus.FAILED]

    with pytest.raises(IndexingFailedError):
        manager.establish_session(document)

    assert manager.session.is_empty
    assert not manager.is_ready()


def test_teardown_is_idempotent(remote, sleeps, document: Path) -> None:
    manager = make_manager(remote, sleeps)
    manager.establish_session(document)

    first = manager.teardown()
    second = manager.teardown()

    assert first.ok
    assert second.ok and list(second.errors) == []
    assert manager.session.is_empty
    assert len(remote.deleted) == 3


def test_teardown_clears_session_even_when_deletes_fail(remote, sleeps, document: Path) -> None:
    manager = make_manager(remote, sleeps)
    manager.establish_session(document)
    remote.fail("delete_file", RuntimeError("file locked"))

    result = manager.teardown()

    assert result.errors == ("Failed to delete file: file locked",)
    assert manager.session.is_empty


def test_reset_conversation_returns_new_thread(remote, sleeps, document: Path) -> None:
    manager = make_manager(remote, sleeps)
    session = manager.establish_session(document)

    thread_ref = manager.reset_conversation()

    assert thread_ref != session.thread_ref
    assert manager.session.thread_ref == thread_ref
    assert manager.session.agent_ref == session.agent_ref


def test_explicit_history_limit_is_respected(remote, sleeps, document: Path) -> None:
    manager = make_manager(remote, sleeps)
    manager.establish_session(document)
    manager.ask("What is the main topic?")

    assert manager.get_history(0) == []
    assert len(manager.get_history(1)) == 1
    assert len(manager.get_history()) == 2


def test_operations_without_session(remote, sleeps) -> None:
    manager = make_manager(remote, sleeps)
    with pytest.raises(NoActiveSessionError):
        manager.ask("anything")
    with pytest.raises(NoActiveSessionError):
        manager.get_history()
    with pytest.raises(NoAgentError):
        manager.reset_conversation()


def test_task_prompts_interpolate_language(remote, sleeps, document: Path) -> None:
    manager = make_manager(remote, sleeps)
    session = manager.establish_session(document)

    manager.ask_task(Task.SUMMARY, "french")

    posted = [m for m in remote.messages[session.thread_ref] if m.role == "user"][-1]
    assert "MUST be in french language" in posted.texts[0].value


def test_uninitialised_manager_refuses_remote_operations(document: Path) -> None:
    manager = build_session_manager(Settings(environment="test", openai_api_key=None))

    assert not manager.initialized
    assert manager.get_status().to_dict()["initialized"] is False
    with pytest.raises(NotInitializedError):
        manager.establish_session(document)
    with pytest.raises(NotInitializedError):
        manager.ask("What?")
    assert manager.teardown().ok
