"""Session lifecycle and state."""

from .lifecycle import LifecycleConfig, SessionLifecycle
from .manager import SessionManager, build_session_manager

__all__ = ["LifecycleConfig", "SessionLifecycle", "SessionManager", "build_session_manager"]
