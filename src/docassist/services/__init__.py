"""Service layer orchestrations for docassist."""

from .citations import extract_citations
from .prompts import ASSISTANT_INSTRUCTIONS, Task, build_task_prompt
from .query import QueryConfig, QueryOrchestrator

__all__ = [
    "ASSISTANT_INSTRUCTIONS",
    "QueryConfig",
    "QueryOrchestrator",
    "Task",
    "build_task_prompt",
    "extract_citations",
]
