"""CLI for asking questions about a single document."""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

from docassist.config import get_settings
from docassist.errors import DocAssistError
from docassist.models import Answer
from docassist.services.prompts import Task
from docassist.sessions.manager import SessionManager, build_session_manager


@dataclass(frozen=True)
class QueryOutcome:
    question: str
    answer: Answer

    def to_dict(self) -> dict:
        return {
            "question": self.question,
            "answer": self.answer.text,
            "citations": [
                {"index": c.ordinal, "quote": c.quote, "file_ref": c.file_ref} for c in self.answer.citations
            ],
            "attempts": self.answer.attempts,
            "latency_ms": self.answer.latency_ms,
        }


def run_queries(
    manager: SessionManager,
    document: Path,
    questions: Sequence[str],
    *,
    task: str | None = None,
    language: str | None = None,
) -> List[QueryOutcome]:
    """Establish a session for ``document``, answer everything, always tear down."""

    outcomes: list[QueryOutcome] = []
    manager.establish_session(document)
    try:
        if task:
            outcomes.append(QueryOutcome(question=task, answer=manager.ask_task(task, language)))
        for question in questions:
            outcomes.append(QueryOutcome(question=question, answer=manager.ask(question)))
    finally:
        result = manager.teardown()
        for error in result.errors:
            print(f"cleanup: {error}", file=sys.stderr)
    return outcomes


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="docassist", description="Ask questions about a document.")
    subparsers = parser.add_subparsers(dest="command", required=True)
    ask = subparsers.add_parser("ask", help="Upload a document and ask one or more questions.")
    ask.add_argument("document", type=Path, help="Path to the document to upload.")
    ask.add_argument("questions", nargs="*", help="Questions to ask, in order.")
    ask.add_argument("--task", choices=[t.value for t in Task], default=None, help="Run a canned task first.")
    ask.add_argument("--language", default=None, help="Output language for --task.")
    ask.add_argument("--json-out", type=Path, default=None, help="Optional path to write the JSON report.")
    args = parser.parse_args(argv)
    if not args.questions and not args.task:
        parser.error("provide at least one question or --task")
    return args


def main(argv: Sequence[str] | None = None, *, manager: SessionManager | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    manager = manager or build_session_manager(get_settings())
    try:
        outcomes = run_queries(manager, args.document, args.questions, task=args.task, language=args.language)
    except DocAssistError as exc:
        print(json.dumps(exc.to_dict()), file=sys.stderr)
        return 1

    report = json.dumps([outcome.to_dict() for outcome in outcomes], indent=2)
    if args.json_out:
        args.json_out.write_text(report, encoding="utf-8")
    print(report)
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
