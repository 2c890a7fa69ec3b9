"""Instruction and task prompt templates sent to the agent."""

from __future__ import annotations

from enum import Enum

ASSISTANT_INSTRUCTIONS = """You are an expert educational assistant. Your task is to help teachers automate their work based on the uploaded document.

Capabilities:
1. Generate high-quality Multiple Choice Questions (MCQs) with options and correct answers.
2. Provide comprehensive and structured summaries of lectures or lessons.
3. Create detailed assignment rubrics with clear criteria and levels of achievement.

Guidelines:
1. Always base your output strictly on the information from the uploaded document.
2. Be professional, accurate, and concise.
3. Format your responses clearly using Markdown (headers, bullet points, tables where appropriate).
4. If the document doesn't contain enough information for a specific task, inform the user clearly."""


class Task(str, Enum):
    MCQ = "mcq"
    SUMMARY = "summary"
    RUBRIC = "rubric"


_LANGUAGE_CLAUSE = "IMPORTANT: The output MUST be in {language} language."

_TASK_TEMPLATES: dict[Task, str] = {
    Task.MCQ: (
        "Based on the uploaded document, generate exactly 5 high-quality Multiple Choice Questions (MCQs).\n\n"
        f"{_LANGUAGE_CLAUSE}\n\n"
        "For each question:\n"
        "1. Provide 4 distinct options (A, B, C, D).\n"
        "2. Clearly state the correct answer.\n"
        "3. Ensure the questions cover different parts of the document.\n\n"
        "Format the output using Markdown like this:\n"
        "### Question 1: [Question text]\n"
        "A) [Option 1]\n"
        "B) [Option 2]\n"
        "C) [Option 3]\n"
        "D) [Option 4]\n"
        "**Correct Answer:** [Letter]\n\n"
        "If the document is too short, generate as many as possible (at least 1-3)."
    ),
    Task.SUMMARY: (
        "Provide a comprehensive summary of the uploaded document. Highlight the key concepts, main arguments, "
        "and important takeaways. Use bullet points for readability.\n\n"
        f"{_LANGUAGE_CLAUSE}"
    ),
    Task.RUBRIC: (
        "Based on the content of the uploaded document, create a detailed assignment rubric. Include criteria, "
        "levels of achievement (e.g., Excellent, Good, Fair, Poor), and point values. Format it as a clear table "
        "or structured list.\n\n"
        f"{_LANGUAGE_CLAUSE}"
    ),
}


def build_task_prompt(task: Task | str, language: str | None = None, *, default_language: str = "english") -> str:
    """Render the prompt for ``task`` with the output language interpolated."""

    resolved = Task(task)
    lang = (language or "").strip() or default_language
    return _TASK_TEMPLATES[resolved].format(language=lang)
