"""Citation extraction from annotated answer text."""

from __future__ import annotations

from typing import Sequence

from docassist.models import Annotation, Citation

CITATION_ANNOTATION_TYPE = "file_citation"
QUOTE_PLACEHOLDER = "Source text from document"


def _marker(ordinal: int) -> str:
    return f"[{ordinal}]"


def _has_valid_span(annotation: Annotation, text: str) -> bool:
    start, end = annotation.start_index, annotation.end_index
    if start is None or end is None or not 0 <= start < end <= len(text):
        return False
    # Offsets must still point at the annotated literal.
    return not annotation.text or text[start:end] == annotation.text


def extract_citations(text: str, annotations: Sequence[Annotation]) -> tuple[str, list[Citation]]:
    """Replace citation spans with ``[n]`` markers and collect the citations.

    Ordinals follow annotation order. Replacement works on each annotation's
    own span, so cited text repeated elsewhere in the answer is untouched.
    Annotations without usable offsets fall back to the first occurrence of
    their literal text after the previous replacement.
    """

    citations: list[Citation] = []
    spans: list[tuple[int, int, str]] = []
    cursor = 0
    for annotation in annotations:
        if annotation.type != CITATION_ANNOTATION_TYPE:
            continue
        ordinal = len(citations) + 1
        citations.append(
            Citation(
                ordinal=ordinal,
                quote=annotation.quote or QUOTE_PLACEHOLDER,
                file_ref=annotation.file_ref,
            )
        )
        if _has_valid_span(annotation, text):
            start, end = annotation.start_index, annotation.end_index
        elif annotation.text:
            start = text.find(annotation.text, cursor)
            if start < 0:
                continue
            end = start + len(annotation.text)
        else:
            continue
        if any(start < taken_end and taken_start < end for taken_start, taken_end, _ in spans):
            continue
        spans.append((start, end, _marker(ordinal)))
        cursor = end

    pieces: list[str] = []
    position = 0
    for start, end, marker in sorted(spans):
        pieces.append(text[position:start])
        pieces.append(marker)
        position = end
    pieces.append(text[position:])
    return "".join(pieces), citations
