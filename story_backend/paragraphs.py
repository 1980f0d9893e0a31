"""Paragraph splitting for message content."""

import re

# A newline, optional whitespace, then one or more further newlines.
_PARAGRAPH_BREAK = re.compile(r"\r?\n\s*\n+")
PARAGRAPH_SEPARATOR = "\n\n"


def split_into_paragraphs(content: str) -> list[str]:
    """Split message text into trimmed, non-empty paragraphs."""
    if not content or not content.strip():
        return []

    paragraphs = []
    for piece in _PARAGRAPH_BREAK.split(content):
        paragraph = piece.replace("\r", "").strip()
        if paragraph:
            paragraphs.append(paragraph)
    return paragraphs


def join_paragraphs(paragraphs: list[str]) -> str:
    """Join paragraphs back into message text separated by blank lines."""
    return PARAGRAPH_SEPARATOR.join(paragraphs)
