"""Split long text into message-sized chunks.

Paragraphs (blank-line separated) are packed greedily. An oversized paragraph
is packed line by line, and an oversized line is cut into fixed-size slices.
"""

import re
from typing import Final

from event_digest.domain.constants import TELEGRAM_SAFE_CHUNK_LEN
from event_digest.services.text_normalizer import normalize_message_text

PARAGRAPH_BREAK: Final[re.Pattern[str]] = re.compile(r"\n\s*\n")


def _split_paragraph(paragraph: str, max_length: int) -> list[str]:
    parts: list[str] = []
    block = ""

    for raw_line in paragraph.split("\n"):
        line = raw_line.rstrip()
        candidate = f"{block}\n{line}" if block else line
        if len(candidate) <= max_length:
            block = candidate
            continue

        if block.strip():
            parts.append(block.strip())
        block = ""

        if len(line) <= max_length:
            block = line
            continue

        for start in range(0, len(line), max_length):
            parts.append(line[start : start + max_length].strip())

    if block.strip():
        parts.append(block.strip())
    return parts


def split_message(text: str | None, max_length: int = TELEGRAM_SAFE_CHUNK_LEN) -> list[str]:
    """Split ``text`` into chunks no longer than ``max_length``.

    Args:
        text: Arbitrary text
        max_length: Maximum chunk length in characters

    Returns:
        Non-empty chunks in order

    Raises:
        ValueError: If max_length is not positive

    Example:
        >>> split_message("a\\n\\nb", max_length=1)
        ['a', 'b']
    """
    if max_length <= 0:
        raise ValueError("max_length must be positive")

    full_text = normalize_message_text(text)
    if not full_text:
        return []

    parts: list[str] = []
    current = ""

    for raw_paragraph in PARAGRAPH_BREAK.split(full_text):
        paragraph = raw_paragraph.strip()
        if not paragraph:
            continue

        candidate = f"{current}\n\n{paragraph}" if current else paragraph
        if len(candidate) <= max_length:
            current = candidate
            continue

        if current.strip():
            parts.append(current.strip())
        current = ""

        if len(paragraph) <= max_length:
            current = paragraph
            continue

        parts.extend(_split_paragraph(paragraph, max_length))

    if current.strip():
        parts.append(current.strip())

    return [part for part in parts if part]


def add_position_markers(chunks: list[str]) -> list[str]:
    """Prefix each chunk with ``(i/N)`` when there is more than one.

    Example:
        >>> add_position_markers(["a", "b"])
        ['(1/2)\\na', '(2/2)\\nb']
    """
    total = len(chunks)
    if total <= 1:
        return list(chunks)
    return [f"({index}/{total})\n{chunk}" for index, chunk in enumerate(chunks, 1)]
