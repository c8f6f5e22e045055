from __future__ import annotations

import re
from typing import List

DISCORD_SAFE_LENGTH = 1900
MIN_FILL_RATIO = 0.6

_PARAGRAPH_SPLIT = re.compile(r"\n{2,}")


def _split_paragraph(paragraph: str, max_len: int, threshold: int) -> List[str]:
    chunks: List[str] = []
    rest = paragraph

    while len(rest) > max_len:
        if (cut := rest.rfind("\n", 0, max_len)) >= threshold:
            head = rest[:cut].rstrip()
        elif (cut := rest.rfind(" ", 0, max_len)) >= threshold:
            cut += 1
            head = rest[:cut]
        else:
            cut = max_len
            head = rest[:cut].rstrip()

        if head:
            chunks.append(head)
        rest = rest[cut:].lstrip()

    if rest:
        chunks.append(rest)
    return chunks


def chunk_message(text: str, max_len: int = DISCORD_SAFE_LENGTH, min_fill: float = MIN_FILL_RATIO) -> List[str]:
    """
    Split a long reply into Discord-sized segments.

    Paragraphs (blank-line separated) always start a new segment. A paragraph
    longer than ``max_len`` is cut at a line break, else at a word break, and
    only hard-cut mid-word when the best break would leave the segment under
    ``min_fill * max_len``. Whitespace around line cuts is trimmed; a word cut
    keeps its space at the end of the segment. Always returns at least one
    element.
    """
    if max_len < 1:
        raise ValueError(f"max_len must be positive, got {max_len}")
    if not text:
        return [""]

    threshold = int(max_len * min_fill)
    chunks: List[str] = []
    for paragraph in _PARAGRAPH_SPLIT.split(str(text)):
        chunks.extend(_split_paragraph(paragraph, max_len, threshold))
    return chunks or [""]
