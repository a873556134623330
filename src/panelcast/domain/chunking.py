"""Split narration into provider-safe chunks without breaking words."""

import re
from typing import List

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def _pack_words(sentence: str, max_length: int) -> List[str]:
    out: List[str] = []
    current: List[str] = []
    size = 0
    for word in sentence.split():
        add = len(word) + (1 if current else 0)
        if current and size + add > max_length:
            out.append(" ".join(current))
            current, size = [], 0
            add = len(word)
        if not current and len(word) > max_length:
            # accepted overflow: an unbreakable word is emitted verbatim
            out.append(word)
            continue
        current.append(word)
        size += add
    if current:
        out.append(" ".join(current))
    return out


def chunk_text(text: str, max_length: int) -> List[str]:
    """Split ``text`` into chunks of at most ``max_length`` characters.

    Boundaries prefer sentence terminators (``.``, ``!``, ``?``) and fall back
    to spaces. Whitespace runs collapse to single spaces, so joining the result
    with single spaces reproduces every original token in order. A single word
    longer than ``max_length`` becomes its own chunk.
    """
    if max_length <= 0:
        raise ValueError(f"max_length must be positive, got {max_length}")
    normalized = " ".join((text or "").split())
    if not normalized:
        return []
    if len(normalized) <= max_length:
        return [normalized]

    chunks: List[str] = []
    current: List[str] = []
    size = 0
    for sentence in _SENTENCE_END.split(normalized):
        if not sentence:
            continue
        if len(sentence) > max_length:
            if current:
                chunks.append(" ".join(current))
                current, size = [], 0
            chunks.extend(_pack_words(sentence, max_length))
            continue
        add = len(sentence) + (1 if current else 0)
        if current and size + add > max_length:
            chunks.append(" ".join(current))
            current, size = [sentence], len(sentence)
        else:
            current.append(sentence)
            size += add
    if current:
        chunks.append(" ".join(current))
    return chunks
