from __future__ import annotations

import re
from typing import Sequence

from study_api.services.rag.types import PageText, TextChunk

DEFAULT_MAX_CHARS = 900

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


def split_sentences(text: str) -> list[str]:
    return [segment for segment in _SENTENCE_BOUNDARY.split(text) if segment.strip()]


def _chunk_page(page: PageText, *, max_chars: int, next_index: int) -> list[TextChunk]:
    chunks: list[TextChunk] = []
    current = ""

    def flush(buffer: str) -> None:
        chunks.append(
            TextChunk(
                chunk_id=f"chunk_{next_index + len(chunks)}",
                page_number=page.page_number,
                text=buffer,
            )
        )

    for sentence in split_sentences(page.text):
        if len(current + " " + sentence) <= max_chars:
            current = f"{current} {sentence}" if current else sentence
            continue

        if current:
            flush(current)
        # an oversized sentence stays whole and becomes its own chunk
        current = sentence

    if current:
        flush(current)

    return chunks


def chunk_pages(pages: Sequence[PageText], max_chars: int = DEFAULT_MAX_CHARS) -> list[TextChunk]:
    """Split page texts into sentence-aligned chunks that never cross a page.

    Chunk ids (``chunk_1``, ``chunk_2``, ...) are numbered across the whole
    document in emission order.
    """
    chunks: list[TextChunk] = []
    next_index = 1

    for page in pages:
        page_chunks = _chunk_page(page, max_chars=max_chars, next_index=next_index)
        chunks.extend(page_chunks)
        next_index += len(page_chunks)

    return chunks
