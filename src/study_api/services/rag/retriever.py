from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Iterable, Sequence

from study_api.services.rag.tokenizer import tokenize
from study_api.services.rag.types import Citation, RetrievableDocument, TextChunk

DEFAULT_TOP_K = 6
EXCERPT_CHARS = 350

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Candidate:
    score: float
    document: RetrievableDocument
    chunk: TextChunk


def score_chunk(query_tokens: Sequence[str], chunk_text: str) -> float:
    chunk_tokens = set(tokenize(chunk_text))
    overlap = sum(1 for token in query_tokens if token in chunk_tokens)
    return overlap / max(len(query_tokens), 1)


def retrieve_top_citations(
    documents: Iterable[RetrievableDocument],
    query: str,
    top_k: int = DEFAULT_TOP_K,
) -> list[Citation]:
    query_tokens = tokenize(query)
    if not query_tokens or top_k <= 0:
        return []

    candidates: list[_Candidate] = []
    for document in documents:
        for chunk in document.chunks:
            score = score_chunk(query_tokens, chunk.text)
            if score <= 0:
                continue
            candidates.append(_Candidate(score=score, document=document, chunk=chunk))

    # list.sort is stable, so equal scores keep document/chunk enumeration order
    candidates.sort(key=lambda candidate: candidate.score, reverse=True)
    selected = candidates[:top_k]

    logger.debug(
        "Retrieved %d of %d candidate chunks for %d query tokens",
        len(selected),
        len(candidates),
        len(query_tokens),
    )

    return [
        Citation(
            document_id=candidate.document.id,
            title=candidate.document.title,
            page_number=candidate.chunk.page_number,
            chunk_id=candidate.chunk.chunk_id,
            excerpt=candidate.chunk.text[:EXCERPT_CHARS],
            score=candidate.score,
            rank=rank,
        )
        for rank, candidate in enumerate(selected, start=1)
    ]
