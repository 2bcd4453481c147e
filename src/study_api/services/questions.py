from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Sequence

from sqlalchemy.orm import Session

from study_api.errors import ServiceError
from study_api.llm import LLMClient
from study_api.services.document_store import get_documents_by_ids
from study_api.services.rag import Citation, DocumentRecord, retrieve_top_citations
from study_api.services.rag.retriever import DEFAULT_TOP_K

NO_RELEVANT_CONTENT_ANSWER = (
    "I could not find relevant content in the selected slides for that question."
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AskResult:
    answer: str
    citations: list[Citation]
    model: str | None
    used_fallback: bool


def _load_documents(
    session: Session, user_id: str, document_ids: Sequence[str]
) -> list[DocumentRecord]:
    documents = get_documents_by_ids(session, user_id, document_ids)
    if not documents:
        raise ServiceError("No matching documents found.", 404)
    return documents


def ask_from_documents(
    session: Session,
    llm_client: LLMClient,
    *,
    user_id: str,
    question: str,
    document_ids: Sequence[str],
    top_k: int = DEFAULT_TOP_K,
) -> AskResult:
    documents = _load_documents(session, user_id, document_ids)
    citations = retrieve_top_citations(documents, question, top_k)
    if not citations:
        logger.info("No overlapping chunks in %d documents; skipping model call", len(documents))
        return AskResult(
            answer=NO_RELEVANT_CONTENT_ANSWER,
            citations=[],
            model=None,
            used_fallback=False,
        )

    result = llm_client.answer_question(question=question, citations=citations)
    return AskResult(
        answer=result.answer,
        citations=citations,
        model=result.model,
        used_fallback=result.used_fallback,
    )


def ask_from_highlight(
    session: Session,
    llm_client: LLMClient,
    *,
    user_id: str,
    question: str,
    highlight_text: str,
    document_ids: Sequence[str],
    top_k: int = DEFAULT_TOP_K,
) -> AskResult:
    documents = _load_documents(session, user_id, document_ids)
    citations = retrieve_top_citations(documents, f"{question} {highlight_text}", top_k)

    # the highlight itself is grounding context, so the model is asked even without citations
    result = llm_client.answer_question(
        question=question,
        citations=citations,
        highlight_text=highlight_text,
    )
    return AskResult(
        answer=result.answer,
        citations=citations,
        model=result.model,
        used_fallback=result.used_fallback,
    )
