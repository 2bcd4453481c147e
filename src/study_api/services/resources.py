from __future__ import annotations

from typing import Sequence

from sqlalchemy.orm import Session

from study_api.errors import ServiceError
from study_api.llm import LLMClient, StudyResources
from study_api.services.document_store import get_documents_by_ids
from study_api.services.rag.types import DocumentRecord


def build_lecture_corpus(documents: Sequence[DocumentRecord]) -> str:
    sections: list[str] = []
    for document in documents:
        page_lines = "\n".join(
            f"Page {page.page_number}: {page.text}" for page in document.pages
        )
        sections.append(f"Document: {document.title}\n{page_lines}")
    return "\n\n".join(sections)


def generate_resources_for_documents(
    session: Session,
    llm_client: LLMClient,
    *,
    user_id: str,
    document_ids: Sequence[str],
) -> StudyResources:
    documents = get_documents_by_ids(session, user_id, document_ids)
    if not documents:
        raise ServiceError("No matching documents found.", 404)

    return llm_client.generate_study_resources(lecture_text=build_lecture_corpus(documents))
