from __future__ import annotations

from datetime import datetime, timezone
import logging
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from study_api.errors import ServiceError
from study_api.services.document_store import save_document
from study_api.services.file_store import LocalFileStore
from study_api.services.rag.chunker import DEFAULT_MAX_CHARS, chunk_pages
from study_api.services.rag.pdf_loader import PdfExtractionError, extract_pdf_pages
from study_api.services.rag.types import DocumentRecord, IngestionSummary

PDF_CONTENT_TYPE = "application/pdf"
DEFAULT_MAX_UPLOAD_BYTES = 20 * 1024 * 1024

logger = logging.getLogger(__name__)


def create_document_id() -> str:
    return f"doc_{uuid.uuid4().hex}"


def ingest_pdf(
    session: Session,
    file_store: LocalFileStore,
    *,
    user_id: str,
    file_name: str,
    content_type: str | None,
    data: bytes,
    max_chars: int = DEFAULT_MAX_CHARS,
    max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
) -> IngestionSummary:
    if content_type != PDF_CONTENT_TYPE:
        raise ServiceError("Only PDF files are supported.", 400)
    if len(data) > max_bytes:
        raise ServiceError(
            f"File too large. Max size is {max_bytes // (1024 * 1024)}MB.", 400
        )

    try:
        pages = extract_pdf_pages(data)
    except PdfExtractionError as exc:
        raise ServiceError("Could not read PDF file.", 400) from exc

    chunks = chunk_pages(pages, max_chars=max_chars)
    document_id = create_document_id()
    stored_path = file_store.save(user_id=user_id, document_id=document_id, data=data)

    record = DocumentRecord(
        id=document_id,
        title=file_name,
        pages=tuple(pages),
        chunks=tuple(chunks),
        file_path=str(stored_path),
        uploaded_at=datetime.now(timezone.utc),
    )

    try:
        save_document(session, user_id, record)
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        file_store.delete(stored_path)
        raise

    logger.info(
        "Ingested document %s for user %s: pages=%d chunks=%d",
        record.id,
        user_id,
        len(record.pages),
        len(record.chunks),
    )

    return IngestionSummary(
        id=record.id,
        title=record.title,
        uploaded_at=record.uploaded_at,
        stored_at=record.file_path,
        pages=len(record.pages),
        chunks=len(record.chunks),
    )
