from __future__ import annotations

from datetime import timezone
from typing import Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from study_api.models import ChunkRow, DocumentRow, PageRow
from study_api.services.rag.types import DocumentRecord, PageText, TextChunk


def _load_record(session: Session, row: DocumentRow) -> DocumentRecord:
    pages = session.scalars(
        select(PageRow)
        .where(PageRow.document_id == row.id)
        .order_by(PageRow.page_number.asc())
    ).all()
    # chunk_10 sorts before chunk_2 as text, so read back by emission position
    chunks = session.scalars(
        select(ChunkRow)
        .where(ChunkRow.document_id == row.id)
        .order_by(ChunkRow.position.asc())
    ).all()

    uploaded_at = row.uploaded_at
    if uploaded_at is not None and uploaded_at.tzinfo is None:
        uploaded_at = uploaded_at.replace(tzinfo=timezone.utc)

    return DocumentRecord(
        id=row.id,
        title=row.title,
        file_path=row.file_path,
        uploaded_at=uploaded_at,
        pages=tuple(PageText(page_number=page.page_number, text=page.text) for page in pages),
        chunks=tuple(
            TextChunk(chunk_id=chunk.chunk_id, page_number=chunk.page_number, text=chunk.text)
            for chunk in chunks
        ),
    )


def save_document(session: Session, user_id: str, record: DocumentRecord) -> None:
    session.add(
        DocumentRow(
            id=record.id,
            user_id=user_id,
            title=record.title,
            file_path=record.file_path,
            uploaded_at=record.uploaded_at,
        )
    )
    session.flush()
    session.add_all(
        PageRow(document_id=record.id, page_number=page.page_number, text=page.text)
        for page in record.pages
    )
    session.add_all(
        ChunkRow(
            document_id=record.id,
            position=position,
            chunk_id=chunk.chunk_id,
            page_number=chunk.page_number,
            text=chunk.text,
        )
        for position, chunk in enumerate(record.chunks)
    )


def list_documents(session: Session, user_id: str) -> list[DocumentRecord]:
    rows = session.scalars(
        select(DocumentRow)
        .where(DocumentRow.user_id == user_id)
        .order_by(DocumentRow.uploaded_at.desc(), DocumentRow.id.asc())
    ).all()
    return [_load_record(session, row) for row in rows]


def get_document(session: Session, user_id: str, document_id: str) -> DocumentRecord | None:
    row = session.scalar(
        select(DocumentRow)
        .where(DocumentRow.user_id == user_id)
        .where(DocumentRow.id == document_id)
    )
    if row is None:
        return None
    return _load_record(session, row)


def get_documents_by_ids(
    session: Session,
    user_id: str,
    document_ids: Sequence[str],
) -> list[DocumentRecord]:
    requested = list(dict.fromkeys(document_ids))
    if not requested:
        return []

    rows = session.scalars(
        select(DocumentRow)
        .where(DocumentRow.user_id == user_id)
        .where(DocumentRow.id.in_(requested))
    ).all()
    rows_by_id = {row.id: row for row in rows}

    return [
        _load_record(session, rows_by_id[document_id])
        for document_id in requested
        if document_id in rows_by_id
    ]


def delete_document(session: Session, user_id: str, document_id: str) -> DocumentRecord | None:
    record = get_document(session, user_id, document_id)
    if record is None:
        return None

    session.execute(delete(ChunkRow).where(ChunkRow.document_id == document_id))
    session.execute(delete(PageRow).where(PageRow.document_id == document_id))
    session.execute(delete(DocumentRow).where(DocumentRow.id == document_id))
    return record
