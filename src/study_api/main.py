from datetime import datetime
from pathlib import Path
import re
from typing import Annotated, Any

from fastapi import Body, Depends, FastAPI, File, Header, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from study_api.config import get_settings
from study_api.db import get_engine
from study_api.errors import ServiceError
from study_api.llm import LLMClient, LLMClientError, OpenAIChatClient, StudyResources
from study_api.logging_config import configure_logging
from study_api.services.document_store import delete_document, get_document, list_documents
from study_api.services.feedback import parse_feedback_payload, submit_feedback
from study_api.services.file_store import LocalFileStore
from study_api.services.questions import AskResult, ask_from_documents, ask_from_highlight
from study_api.services.rag.ingest import ingest_pdf
from study_api.services.rag.types import Citation, DocumentRecord
from study_api.services.resources import generate_resources_for_documents

app = FastAPI(title="Study Assistant API", version="0.1.0")

_UNSAFE_FILENAME_CHARS = re.compile(r"[^\w.\-]+")


class AskRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    question: str = Field(min_length=3)
    document_ids: list[str] = Field(min_length=1)
    k: int | None = Field(default=None, ge=1, le=20)


class HighlightAskRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    question: str = Field(min_length=3)
    highlight_text: str = Field(min_length=2)
    document_ids: list[str] = Field(min_length=1)
    k: int | None = Field(default=None, ge=1, le=20)


class ResourcesRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    document_ids: list[str] = Field(min_length=1)


@app.on_event("startup")
def startup() -> None:
    configure_logging(get_settings().log_level)
    get_engine()


@app.exception_handler(ServiceError)
async def handle_service_error(request: Request, exc: ServiceError) -> JSONResponse:
    del request
    return JSONResponse(status_code=exc.status_code, content=exc.body())


def _resolve_model(requested: str | None) -> str:
    settings = get_settings()
    if requested is None or not requested.strip():
        return settings.openai_model

    model = requested.strip()
    if model not in settings.openai_allowed_models:
        raise ServiceError(
            "Selected model is not allowed.",
            400,
            payload={
                "detail": "Selected model is not allowed.",
                "allowed_models": list(settings.openai_allowed_models),
            },
        )
    return model


def get_llm_client(x_openai_model: Annotated[str | None, Header()] = None) -> LLMClient:
    settings = get_settings()
    return OpenAIChatClient(
        base_url=settings.openai_base_url,
        api_key=settings.openai_api_key,
        default_model=_resolve_model(x_openai_model),
        fallback_model=settings.openai_fallback_model,
        timeout_seconds=settings.openai_timeout_seconds,
    )


def get_file_store() -> LocalFileStore:
    return LocalFileStore(Path(get_settings().upload_dir))


def get_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id.strip()


def _safe_file_stem(title: str) -> str:
    stem = title[:-4] if title.lower().endswith(".pdf") else title
    return _UNSAFE_FILENAME_CHARS.sub("_", stem)


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _citation_payload(citation: Citation) -> dict[str, Any]:
    return {
        "document_id": citation.document_id,
        "title": citation.title,
        "page_number": citation.page_number,
        "chunk_id": citation.chunk_id,
        "excerpt": citation.excerpt,
        "score": round(citation.score, 6),
        "rank": citation.rank,
    }


def _ask_payload(result: AskResult, *, retrieval_k: int) -> dict[str, Any]:
    return {
        "answer": result.answer,
        "citations": [_citation_payload(citation) for citation in result.citations],
        "meta": {
            "model": result.model,
            "used_fallback": result.used_fallback,
            "retrieval_k": retrieval_k,
            "retrieved_count": len(result.citations),
        },
    }


def _document_summary(document: DocumentRecord, *, include_pages: bool) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "id": document.id,
        "title": document.title,
        "uploaded_at": _to_iso(document.uploaded_at),
        "file_url": f"/api/documents/{document.id}/file",
    }
    if include_pages:
        summary["pages"] = [
            {"page_number": page.page_number, "text": page.text} for page in document.pages
        ]
    else:
        summary["page_count"] = len(document.pages)
        summary["chunk_count"] = len(document.chunks)
    return summary


def _resources_payload(resources: StudyResources) -> dict[str, Any]:
    return {
        "summary": resources.summary,
        "cheat_sheet": resources.cheat_sheet,
        "quiz": [
            {
                "id": question.id,
                "prompt": question.prompt,
                "options": question.options,
                "correct_option_index": question.correct_option_index,
                "explanation": question.explanation,
            }
            for question in resources.quiz
        ],
    }


@app.get("/health")
def health() -> JSONResponse:
    try:
        with get_engine().connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return JSONResponse(status_code=503, content={"status": "ok", "db": "down"})
    return JSONResponse(status_code=200, content={"status": "ok", "db": "ok"})


@app.post("/api/upload", status_code=201)
def upload_document(
    user_id: Annotated[str, Depends(get_user_id)],
    file_store: Annotated[LocalFileStore, Depends(get_file_store)],
    file: Annotated[UploadFile, File()],
) -> dict[str, Any]:
    settings = get_settings()
    data = file.file.read()

    with Session(get_engine()) as session:
        summary = ingest_pdf(
            session,
            file_store,
            user_id=user_id,
            file_name=file.filename or "document.pdf",
            content_type=file.content_type,
            data=data,
            max_chars=settings.chunk_max_chars,
            max_bytes=settings.max_upload_bytes,
        )

    return {
        "id": summary.id,
        "title": summary.title,
        "uploaded_at": _to_iso(summary.uploaded_at),
        "stored_at": summary.stored_at,
        "pages": summary.pages,
        "chunks": summary.chunks,
    }


@app.get("/api/documents")
def get_documents(
    user_id: Annotated[str, Depends(get_user_id)],
    include_pages: bool = False,
) -> dict[str, Any]:
    with Session(get_engine()) as session:
        documents = list_documents(session, user_id)

    return {
        "documents": [
            _document_summary(document, include_pages=include_pages) for document in documents
        ]
    }


@app.delete("/api/documents/{document_id}")
def remove_document(
    document_id: str,
    user_id: Annotated[str, Depends(get_user_id)],
    file_store: Annotated[LocalFileStore, Depends(get_file_store)],
) -> dict[str, Any]:
    with Session(get_engine()) as session:
        deleted = delete_document(session, user_id, document_id)
        if deleted is None:
            raise ServiceError("Document not found.", 404)
        session.commit()

    try:
        file_store.delete(Path(deleted.file_path))
    except OSError as exc:
        raise ServiceError("Stored file could not be removed.", 500) from exc

    return {"ok": True, "deleted_id": deleted.id}


@app.get("/api/documents/{document_id}/file")
def get_document_file(
    document_id: str,
    user_id: Annotated[str, Depends(get_user_id)],
    file_store: Annotated[LocalFileStore, Depends(get_file_store)],
) -> Response:
    with Session(get_engine()) as session:
        document = get_document(session, user_id, document_id)
    if document is None:
        raise ServiceError("Document not found.", 404)

    try:
        content = file_store.read(Path(document.file_path))
    except FileNotFoundError as exc:
        raise ServiceError(
            "Stored PDF is missing. Please re-upload this document.", 404
        ) from exc
    except OSError as exc:
        raise ServiceError("Stored file could not be read.", 500) from exc

    safe_name = f"{_safe_file_stem(document.title)}.pdf"
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{safe_name}"'},
    )


@app.post("/api/ask")
def ask(
    request: AskRequest,
    user_id: Annotated[str, Depends(get_user_id)],
    llm_client: Annotated[LLMClient, Depends(get_llm_client)],
) -> dict[str, Any]:
    top_k = request.k or get_settings().retrieval_top_k
    question = request.question.strip()
    if not question:
        raise HTTPException(status_code=400, detail="question must not be empty")

    try:
        with Session(get_engine()) as session:
            result = ask_from_documents(
                session,
                llm_client,
                user_id=user_id,
                question=question,
                document_ids=request.document_ids,
                top_k=top_k,
            )
    except LLMClientError as exc:
        raise HTTPException(status_code=502, detail=f"LLM request failed: {exc}") from exc

    return _ask_payload(result, retrieval_k=top_k)


@app.post("/api/ask-highlight")
def ask_highlight(
    request: HighlightAskRequest,
    user_id: Annotated[str, Depends(get_user_id)],
    llm_client: Annotated[LLMClient, Depends(get_llm_client)],
) -> dict[str, Any]:
    top_k = request.k or get_settings().retrieval_top_k
    try:
        with Session(get_engine()) as session:
            result = ask_from_highlight(
                session,
                llm_client,
                user_id=user_id,
                question=request.question.strip(),
                highlight_text=request.highlight_text.strip(),
                document_ids=request.document_ids,
                top_k=top_k,
            )
    except LLMClientError as exc:
        raise HTTPException(status_code=502, detail=f"LLM request failed: {exc}") from exc

    return _ask_payload(result, retrieval_k=top_k)


@app.post("/api/resources")
def resources(
    request: ResourcesRequest,
    user_id: Annotated[str, Depends(get_user_id)],
    llm_client: Annotated[LLMClient, Depends(get_llm_client)],
) -> dict[str, Any]:
    try:
        with Session(get_engine()) as session:
            study_resources = generate_resources_for_documents(
                session,
                llm_client,
                user_id=user_id,
                document_ids=request.document_ids,
            )
    except LLMClientError as exc:
        raise HTTPException(status_code=502, detail=f"LLM request failed: {exc}") from exc

    return _resources_payload(study_resources)


@app.get("/api/ai-config")
def ai_config() -> dict[str, Any]:
    settings = get_settings()
    return {
        "has_api_key": settings.openai_api_key is not None,
        "model": settings.openai_model,
        "allowed_models": list(settings.openai_allowed_models),
    }


@app.post("/api/feedback", status_code=201)
def feedback(payload: Annotated[Any, Body()]) -> dict[str, Any]:
    parsed = parse_feedback_payload(payload)
    with Session(get_engine()) as session:
        feedback_id = submit_feedback(session, parsed)

    return {"ok": True, "feedback_id": feedback_id}


def run() -> None:
    import uvicorn

    uvicorn.run("study_api.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
