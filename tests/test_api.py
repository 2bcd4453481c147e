from collections.abc import Sequence
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from study_api.config import get_settings
from study_api.llm import ChatResult, LLMClientError, QuizQuestion, StudyResources
from study_api.main import app, get_llm_client
from study_api.services.questions import NO_RELEVANT_CONTENT_ANSWER
from study_api.services.rag.types import Citation, PageText

USER_HEADERS = {"X-User-Id": "user-1"}
PDF_BYTES = b"%PDF-1.4 slide deck"


class FakeLLMClient:
    def __init__(self) -> None:
        self.calls: list[tuple[str, list[Citation], str | None]] = []

    def answer_question(
        self,
        *,
        question: str,
        citations: Sequence[Citation],
        highlight_text: str | None = None,
    ) -> ChatResult:
        self.calls.append((question, list(citations), highlight_text))
        return ChatResult(answer="mocked answer", model="fake-model", used_fallback=False)

    def generate_study_resources(self, *, lecture_text: str) -> StudyResources:
        return StudyResources(
            summary="- key idea",
            cheat_sheet="$F = ma$",
            quiz=[
                QuizQuestion(
                    id="q1",
                    prompt="What is F?",
                    options=["Force", "Flux"],
                    correct_option_index=0,
                    explanation="F is force.",
                )
            ],
        )


class FailingLLMClient(FakeLLMClient):
    def answer_question(self, **kwargs: object) -> ChatResult:
        raise LLMClientError("simulated failure")


@pytest.fixture(autouse=True)
def fake_extraction(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "study_api.services.rag.ingest.extract_pdf_pages",
        lambda data: [
            PageText(
                page_number=1,
                text="Newton's first law states that an object stays at rest. "
                "The second law relates force and acceleration.",
            ),
            PageText(page_number=2, text="Momentum is conserved in closed systems."),
        ],
    )


def _upload(client: TestClient, name: str = "Physics 101.pdf", headers: dict[str, str] = USER_HEADERS) -> dict:
    response = client.post(
        "/api/upload",
        files={"file": (name, PDF_BYTES, "application/pdf")},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()


def test_health_returns_ok(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "db": "ok"}


def test_requests_without_user_header_are_rejected(client: TestClient) -> None:
    response = client.get("/api/documents")

    assert response.status_code == 401


def test_upload_then_list_documents(client: TestClient) -> None:
    uploaded = _upload(client)

    assert uploaded["title"] == "Physics 101.pdf"
    assert uploaded["pages"] == 2
    assert uploaded["chunks"] == 2
    assert Path(uploaded["stored_at"]).read_bytes() == PDF_BYTES

    response = client.get("/api/documents", headers=USER_HEADERS)

    assert response.status_code == 200
    [document] = response.json()["documents"]
    assert document["id"] == uploaded["id"]
    assert document["page_count"] == 2
    assert document["chunk_count"] == 2
    assert document["file_url"] == f"/api/documents/{uploaded['id']}/file"

    with_pages = client.get(
        "/api/documents", params={"include_pages": "true"}, headers=USER_HEADERS
    ).json()["documents"][0]
    assert [page["page_number"] for page in with_pages["pages"]] == [1, 2]

    other_user = client.get("/api/documents", headers={"X-User-Id": "user-2"})
    assert other_user.json() == {"documents": []}


def test_upload_rejects_non_pdf(client: TestClient) -> None:
    response = client.post(
        "/api/upload",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        headers=USER_HEADERS,
    )

    assert response.status_code == 400
    assert response.json() == {"detail": "Only PDF files are supported."}


def test_upload_rejects_oversized_file(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STUDY_MAX_UPLOAD_BYTES", "8")
    get_settings.cache_clear()

    response = client.post(
        "/api/upload",
        files={"file": ("big.pdf", PDF_BYTES, "application/pdf")},
        headers=USER_HEADERS,
    )

    assert response.status_code == 400
    assert response.json()["detail"].startswith("File too large.")


def test_upload_requires_file_field(client: TestClient) -> None:
    response = client.post("/api/upload", headers=USER_HEADERS)

    assert response.status_code == 422


def test_download_and_delete_document(client: TestClient) -> None:
    uploaded = _upload(client)

    download = client.get(f"/api/documents/{uploaded['id']}/file", headers=USER_HEADERS)

    assert download.status_code == 200
    assert download.content == PDF_BYTES
    assert download.headers["content-type"] == "application/pdf"
    assert download.headers["content-disposition"] == 'inline; filename="Physics_101.pdf"'

    deleted = client.delete(f"/api/documents/{uploaded['id']}", headers=USER_HEADERS)

    assert deleted.status_code == 200
    assert deleted.json() == {"ok": True, "deleted_id": uploaded["id"]}
    assert not Path(uploaded["stored_at"]).exists()
    assert client.get("/api/documents", headers=USER_HEADERS).json() == {"documents": []}

    missing = client.delete(f"/api/documents/{uploaded['id']}", headers=USER_HEADERS)
    assert missing.status_code == 404
    assert missing.json() == {"detail": "Document not found."}


def test_download_reports_missing_stored_file(client: TestClient) -> None:
    uploaded = _upload(client)
    Path(uploaded["stored_at"]).unlink()

    response = client.get(f"/api/documents/{uploaded['id']}/file", headers=USER_HEADERS)

    assert response.status_code == 404
    assert "re-upload" in response.json()["detail"]


def test_ask_returns_answer_with_ranked_citations(client: TestClient) -> None:
    uploaded = _upload(client)
    fake_client = FakeLLMClient()
    app.dependency_overrides[get_llm_client] = lambda: fake_client

    response = client.post(
        "/api/ask",
        json={"question": "What is the second law?", "document_ids": [uploaded["id"]]},
        headers=USER_HEADERS,
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["answer"] == "mocked answer"
    assert payload["citations"] == [
        {
            "document_id": uploaded["id"],
            "title": "Physics 101.pdf",
            "page_number": 1,
            "chunk_id": "chunk_1",
            "excerpt": "Newton's first law states that an object stays at rest. "
            "The second law relates force and acceleration.",
            "score": round(2 / 3, 6),
            "rank": 1,
        }
    ]
    assert payload["meta"] == {
        "model": "fake-model",
        "used_fallback": False,
        "retrieval_k": 6,
        "retrieved_count": 1,
    }
    assert len(fake_client.calls) == 1


def test_ask_without_relevant_content_returns_fallback_answer(client: TestClient) -> None:
    uploaded = _upload(client)
    fake_client = FakeLLMClient()
    app.dependency_overrides[get_llm_client] = lambda: fake_client

    response = client.post(
        "/api/ask",
        json={"question": "Explain photosynthesis", "document_ids": [uploaded["id"]]},
        headers=USER_HEADERS,
    )

    assert response.status_code == 200
    assert response.json()["answer"] == NO_RELEVANT_CONTENT_ANSWER
    assert response.json()["citations"] == []
    assert fake_client.calls == []


def test_ask_unknown_documents_returns_404(client: TestClient) -> None:
    app.dependency_overrides[get_llm_client] = lambda: FakeLLMClient()

    response = client.post(
        "/api/ask",
        json={"question": "What is the second law?", "document_ids": ["doc_missing"]},
        headers=USER_HEADERS,
    )

    assert response.status_code == 404
    assert response.json() == {"detail": "No matching documents found."}


@pytest.mark.parametrize(
    "body",
    [
        {"question": "hi", "document_ids": ["doc_1"]},
        {"question": "What is it?", "document_ids": []},
        {"question": "What is it?", "document_ids": ["doc_1"], "k": 0},
        {"question": "What is it?", "documentIds": ["doc_1"]},
    ],
)
def test_ask_validates_payload(client: TestClient, body: dict) -> None:
    app.dependency_overrides[get_llm_client] = lambda: FakeLLMClient()

    response = client.post("/api/ask", json=body, headers=USER_HEADERS)

    assert response.status_code == 422


def test_ask_maps_llm_failure_to_502(client: TestClient) -> None:
    uploaded = _upload(client)
    app.dependency_overrides[get_llm_client] = lambda: FailingLLMClient()

    response = client.post(
        "/api/ask",
        json={"question": "What is the second law?", "document_ids": [uploaded["id"]]},
        headers=USER_HEADERS,
    )

    assert response.status_code == 502
    assert response.json()["detail"] == "LLM request failed: simulated failure"


def test_ask_highlight_passes_highlight_to_model(client: TestClient) -> None:
    uploaded = _upload(client)
    fake_client = FakeLLMClient()
    app.dependency_overrides[get_llm_client] = lambda: fake_client

    response = client.post(
        "/api/ask-highlight",
        json={
            "question": "Can you explain?",
            "highlight_text": "momentum conserved",
            "document_ids": [uploaded["id"]],
        },
        headers=USER_HEADERS,
    )

    assert response.status_code == 200
    assert [citation["chunk_id"] for citation in response.json()["citations"]] == ["chunk_2"]
    assert fake_client.calls[0][2] == "momentum conserved"


def test_resources_returns_summary_cheat_sheet_and_quiz(client: TestClient) -> None:
    uploaded = _upload(client)
    app.dependency_overrides[get_llm_client] = lambda: FakeLLMClient()

    response = client.post(
        "/api/resources",
        json={"document_ids": [uploaded["id"]]},
        headers=USER_HEADERS,
    )

    assert response.status_code == 200
    assert response.json() == {
        "summary": "- key idea",
        "cheat_sheet": "$F = ma$",
        "quiz": [
            {
                "id": "q1",
                "prompt": "What is F?",
                "options": ["Force", "Flux"],
                "correct_option_index": 0,
                "explanation": "F is force.",
            }
        ],
    }


def test_ask_defaults_k_to_configured_retrieval_top_k(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("STUDY_RETRIEVAL_TOP_K", "1")
    get_settings.cache_clear()
    uploaded = _upload(client)
    fake_client = FakeLLMClient()
    app.dependency_overrides[get_llm_client] = lambda: fake_client

    response = client.post(
        "/api/ask",
        json={"question": "What is momentum law?", "document_ids": [uploaded["id"]]},
        headers=USER_HEADERS,
    )

    assert response.status_code == 200
    assert response.json()["meta"]["retrieval_k"] == 1
    assert [citation["chunk_id"] for citation in response.json()["citations"]] == ["chunk_1"]


def test_ask_explicit_k_overrides_configured_default(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("STUDY_RETRIEVAL_TOP_K", "1")
    get_settings.cache_clear()
    uploaded = _upload(client)
    app.dependency_overrides[get_llm_client] = lambda: FakeLLMClient()

    response = client.post(
        "/api/ask-highlight",
        json={
            "question": "What is momentum law?",
            "highlight_text": "second law",
            "document_ids": [uploaded["id"]],
            "k": 5,
        },
        headers=USER_HEADERS,
    )

    assert response.status_code == 200
    assert response.json()["meta"]["retrieval_k"] == 5
    assert len(response.json()["citations"]) == 2


def test_ask_rejects_model_outside_allowed_list(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("OPENAI_ALLOWED_MODELS", "gpt-4o-mini, gpt-4o")
    get_settings.cache_clear()

    response = client.post(
        "/api/ask",
        json={"question": "What is the second law?", "document_ids": ["doc_1"]},
        headers={**USER_HEADERS, "X-OpenAI-Model": "gpt-3.5-turbo"},
    )

    assert response.status_code == 400
    assert response.json() == {
        "detail": "Selected model is not allowed.",
        "allowed_models": ["gpt-4o-mini", "gpt-4o"],
    }


def test_ai_config_lists_allowed_models(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4o")
    monkeypatch.setenv("OPENAI_ALLOWED_MODELS", "gpt-4o-mini,gpt-4o")
    get_settings.cache_clear()

    response = client.get("/api/ai-config")

    assert response.status_code == 200
    assert response.json() == {
        "has_api_key": False,
        "model": "gpt-4o",
        "allowed_models": ["gpt-4o-mini", "gpt-4o"],
    }


def test_feedback_is_stored_without_user_header(client: TestClient) -> None:
    response = client.post(
        "/api/feedback",
        json={
            "name": "Ada",
            "email": "Ada@Example.com",
            "feedback": "The quiz questions were really helpful.",
        },
    )

    assert response.status_code == 201
    assert response.json()["ok"] is True
    assert response.json()["feedback_id"].startswith("fb_")


def test_feedback_rejects_invalid_payload_with_field_errors(client: TestClient) -> None:
    response = client.post(
        "/api/feedback",
        json={"name": "A", "email": "not-an-email", "feedback": "short"},
    )

    assert response.status_code == 400
    payload = response.json()
    assert payload["detail"] == "Invalid feedback payload."
    assert set(payload["errors"]) == {"name", "email", "feedback"}
