from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import re
from typing import Any, Protocol, Sequence

import httpx

from study_api.services.rag.types import Citation

LECTURE_TEXT_LIMIT = 20000
NO_ANSWER_TEXT = "No answer generated."
NO_SUMMARY_TEXT = "No summary generated."
NO_CHEAT_SHEET_TEXT = "No cheat sheet generated."

_ANSWER_SYSTEM_PROMPT = (
    "You are a careful study assistant. "
    "Do not fabricate facts not present in provided references."
)
_RESOURCES_SYSTEM_PROMPT = (
    "You are a study resource generator. Return concise and exam-focused output."
)
_RESOURCES_INSTRUCTIONS = """Generate three outputs from this lecture material:
1) Summary (6-10 bullets)
2) Cheat sheet (key formulas, definitions, and frameworks)
3) Quiz (10 multiple-choice questions only)

Cheat sheet formatting rules (strict):
- Use Markdown headings and bullets for readability.
- Any mathematical expression must be valid LaTeX.
- Inline math must be wrapped with single dollar delimiters: $...$.
- Standalone equations must be wrapped with double dollar delimiters: $$...$$.
- Never write equations as plain text in parentheses without $ delimiters.

Format your response exactly as:
<summary>
...content...
</summary>
<cheatsheet>
...content...
</cheatsheet>
<quiz_json>
[
  {
    "id": "q1",
    "prompt": "Question text",
    "options": ["A", "B", "C", "D"],
    "correctOptionIndex": 1,
    "explanation": "Why this answer is correct"
  }
]
</quiz_json>"""

logger = logging.getLogger(__name__)


class LLMClientError(RuntimeError):
    pass


@dataclass(frozen=True)
class ChatResult:
    answer: str
    model: str
    used_fallback: bool


@dataclass(frozen=True)
class QuizQuestion:
    id: str
    prompt: str
    options: list[str]
    correct_option_index: int
    explanation: str


@dataclass(frozen=True)
class StudyResources:
    summary: str
    cheat_sheet: str
    quiz: list[QuizQuestion]


class LLMClient(Protocol):
    def answer_question(
        self,
        *,
        question: str,
        citations: Sequence[Citation],
        highlight_text: str | None = None,
    ) -> ChatResult: ...

    def generate_study_resources(self, *, lecture_text: str) -> StudyResources: ...


def format_citations(citations: Sequence[Citation]) -> str:
    return "\n".join(
        f"[{index}] {citation.title} (page {citation.page_number}, {citation.chunk_id}): "
        f"{citation.excerpt}"
        for index, citation in enumerate(citations, start=1)
    )


def build_answer_prompt(
    *,
    question: str,
    citations: Sequence[Citation],
    highlight_text: str | None = None,
) -> str:
    highlight_context = (
        f"Highlighted text (highest priority context):\n{highlight_text}\n\n"
        if highlight_text
        else ""
    )
    return (
        f"{highlight_context}Question: {question}\n\n"
        f"Reference chunks:\n{format_citations(citations)}\n\n"
        "Instructions:\n"
        "- Answer only using grounded information from the references.\n"
        "- If uncertain, explicitly say what is missing.\n"
        "- Provide a concise, student-friendly explanation.\n"
        "- End with a short citation list like [1], [2]."
    )


def _extract_tag(output: str, tag: str) -> str | None:
    match = re.search(rf"<{tag}>(.*?)</{tag}>", output, flags=re.IGNORECASE | re.DOTALL)
    if match is None:
        return None
    return match.group(1).strip()


def _parse_quiz_item(item: Any) -> QuizQuestion | None:
    if not isinstance(item, dict):
        return None

    question_id = item.get("id")
    prompt = item.get("prompt")
    options = item.get("options")
    correct_index = item.get("correctOptionIndex")
    explanation = item.get("explanation")
    if (
        not isinstance(question_id, str)
        or not isinstance(prompt, str)
        or not isinstance(options, list)
        or isinstance(correct_index, bool)
        or not isinstance(correct_index, (int, float))
        or not isinstance(explanation, str)
    ):
        return None

    return QuizQuestion(
        id=question_id,
        prompt=prompt,
        options=[str(option) for option in options[:4]],
        correct_option_index=max(0, min(int(correct_index), 3)),
        explanation=explanation,
    )


def parse_quiz(raw: str | None) -> list[QuizQuestion]:
    if not raw:
        return []
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding quiz block that is not valid JSON")
        return []
    if not isinstance(payload, list):
        return []

    questions = [_parse_quiz_item(item) for item in payload]
    return [question for question in questions if question is not None]


def parse_study_resources(output: str) -> StudyResources:
    return StudyResources(
        summary=_extract_tag(output, "summary") or NO_SUMMARY_TEXT,
        cheat_sheet=_extract_tag(output, "cheatsheet") or NO_CHEAT_SHEET_TEXT,
        quiz=parse_quiz(_extract_tag(output, "quiz_json")),
    )


def _extract_message_text(message: Any) -> str:
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        return "".join(
            part.get("text") or ""
            for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        ).strip()
    return ""


class OpenAIChatClient:
    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None,
        default_model: str,
        fallback_model: str = "",
        timeout_seconds: float = 60.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._default_model = default_model
        self._fallback_model = fallback_model
        self._timeout_seconds = timeout_seconds

    def answer_question(
        self,
        *,
        question: str,
        citations: Sequence[Citation],
        highlight_text: str | None = None,
    ) -> ChatResult:
        messages = [
            {"role": "system", "content": _ANSWER_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": build_answer_prompt(
                    question=question,
                    citations=citations,
                    highlight_text=highlight_text,
                ),
            },
        ]
        content, model, used_fallback = self._complete(messages)
        return ChatResult(
            answer=content or NO_ANSWER_TEXT,
            model=model,
            used_fallback=used_fallback,
        )

    def generate_study_resources(self, *, lecture_text: str) -> StudyResources:
        messages = [
            {"role": "system", "content": _RESOURCES_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    f"{_RESOURCES_INSTRUCTIONS}\n\n"
                    f"Lecture material:\n{lecture_text[:LECTURE_TEXT_LIMIT]}"
                ),
            },
        ]
        content, _, _ = self._complete(messages)
        return parse_study_resources(content)

    def _model_candidates(self) -> list[tuple[str, bool]]:
        candidates: list[tuple[str, bool]] = [(self._default_model, False)]
        if self._fallback_model and self._fallback_model != self._default_model:
            candidates.append((self._fallback_model, True))
        return candidates

    def _complete(self, messages: list[dict[str, str]]) -> tuple[str, str, bool]:
        if not self._api_key:
            raise LLMClientError("OPENAI_API_KEY is missing. Add it to your environment.")

        candidates = self._model_candidates()
        for model, used_fallback in candidates:
            try:
                content = self._chat_completion(model=model, messages=messages)
            except (httpx.HTTPError, ValueError) as exc:
                if used_fallback or len(candidates) == 1:
                    raise LLMClientError(str(exc)) from exc
                logger.warning("Chat completion with %s failed (%s); trying fallback", model, exc)
                continue

            return content, model, used_fallback

        raise LLMClientError("No model candidates configured")

    def _chat_completion(self, *, model: str, messages: list[dict[str, str]]) -> str:
        response = httpx.post(
            f"{self._base_url}/chat/completions",
            headers={"Authorization": f"Bearer {self._api_key}"},
            json={"model": model, "messages": messages},
            timeout=self._timeout_seconds,
        )
        response.raise_for_status()

        payload = response.json()
        choices = payload.get("choices") if isinstance(payload, dict) else None
        if not isinstance(choices, list) or not choices:
            raise ValueError("Invalid chat completion payload: missing choices")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        return _extract_message_text(message)
