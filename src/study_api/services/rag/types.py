from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, Sequence


@dataclass(frozen=True)
class PageText:
    page_number: int
    text: str


@dataclass(frozen=True)
class TextChunk:
    chunk_id: str
    page_number: int
    text: str


@dataclass(frozen=True)
class DocumentRecord:
    id: str
    title: str
    pages: tuple[PageText, ...]
    chunks: tuple[TextChunk, ...]
    file_path: str = ""
    uploaded_at: datetime | None = None


class RetrievableDocument(Protocol):
    @property
    def id(self) -> str: ...

    @property
    def title(self) -> str: ...

    @property
    def chunks(self) -> Sequence[TextChunk]: ...


@dataclass(frozen=True)
class Citation:
    document_id: str
    title: str
    page_number: int
    chunk_id: str
    excerpt: str
    score: float
    rank: int


@dataclass(frozen=True)
class IngestionSummary:
    id: str
    title: str
    uploaded_at: datetime
    stored_at: str
    pages: int
    chunks: int
