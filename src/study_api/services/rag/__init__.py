from study_api.services.rag.chunker import chunk_pages
from study_api.services.rag.retriever import retrieve_top_citations
from study_api.services.rag.tokenizer import tokenize
from study_api.services.rag.types import (
    Citation,
    DocumentRecord,
    IngestionSummary,
    PageText,
    TextChunk,
)

__all__ = [
    "Citation",
    "DocumentRecord",
    "IngestionSummary",
    "PageText",
    "TextChunk",
    "chunk_pages",
    "retrieve_top_citations",
    "tokenize",
]
