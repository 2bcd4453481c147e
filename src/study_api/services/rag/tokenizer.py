from __future__ import annotations

import re

STOP_WORDS = frozenset(
    {
        "the",
        "a",
        "an",
        "and",
        "or",
        "in",
        "on",
        "to",
        "of",
        "for",
        "with",
        "is",
        "are",
        "was",
        "were",
        "it",
        "this",
        "that",
        "as",
        "at",
        "by",
        "from",
    }
)

_NON_TOKEN_CHARS = re.compile(r"[^a-z0-9\s]")


def tokenize(text: str) -> list[str]:
    normalized = _NON_TOKEN_CHARS.sub(" ", text.lower())
    return [
        token
        for token in normalized.split()
        if len(token) > 1 and token not in STOP_WORDS
    ]
