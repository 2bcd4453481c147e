from __future__ import annotations

import logging
from pathlib import Path
import re

logger = logging.getLogger(__name__)

_UNSAFE_SEGMENT_CHARS = re.compile(r"[^\w.\-]+")


def _safe_segment(value: str) -> str:
    cleaned = _UNSAFE_SEGMENT_CHARS.sub("_", value).strip("._")
    return cleaned or "_"


class LocalFileStore:
    def __init__(self, root: Path) -> None:
        self._root = root

    def save(self, *, user_id: str, document_id: str, data: bytes) -> Path:
        target_dir = self._root / _safe_segment(user_id)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / f"{_safe_segment(document_id)}.pdf"
        target.write_bytes(data)
        logger.debug("Stored %d bytes at %s", len(data), target)
        return target

    def read(self, path: Path) -> bytes:
        return path.read_bytes()

    def delete(self, path: Path) -> None:
        path.unlink(missing_ok=True)
