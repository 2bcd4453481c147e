from __future__ import annotations

import argparse
from pathlib import Path
import sys

from sqlalchemy.orm import Session

from study_api.config import get_settings
from study_api.db import get_engine
from study_api.logging_config import configure_logging
from study_api.services.file_store import LocalFileStore
from study_api.services.rag.ingest import PDF_CONTENT_TYPE, ingest_pdf


def _build_parser() -> argparse.ArgumentParser:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="study-ingest",
        description="Extract, chunk and store a PDF slide deck for retrieval",
    )
    parser.add_argument("pdf_path", help="Path to the PDF file to ingest")
    parser.add_argument("--user-id", required=True, help="Owner id the document belongs to")
    parser.add_argument(
        "--title",
        default=None,
        help="Document title (defaults to the file name)",
    )
    parser.add_argument(
        "--max-chars",
        type=int,
        default=settings.chunk_max_chars,
        help="Soft upper bound on chunk length in characters",
    )
    parser.add_argument(
        "--upload-dir",
        default=settings.upload_dir,
        help="Directory where the PDF bytes are stored",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level)

    pdf_path = Path(args.pdf_path)
    try:
        data = pdf_path.read_bytes()
        with Session(get_engine()) as session:
            summary = ingest_pdf(
                session,
                LocalFileStore(Path(args.upload_dir)),
                user_id=args.user_id,
                file_name=args.title or pdf_path.name,
                content_type=PDF_CONTENT_TYPE,
                data=data,
                max_chars=args.max_chars,
                max_bytes=settings.max_upload_bytes,
            )
    except Exception as exc:
        print(f"[study-ingest] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc

    print(
        "[study-ingest] completed "
        f"document_id={summary.id} "
        f"pages={summary.pages} "
        f"chunks={summary.chunks} "
        f"stored_at={summary.stored_at}",
        flush=True,
    )


if __name__ == "__main__":
    main()
