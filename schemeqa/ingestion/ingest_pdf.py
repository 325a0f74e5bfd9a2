"""Scheme PDF ingestor.

Extracts text from a local PDF or a PDF URL, normalizes and translates it,
chunks it, embeds the chunks with the configured OpenAI embedding model and
stores them as the chunk set of one scheme.

The scheme row is created (or updated) from the command-line metadata first,
so the command can bootstrap a database without the admin service.

Usage:
  python -m schemeqa.ingestion.ingest_pdf --scheme-id pm-scholarship \\
      --title "Scholarship Scheme" --source ./scholarship.pdf
  python -m schemeqa.ingestion.ingest_pdf --scheme-id pm-scholarship \\
      --source https://cdn.example.com/scholarship-v2.pdf --reprocess

Configuration:
- Database: schemeqa.config.settings.DATABASE_URL
- Embeddings: schemeqa.config.settings.OPENAI_EMBEDDING_MODEL
- Chunk params: schemeqa.config.settings.CHUNK_SIZE, CHUNK_OVERLAP
"""
from __future__ import annotations

import argparse
import logging

from schemeqa.config import settings
from schemeqa.ingestion.pipeline import IngestOptions
from schemeqa.service import build_services

logger = logging.getLogger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Ingest a scheme PDF into the chunk store.")
    parser.add_argument("--scheme-id", required=True, help="Scheme identifier")
    parser.add_argument("--source", required=True, help="Local PDF path or HTTP(S) URL")
    parser.add_argument("--title", default=None, help="Scheme title (required when the scheme does not exist yet)")
    parser.add_argument("--category", default="Other", help="Scheme category (default: Other)")
    parser.add_argument("--description", default=None, help="Short scheme description")
    parser.add_argument("--reprocess", action="store_true", help="Replace the scheme's existing chunks")
    parser.add_argument("--restore", action="store_true", help="Reactivate a soft-deleted scheme before ingesting")
    parser.add_argument("--chunk-size", type=int, default=settings.CHUNK_SIZE, help="Window size in words")
    parser.add_argument("--overlap", type=int, default=settings.CHUNK_OVERLAP, help="Window overlap in words")
    parser.add_argument("--language", default=None, help="Document language code, skipping detection")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity (default: INFO)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logger.info("Starting PDF ingestion for scheme %s from %s", args.scheme_id, args.source)

    services = build_services(settings)
    services.database.init()
    try:
        existing = services.store.get_scheme(args.scheme_id)
        if existing is not None and (not existing.is_active or existing.deleted_at is not None) and not args.restore:
            parser.error(f"scheme {args.scheme_id} was deleted; pass --restore to ingest into it again")
        title = args.title or (existing.title if existing else None)
        if title is None:
            parser.error("--title is required for a new scheme")
        pdf_filename = existing.pdf_filename if existing else None
        services.store.upsert_scheme(
            args.scheme_id,
            title=title,
            category=args.category if args.title or existing is None else existing.category,
            description=args.description if args.description is not None else (existing.description if existing else None),
            pdf_url=args.source,
            pdf_filename=pdf_filename,
        )

        options = IngestOptions(
            chunk_size=args.chunk_size,
            overlap=args.overlap,
            source_language=args.language,
            file_name=pdf_filename,
        )
        run = services.pipeline.reprocess if args.reprocess else services.pipeline.ingest
        report = run(args.scheme_id, args.source, options)
        if report.success:
            logger.info(
                "Completed ingestion: chunks=%d, words=%d, scheme=%s",
                report.chunks_created, report.total_words, args.scheme_id,
            )
            if report.warning:
                logger.warning(report.warning)
            print(f"[INGEST-PDF] {args.scheme_id} <- {args.source} -> {report.chunks_created} chunks")
        else:
            logger.error("Ingestion failed (%s): %s", report.error_kind, report.error)
            raise SystemExit(1)
    except Exception:
        logger.exception("Ingestion failed for %s", args.scheme_id)
        raise
    finally:
        services.close()


if __name__ == "__main__":
    main()
