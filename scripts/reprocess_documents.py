#!/usr/bin/env python3
"""Re-ingest stored training documents from their original PDF files.

Run after changing the embedding model or dimension: every document is
extracted, chunked and embedded again, and its chunk set is replaced
atomically. Documents are processed one at a time.

The one-run-per-document lock lives in process memory, so this script does
not see runs owned by a live API server. Stop the server (or make sure no
reprocess or upload is in flight) before running it, otherwise the same
document can be ingested by both processes at once; the later chunk
replace wins.

Usage:
    uv run python scripts/reprocess_documents.py
    uv run python scripts/reprocess_documents.py --tenant-id club-lyon
    uv run python scripts/reprocess_documents.py --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def reprocess(tenant_id: str | None, dry_run: bool = False) -> int:
    """Re-ingest documents and print a summary.

    Args:
        tenant_id: Only reprocess this tenant's documents (all when None).
        dry_run: If True, only list the documents that would be reprocessed.

    Returns:
        Process exit code (1 if any document failed).
    """
    from src.app.api.middleware.logging import configure_structlog
    from src.app.core.database import close_db, get_session, init_db
    from src.training import TrainingConfig, create_training_service
    from src.training.models import IngestionState

    configure_structlog()
    await init_db()

    config = TrainingConfig()
    service = create_training_service(get_session, config)

    try:
        documents = await service.documents.list_all(tenant_id)
        scope = f"tenant {tenant_id}" if tenant_id else "all tenants"
        print(f"Found {len(documents)} documents ({scope})")
        for doc in documents:
            print(f"  {doc.id}  [{doc.tenant_id}] {doc.title} ({doc.chunk_count} chunks)")

        if dry_run:
            print("\n[DRY RUN] No documents were reprocessed.")
            return 0

        counts: dict[str, int] = {}
        print(f"\nReprocessing with {config.embedding_provider}/{config.embedding_model} "
              f"({config.embedding_dimensions} dimensions)...")
        for doc in documents:
            status = await service.orchestrator.run(doc.id)
            if status is None:
                print(f"  [SKIP] {doc.title}: already running")
                counts["skipped"] = counts.get("skipped", 0) + 1
                continue

            counts[status.state.value] = counts.get(status.state.value, 0) + 1
            label = "OK" if status.state == IngestionState.completed else status.state.value.upper()
            print(f"  [{label}] {doc.title}: {status.persisted_chunks} chunks")
            if status.error_message:
                print(f"    Error: {status.error_message}")
    finally:
        await close_db()

    print(f"\n{'=' * 50}")
    print("Reprocess Summary")
    print(f"{'=' * 50}")
    for state, count in sorted(counts.items()):
        print(f"  {state}: {count}")

    failed = counts.get(IngestionState.failed.value, 0)
    return 1 if failed else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Re-ingest stored training documents")
    parser.add_argument("--tenant-id", default=None, help="Only reprocess this tenant's documents")
    parser.add_argument("--dry-run", action="store_true", help="List documents without reprocessing")
    args = parser.parse_args()

    sys.exit(asyncio.run(reprocess(args.tenant_id, dry_run=args.dry_run)))


if __name__ == "__main__":
    main()
