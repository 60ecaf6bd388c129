#!/usr/bin/env python3
"""
Embedding Regeneration Script

Re-enqueues every record of the chosen kinds at low priority, so fresh user
writes (high priority) still jump ahead. Run this after changing the
embedding model or the text templates.

Usage:
    python scripts/regenerate_embeddings.py [--kind recommendation] [--dry-run] [--batch-size 5]
"""

import sys
import asyncio
import argparse
import logging


async def regenerate(app, kinds, batch_size: int) -> int:
    queued = 0
    for kind in kinds:
        record_ids = app.store.list_record_ids(kind)
        print(f"[Regenerate] {len(record_ids)} {kind.value} records")

        for i in range(0, len(record_ids), batch_size):
            batch = record_ids[i:i + batch_size]
            for record_id in batch:
                app.enqueue_embedding(kind, record_id, {"id": record_id}, priority="low")
                queued += 1
            # Let each batch drain before queueing more
            await app.queue.join()
            status = app.queue_status()
            print(f"[Regenerate] {kind.value}: {min(i + batch_size, len(record_ids))}/{len(record_ids)} "
                  f"(queue length {status.queue_length})")
    return queued


def main():
    parser = argparse.ArgumentParser(description="Regenerate record embeddings")
    parser.add_argument("--kind", action="append", choices=["annotation", "recommendation", "question"],
                        help="Record kind to regenerate (repeatable, default: all)")
    parser.add_argument("--batch-size", type=int, default=None, help="Records per batch (default from config)")
    parser.add_argument("--dry-run", action="store_true", help="Count records without embedding")
    parser.add_argument("--verbose", action="store_true", help="Log every task")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from rekky.app import RekkyApp
    from rekky.common.config import load_config
    from rekky.common.schemas.records import RecordKind

    config = load_config()
    if not config.database.url:
        print("[Regenerate] ERROR: DATABASE_URL is not configured")
        sys.exit(1)

    app = RekkyApp.from_config(config)
    if not app.embedding_service.is_available:
        print("[Regenerate] ERROR: Embedding service not available (set OPENAI_API_KEY)")
        sys.exit(1)

    kinds = [RecordKind(k) for k in (args.kind or [k.value for k in RecordKind])]
    batch_size = args.batch_size or config.queue.batch_size

    if args.dry_run:
        for kind in kinds:
            print(f"[Regenerate] DRY RUN - would re-embed {len(app.store.list_record_ids(kind))} {kind.value} records")
        return

    queued = asyncio.run(regenerate(app, kinds, batch_size))
    print(f"[Regenerate] Complete: {queued} records processed")


if __name__ == "__main__":
    main()
