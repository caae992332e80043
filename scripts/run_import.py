#!/usr/bin/env python3
"""
run_import.py - Run a full SSG import against the configured database

Usage:
    python scripts/run_import.py [--source PATH] [--repo URL] [--run-id ID]

Options:
    --source PATH   SSG content root (default: SSGKB_SOURCE_PATH or ssg-static)
    --repo URL      Git repository to clone when the root is missing
    --run-id ID     Run identifier (default: generated)

The script creates the schema if needed, pulls/lists the content tree,
imports every table, guide, manifest and data stream, then materialises
cross references. Exit status is non-zero unless the run completes.
"""

import argparse
import asyncio
import sys
import uuid

from ssgkb.db.session import init_db
from ssgkb.db.store import SSGStore
from ssgkb.worker.fetcher import SourceFetcher
from ssgkb.worker.handlers import build_bus
from ssgkb.worker.importer import SSGImporter
from ssgkb.worker.tasks import run_import_task


async def run(source: str | None, repo: str | None, run_id: str) -> dict:
    await init_db()
    bus = build_bus(SSGStore(), SourceFetcher(root=source, repo_url=repo))
    return await run_import_task({"importer": SSGImporter(bus)}, run_id)


def main() -> None:
    parser = argparse.ArgumentParser(description="Import SSG content into the knowledge base")
    parser.add_argument("--source", default=None, help="SSG content root")
    parser.add_argument("--repo", default=None, help="Git repository URL")
    parser.add_argument("--run-id", default=None, help="Run identifier")
    args = parser.parse_args()

    run_id = args.run_id or f"cli-{uuid.uuid4().hex[:8]}"
    print(f"Starting import run {run_id}")

    summary = asyncio.run(run(args.source, args.repo, run_id))
    progress = summary["progress"]

    print()
    print("=" * 40)
    print(f"State:       {summary['state']}")
    for name in ("tables", "guides", "manifests", "datastreams"):
        print(
            f"{name.capitalize():<12} {progress[f'processed_{name}']}/{progress[f'total_{name}']}"
            f" ({progress[f'failed_{name}']} failed)"
        )
    if summary["error"]:
        print(f"Error:       {summary['error']}")
    print("=" * 40)

    if summary["state"] != "completed":
        sys.exit(1)


if __name__ == "__main__":
    main()
