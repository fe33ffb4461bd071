#!/usr/bin/env python3
"""
Move activity entries from organizations/{org}/activity_logs into
organizations/{org}/activity.

Usage:
  python -m scripts.migrate_activity_logs                  # dry-run, all organizations
  python -m scripts.migrate_activity_logs --apply
  python -m scripts.migrate_activity_logs --org-id <id> --apply
"""

import argparse
import asyncio
from typing import Optional

from invoicehub.config import settings
from invoicehub.context import build_context
from invoicehub.logging_config import setup_logging
from invoicehub.paths import legacy_activity_path
from invoicehub.services.firebase_app import init_firebase


async def run(apply: bool, org_id: Optional[str]) -> None:
    setup_logging()
    ctx = build_context(settings, firebase_app=init_firebase())

    if org_id:
        org_ids = [org_id]
    else:
        org_ids = [key for key, _ in await ctx.db.get_items("organizations")]

    print("Legacy activity migration")
    print(f"  Apply mode: {apply}")
    print(f"  Organizations scanned: {len(org_ids)}")

    total = 0
    for oid in org_ids:
        legacy = await ctx.db.get_items(legacy_activity_path(oid))
        if not legacy:
            continue
        if apply:
            moved = await ctx.activity.migrate_legacy_activity(oid)
        else:
            moved = len(legacy)
        total += moved
        print(f"  - {oid}: {moved} entries")

    verb = "Moved" if apply else "Would move"
    print(f"\n{verb} {total} entries.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Migrate legacy activity_logs nodes")
    parser.add_argument("--apply", action="store_true", help="Write the migrated entries")
    parser.add_argument("--org-id", default=None, help="Only migrate this organization")
    args = parser.parse_args()

    asyncio.run(run(apply=args.apply, org_id=args.org_id))
