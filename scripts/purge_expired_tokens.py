#!/usr/bin/env python3
"""Delete refresh-token rows whose expiry has passed.

Postgres has no TTL index, so run this periodically (cron, systemd timer):

    DATABASE_URL=postgresql://... python scripts/purge_expired_tokens.py
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def purge() -> int:
    from identity_service.logging import set_correlation_id
    from identity_service.service.runtime import get_runtime

    set_correlation_id()
    runtime = get_runtime()
    try:
        result = await runtime.engine.execute("purge_expired")
    finally:
        await runtime.close()
    if not result.ok:
        raise RuntimeError(result.message)
    return result.payload["purged"]


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.parse_args()
    try:
        purged = asyncio.run(purge())
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
    print(f"Purged {purged} expired refresh token(s)")


if __name__ == "__main__":
    main()
