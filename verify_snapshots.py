#!/usr/bin/env python3
"""
Quick sanity check script to inspect recorded metric observations.

Usage:
    python verify_snapshots.py [path/to/signals.db]

This script:
1. Checks if the database exists
2. Counts observations per metric
3. Shows the latest transitions for each metric
4. Flags consecutive duplicate rows (history should only hold transitions)
"""

import sys
import time
from pathlib import Path

try:
    import aiosqlite
    import asyncio
except ImportError:
    print("Error: aiosqlite not installed. Run: pip install aiosqlite")
    sys.exit(1)


def _fmt_ms(ts_ms: int) -> str:
    return time.strftime('%Y-%m-%d %H:%M:%S', time.gmtime(ts_ms / 1000))


async def verify_database(db_path: str = "data/signals.db"):
    """Verify the database and show recent transitions."""

    db_file = Path(db_path)
    if not db_file.exists():
        print(f"❌ Database not found at: {db_path}")
        print("   → Make sure the core API has been started and a tracked metric requested.")
        return False

    print(f"✅ Database exists: {db_path}\n")

    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row

        cursor = await db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='observations'"
        )
        if not await cursor.fetchone():
            print("❌ 'observations' table not found. Database may be corrupted.")
            return False

        print("✅ 'observations' table exists\n")

        cursor = await db.execute("""
            SELECT metric, COUNT(*) as count, MAX(observed_at) as latest
            FROM observations
            GROUP BY metric
            ORDER BY metric
        """)
        rows = await cursor.fetchall()

        if not rows:
            print("⚠️  No observations yet.")
            print("   → Request /v1/coinbase-rank or /v1/metrics/btc_indicators to record one.")
            return False

        print("📊 Observations by metric:")
        print("-" * 60)
        print(f"{'Metric':<28} {'Rows':>8} {'Latest':>22}")
        print("-" * 60)
        for row in rows:
            print(f"{row['metric']:<28} {row['count']:>8,} {_fmt_ms(row['latest']):>22}")
        print("-" * 60)
        print()

        healthy = True
        for row in rows:
            cursor = await db.execute(
                """
                SELECT value, observed_at, source
                FROM observations
                WHERE metric=?
                ORDER BY id DESC
                LIMIT 5
                """,
                (row['metric'],),
            )
            recent = list(reversed(await cursor.fetchall()))

            print(f"🕐 {row['metric']}: last {len(recent)} transitions")
            for obs in recent:
                value = "unranked" if obs['value'] is None else f"{obs['value']:g}"
                print(f"   {_fmt_ms(obs['observed_at'])}  {value:>12}  ({obs['source']})")

            values = [obs['value'] for obs in recent]
            duplicates = sum(1 for a, b in zip(values, values[1:]) if a == b)
            if duplicates:
                healthy = False
                print(f"   ⚠️  {duplicates} consecutive duplicate row(s); a transition was written twice")
            print()

        return healthy


async def main():
    """Main entry point."""
    print("=" * 60)
    print("Top Signals - Snapshot Verification")
    print("=" * 60)
    print()

    db_path = sys.argv[1] if len(sys.argv) > 1 else "data/signals.db"
    success = await verify_database(db_path)

    print()
    print("=" * 60)

    if success:
        print("✅ Verification complete!")
    else:
        print("⚠️  Issues found. See messages above.")

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    asyncio.run(main())
