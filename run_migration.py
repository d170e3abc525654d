#!/usr/bin/env python3
"""Run database migrations using asyncpg."""

import asyncio
import sys
from pathlib import Path

import asyncpg
from dotenv import load_dotenv

# Add backend to path to import config
sys.path.insert(0, "backend")
from config import get_pg_conn_str

# Load environment variables
load_dotenv("backend/.env")

MIGRATION_FILE = Path("backend/migrations/001_add_decision_tables.sql")
DECISION_TABLES = (
    "decisions",
    "decision_options",
    "decision_recommendations",
    "decision_followups",
)


async def run_migration():
    """Run the decision tables migration."""
    try:
        conn_str = get_pg_conn_str()
    except RuntimeError as e:
        print(f"❌ Failed to get connection string: {e}")
        return False

    if not MIGRATION_FILE.exists():
        print(f"❌ Migration file not found: {MIGRATION_FILE}")
        return False

    print(f"📂 Reading migration: {MIGRATION_FILE}")
    migration_sql = MIGRATION_FILE.read_text()

    print("🔌 Connecting to database...")
    try:
        conn = await asyncpg.connect(conn_str)
    except (OSError, asyncpg.PostgresError) as e:
        print(f"❌ Connection failed: {e}")
        return False

    try:
        print("🔄 Running migration...")
        await conn.execute(migration_sql)
        print("✅ Migration completed successfully!")

        print("\n📊 Verifying tables...")
        tables = await conn.fetch(
            """
            SELECT tablename
            FROM pg_tables
            WHERE schemaname = 'public'
            AND tablename = ANY($1::text[])
            ORDER BY tablename
            """,
            list(DECISION_TABLES),
        )
        print(f"✅ Found {len(tables)}/{len(DECISION_TABLES)} decision tables:")
        for table in tables:
            print(f"   - {table['tablename']}")
        return len(tables) == len(DECISION_TABLES)

    except asyncpg.PostgresError as e:
        print(f"❌ Migration failed: {e}")
        return False
    finally:
        await conn.close()


if __name__ == "__main__":
    success = asyncio.run(run_migration())
    sys.exit(0 if success else 1)
