#!/usr/bin/env python3
"""
Create the pgvector extension and the queue tables.

Safe to re-run: existing tables are left untouched.

Usage:
    uv run python scripts/init_db.py

Reads DATABASE_URL from the environment / .env like the application does.
"""

import asyncio

from sqlalchemy import text

from embed_queue.db.engine import create_worker_session_factory
from embed_queue.db.models import Base


async def init_db() -> None:
    engine, _ = create_worker_session_factory()
    try:
        async with engine.begin() as conn:
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            await conn.run_sync(Base.metadata.create_all)
    finally:
        await engine.dispose()

    print(f"Initialized schema: {', '.join(sorted(Base.metadata.tables))}")


if __name__ == "__main__":
    asyncio.run(init_db())
