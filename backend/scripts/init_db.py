"""
Create the request-link tables.
Run: python -m scripts.init_db  (from backend/)
"""

import asyncio

from gateway.db.models import Base
from gateway.db.session import engine


async def init_db():
    """Create every table registered on Base.metadata."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    print(f"Created tables: {', '.join(sorted(Base.metadata.tables))}")


if __name__ == "__main__":
    asyncio.run(init_db())
