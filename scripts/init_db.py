"""Script to initialize a development database without running migrations."""

import asyncio

from app.database import engine
from app.models.appointments import metadata as appointments_metadata
from app.models.patients import metadata as patients_metadata


async def init_db() -> None:
    """Create all tables on the configured database."""
    async with engine.begin() as conn:
        await conn.run_sync(patients_metadata.create_all)
        await conn.run_sync(appointments_metadata.create_all)

    await engine.dispose()
    print("✓ Database initialized successfully!")


if __name__ == "__main__":
    asyncio.run(init_db())
