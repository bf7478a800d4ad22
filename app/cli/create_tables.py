# app/cli/create_tables.py
import asyncio

import click

from app import models  # noqa: F401  registers every table on Base.metadata
from app.database import Base, engine


@click.command("create-tables")
def create_tables():
    """Create all database tables directly using SQLAlchemy (development only; use alembic otherwise)"""

    async def _create_tables():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        click.echo("All tables created successfully!")

    asyncio.run(_create_tables())


if __name__ == "__main__":
    create_tables()
