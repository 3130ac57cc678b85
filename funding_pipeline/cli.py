"""
Management commands for the funding pipeline.

Usage:
    funding-pipeline init-db
    funding-pipeline upgrade
    funding-pipeline pregenerate ETH --count 50
    funding-pipeline pool
    funding-pipeline workers
    funding-pipeline serve
"""

import asyncio
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from alembic import command
from alembic.config import Config

from funding_pipeline.container import ServiceContainer
from funding_pipeline.core.config import get_settings
from funding_pipeline.core.database import Database
from funding_pipeline.core.exceptions import FundingPipelineException
from funding_pipeline.core.logging import setup_logging
from funding_pipeline.services.deposit_service import DepositService

console = Console()
app = typer.Typer(help="Funding pipeline management commands")


@app.command("init-db")
def init_db():
    """Create all tables directly (development)."""
    async def _init():
        settings = get_settings()
        setup_logging(settings)
        db = Database(settings)
        await db.connect()
        try:
            await db.create_tables()
        finally:
            await db.close()
        console.print("✅ Database initialized successfully!")

    asyncio.run(_init())


@app.command()
def upgrade(revision: str = "head"):
    """Apply migrations."""
    alembic_cfg = Config("alembic.ini")
    command.upgrade(alembic_cfg, revision)

    console.print(f"✅ Database upgraded to: {revision}")


@app.command()
def downgrade(revision: str):
    """Downgrade database to specific revision."""
    alembic_cfg = Config("alembic.ini")
    command.downgrade(alembic_cfg, revision)

    console.print(f"⬇️ Database downgraded to: {revision}")


@app.command()
def reset():
    """Reset database (drop all tables)."""
    confirm = typer.confirm("Are you sure you want to drop all tables?")
    if not confirm:
        console.print("❌ Operation cancelled")
        return

    async def _reset():
        settings = get_settings()
        setup_logging(settings)
        db = Database(settings)
        await db.connect()
        try:
            await db.drop_tables()
        finally:
            await db.close()
        console.print("🗑️ All tables dropped!")

    asyncio.run(_reset())


@app.command()
def pregenerate(
    chain: str = typer.Argument(..., help="BTC, ETH or SOL"),
    count: int = typer.Option(10, min=1, max=1000, help="Addresses to generate"),
):
    """Derive and store unused deposit addresses."""
    async def _pregenerate():
        settings = get_settings()
        setup_logging(settings)
        container = ServiceContainer(settings)
        await container.start()
        try:
            chain_enum = DepositService.parse_chain(chain)
            stored = await container.address_pool.pre_generate_addresses(chain_enum, count)
        finally:
            await container.close()
        console.print(f"✅ Generated {stored} {chain_enum.value} addresses")

    try:
        asyncio.run(_pregenerate())
    except FundingPipelineException as e:
        console.print(f"❌ {e.message}")
        sys.exit(1)


@app.command()
def pool():
    """Show address pool status."""
    table = Table(title="Address Pool")
    table.add_column("Chain", style="cyan")
    table.add_column("Total", justify="right")
    table.add_column("Unused", justify="right", style="green")
    table.add_column("Used", justify="right")

    async def _pool():
        settings = get_settings()
        setup_logging(settings)
        container = ServiceContainer(settings)
        await container.start()
        try:
            stats = await container.address_pool.get_pool_stats()
        finally:
            await container.close()

        for chain, counts in stats.items():
            table.add_row(chain, str(counts["total"]), str(counts["unused"]), str(counts["used"]))
        console.print(table)

    asyncio.run(_pool())


@app.command()
def health():
    """Check database health."""
    async def _health():
        settings = get_settings()
        setup_logging(settings)
        db = Database(settings)
        await db.connect()
        try:
            is_healthy = await db.health_check()
        finally:
            await db.close()

        if is_healthy:
            console.print("✅ Database is healthy!")
        else:
            console.print("❌ Database health check failed!")
            sys.exit(1)

    asyncio.run(_health())


@app.command()
def workers():
    """Run the background workers until interrupted."""
    from funding_pipeline.workers.main import main as run_workers_main

    run_workers_main()


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind host (defaults to HOST)"),
    port: Optional[int] = typer.Option(None, help="Bind port (defaults to PORT)"),
):
    """Run the API server."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "funding_pipeline.api.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    app()
