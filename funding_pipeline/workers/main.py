"""
Worker process entry point.

Usage:
    python -m funding_pipeline.workers.main
"""

import asyncio
import sys

import structlog

from funding_pipeline.container import ServiceContainer
from funding_pipeline.core.config import get_settings
from funding_pipeline.core.logging import setup_logging


logger = structlog.get_logger(__name__)


async def run_workers(container: ServiceContainer) -> None:
    """Start all workers and block until a shutdown signal stops them."""
    await container.start()
    try:
        await container.workers.start_all()
        container.workers.install_signal_handlers()
        logger.info("Workers running, press Ctrl+C to stop")
        await container.workers.wait_until_stopped()
    finally:
        await container.close()


def main() -> None:
    settings = get_settings()
    setup_logging(settings)

    try:
        asyncio.run(run_workers(ServiceContainer(settings)))
    except Exception as e:
        logger.error("Worker process failed", error=str(e), exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
