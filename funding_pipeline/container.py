"""
Service container - explicitly constructed service handles for one process.

Created at process start, ``start()``-ed once, shared with the API through
``app.state`` and with workers through their constructors, and ``close()``-d
on shutdown.
"""

from typing import Optional

import structlog

from funding_pipeline.core.config import Settings, get_settings
from funding_pipeline.core.database import Database
from funding_pipeline.core.security import KeyCipher
from funding_pipeline.services.address_pool import AddressPoolService
from funding_pipeline.services.chain_monitor import ChainMonitor
from funding_pipeline.services.chains import ChainRegistry
from funding_pipeline.services.deposit_service import DepositService
from funding_pipeline.services.funding_repository import FundingRepository
from funding_pipeline.services.price_feed import PriceFeedService
from funding_pipeline.services.reward_log import RewardLogRepository
from funding_pipeline.services.reward_queue import RewardQueue
from funding_pipeline.services.reward_service import RewardService
from funding_pipeline.services.treasury import Erc20Treasury
from funding_pipeline.services.worker_health import WorkerHealthRepository
from funding_pipeline.workers.chain_monitor_worker import ChainMonitorWorker
from funding_pipeline.workers.cleanup_worker import CleanupWorker
from funding_pipeline.workers.manager import WorkerManager
from funding_pipeline.workers.reward_processor import RewardProcessorWorker


logger = structlog.get_logger(__name__)


class ServiceContainer:
    """Wires every service, repository and worker together."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        db: Optional[Database] = None,
        registry: Optional[ChainRegistry] = None,
        price_feed: Optional[PriceFeedService] = None,
        reward_service: Optional[RewardService] = None
    ):
        self.settings = settings or get_settings()
        self.db = db or Database(self.settings)
        self.cipher = KeyCipher(self.settings.key_encryption_secret)
        self.registry = registry or ChainRegistry.from_settings(self.settings, self.cipher)

        self.fundings = FundingRepository(self.db)
        self.reward_queue = RewardQueue(self.db)
        self.reward_logs = RewardLogRepository(self.db)
        self.worker_health = WorkerHealthRepository(self.db, self.settings.worker_healthy_threshold)
        self.address_pool = AddressPoolService(self.db, self.registry)

        self.price_feed = price_feed or PriceFeedService(self.settings)
        if reward_service is None and self.settings.reward_configured:
            reward_service = RewardService(self.settings, self.price_feed, Erc20Treasury(self.settings))
        self.reward_service = reward_service

        self.chain_monitor = ChainMonitor(
            self.settings, self.db, self.registry, self.fundings, self.reward_queue
        )
        self.deposits = DepositService(
            self.settings, self.db, self.address_pool, self.fundings, self.chain_monitor
        )

        self.chain_monitor_worker = ChainMonitorWorker(
            self.chain_monitor,
            interval=self.settings.chain_monitor_interval,
            health=self.worker_health,
            shutdown_timeout=self.settings.worker_shutdown_timeout
        )
        self.reward_processor = RewardProcessorWorker(
            self.db,
            self.reward_queue,
            self.fundings,
            self.reward_service,
            self.reward_logs,
            interval=self.settings.reward_processor_interval,
            batch_size=self.settings.reward_batch_size,
            max_retries=self.settings.reward_max_retries,
            health=self.worker_health,
            shutdown_timeout=self.settings.worker_shutdown_timeout
        )
        self.cleanup_worker = CleanupWorker(
            self.settings,
            self.fundings,
            self.address_pool,
            self.reward_queue,
            self.reward_logs,
            health=self.worker_health
        )
        self.workers = WorkerManager([
            self.chain_monitor_worker,
            self.reward_processor,
            self.cleanup_worker,
        ])

    async def start(self) -> None:
        await self.db.connect()
        if self.settings.auto_create_tables:
            await self.db.create_tables()
        if self.reward_service is None:
            logger.warning("Reward token not configured; reward processing disabled")
        logger.info("Service container started", environment=self.settings.environment)

    async def close(self) -> None:
        await self.workers.stop_all()
        await self.registry.close()
        await self.price_feed.close()
        await self.db.close()
        logger.info("Service container closed")
