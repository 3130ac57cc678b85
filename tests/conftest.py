"""
Shared fixtures: a temporary SQLite database, explicit settings and
deterministic fakes for chain adapters, the price feed and the treasury.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from funding_pipeline.core.config import Settings, get_chain_config
from funding_pipeline.core.database import Database
from funding_pipeline.core.security import KeyCipher
from funding_pipeline.models import Chain, FundingRecord, utcnow
from funding_pipeline.services.address_pool import AddressPoolService
from funding_pipeline.services.chain_monitor import ChainMonitor
from funding_pipeline.services.chains import ChainAdapter, ChainRegistry, GeneratedAddress, TransactionCheck
from funding_pipeline.services.funding_repository import FundingRepository
from funding_pipeline.services.reward_log import RewardLogRepository
from funding_pipeline.services.reward_queue import RewardQueue
from funding_pipeline.services.reward_service import RewardService
from funding_pipeline.services.treasury import SignedTransfer
from funding_pipeline.services.worker_health import WorkerHealthRepository


REQUESTER = "0x" + "ab" * 20


def make_settings(database_url: str, **overrides) -> Settings:
    values = dict(
        _env_file=None,
        database_url=database_url,
        environment="development",
        log_format="json",
        log_level="WARNING",
        key_encryption_secret="test-secret",
        admin_api_key=None,
        rate_limit_enabled=False,
        chain_check_batch_delay=0,
        chain_check_timeout=2.0,
        min_funding_amount_usd=Decimal("10"),
        reward_multiplier=Decimal("1"),
        reward_token_decimals=18,
        reward_max_retries=3,
        worker_shutdown_timeout=2.0,
        fallback_prices_usd={"BTC": Decimal("40000"), "ETH": Decimal("2000"), "SOL": Decimal("100")},
    )
    values.update(overrides)
    return Settings(**values)


class FakeAdapter(ChainAdapter):
    """Adapter that derives fake addresses and returns scripted checks."""

    def __init__(self, chain: Chain, settings: Settings, cipher: KeyCipher):
        self.chain = chain
        super().__init__(settings, cipher)
        self.checks: Dict[str, TransactionCheck] = {}
        self.funded_at: Dict[str, datetime] = {}
        self.check_calls: List[str] = []
        self.since_calls: List[Optional[datetime]] = []
        self.height = 100
        self.fail_height = False

    async def generate_address(self, derivation_index: int) -> GeneratedAddress:
        return GeneratedAddress(
            address=f"{self.chain.value.lower()}-addr-{derivation_index}",
            derivation_index=derivation_index,
            encrypted_private_key=self.cipher.encrypt(f"key-{derivation_index}"),
        )

    async def _check_transactions(
        self,
        address: str,
        min_confirmations: int,
        since: Optional[datetime] = None
    ) -> TransactionCheck:
        self.check_calls.append(address)
        self.since_calls.append(since)
        check = self.checks.get(address)
        if isinstance(check, Exception):
            raise check
        funded_at = self.funded_at.get(address)
        if funded_at is not None and since is not None and funded_at < since:
            return TransactionCheck.not_found()
        return check or TransactionCheck.not_found()

    async def _get_chain_height(self) -> int:
        if self.fail_height:
            raise RuntimeError("node unreachable")
        return self.height

    def fund(
        self,
        address: str,
        amount,
        confirmations: int = 6,
        tx_hash: Optional[str] = None,
        at: Optional[datetime] = None
    ) -> None:
        if at is not None:
            self.funded_at[address] = at
        self.checks[address] = TransactionCheck(
            confirmed=confirmations >= self.min_confirmations,
            amount=Decimal(str(amount)),
            tx_hash=tx_hash or f"tx-{address}",
            confirmations=confirmations,
        )


class FakePriceFeed:
    def __init__(self, prices: Optional[Dict[Chain, Decimal]] = None):
        self.prices = prices or {
            Chain.BTC: Decimal("40000"),
            Chain.ETH: Decimal("2000"),
            Chain.SOL: Decimal("100"),
        }

    async def get_price_usd(self, chain: Chain) -> Decimal:
        return self.prices[chain]

    async def close(self) -> None:
        pass


class FakeTreasury:
    """Records signed and broadcast transfers instead of touching a chain.

    Broadcast transfers are mined at once unless ``hold_receipts`` is set;
    ``mine`` settles a held transfer later.
    """

    address = "0x" + "11" * 20
    token_address = "0x" + "22" * 20

    def __init__(self, balance_raw: int = 10 ** 30):
        self.balance_raw = balance_raw
        self.transfers: List[tuple] = []
        self.fail_with: Optional[Exception] = None
        self.broadcast_error: Optional[Exception] = None
        self.hold_receipts = False
        self.signed: Dict[str, tuple] = {}
        self.known: List[str] = []
        self.receipts: Dict[str, dict] = {}
        self.rebroadcasts = 0
        self.next_nonce = 0
        self.confirmed_nonce = 0

    async def get_balance_raw(self) -> int:
        return self.balance_raw

    async def estimate_transfer_gas(self, to: str, raw_amount: int) -> int:
        return 50000

    async def get_gas_price(self) -> int:
        return 20 * 10 ** 9

    async def sign_transfer(self, to: str, raw_amount: int, gas_limit: int) -> SignedTransfer:
        if self.fail_with is not None:
            raise self.fail_with
        nonce = self.next_nonce
        self.next_nonce += 1
        tx_hash = f"0xreward{len(self.signed) + 1}"
        raw = f"0xraw{len(self.signed) + 1}"
        self.signed[raw] = (tx_hash, nonce, (to, raw_amount, gas_limit))
        return SignedTransfer(tx_hash=tx_hash, nonce=nonce, raw_transaction=raw)

    async def broadcast(self, raw_transaction: str) -> str:
        if self.broadcast_error is not None:
            raise self.broadcast_error
        tx_hash, nonce, transfer = self.signed[raw_transaction]
        if tx_hash in self.known:
            self.rebroadcasts += 1
            return tx_hash
        self.known.append(tx_hash)
        self.transfers.append(transfer)
        if not self.hold_receipts:
            self.mine(tx_hash)
        return tx_hash

    def mine(self, tx_hash: str, status: int = 1) -> None:
        for signed_hash, nonce, transfer in self.signed.values():
            if signed_hash == tx_hash:
                self.receipts[tx_hash] = {"status": status, "blockNumber": 1000, "gasUsed": 45000}
                self.confirmed_nonce = max(self.confirmed_nonce, nonce + 1)
                if status == 1:
                    self.balance_raw -= transfer[1]

    def drop(self, tx_hash: str) -> None:
        """Forget a pending transfer and let another transaction take its nonce."""
        self.known.remove(tx_hash)
        self.confirmed_nonce = max(nonce for _, nonce, _ in self.signed.values()) + 1
        self.next_nonce = max(self.next_nonce, self.confirmed_nonce)

    async def wait_for_receipt(self, tx_hash: str):
        return self.receipts.get(tx_hash)

    async def get_receipt(self, tx_hash: str):
        return self.receipts.get(tx_hash)

    async def is_known(self, tx_hash: str) -> bool:
        return tx_hash in self.known

    async def get_confirmed_nonce(self) -> int:
        return self.confirmed_nonce

    async def get_token_metadata(self) -> dict:
        return {"name": "Reward", "symbol": "RWD", "decimals": 18}


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(f"sqlite:///{tmp_path / 'pipeline.db'}")


@pytest.fixture
async def db(settings):
    database = Database(settings)
    await database.connect()
    await database.create_tables()
    yield database
    await database.close()


@pytest.fixture
def cipher(settings) -> KeyCipher:
    return KeyCipher(settings.key_encryption_secret)


@pytest.fixture
def adapters(settings, cipher) -> Dict[Chain, FakeAdapter]:
    return {chain: FakeAdapter(chain, settings, cipher) for chain in Chain}


@pytest.fixture
def registry(adapters) -> ChainRegistry:
    return ChainRegistry(adapters.values())


@pytest.fixture
def fundings(db) -> FundingRepository:
    return FundingRepository(db)


@pytest.fixture
def queue(db) -> RewardQueue:
    return RewardQueue(db)


@pytest.fixture
def reward_logs(db) -> RewardLogRepository:
    return RewardLogRepository(db)


@pytest.fixture
def health(db) -> WorkerHealthRepository:
    return WorkerHealthRepository(db, healthy_threshold=120)


@pytest.fixture
def address_pool(db, registry) -> AddressPoolService:
    return AddressPoolService(db, registry)


@pytest.fixture
def monitor(settings, db, registry, fundings, queue) -> ChainMonitor:
    return ChainMonitor(settings, db, registry, fundings, queue)


@pytest.fixture
def price_feed() -> FakePriceFeed:
    return FakePriceFeed()


@pytest.fixture
def treasury() -> FakeTreasury:
    return FakeTreasury()


@pytest.fixture
def reward_service(settings, price_feed, treasury) -> RewardService:
    return RewardService(settings, price_feed, treasury)


async def create_funding(
    fundings: FundingRepository,
    chain: Chain = Chain.ETH,
    deposit_address: str = "eth-addr-0",
    expires_at: Optional[datetime] = None,
    requester: str = REQUESTER
) -> FundingRecord:
    return await fundings.create(
        requester_address=requester,
        chain=chain,
        deposit_address=deposit_address,
        min_confirmations=get_chain_config(chain).min_confirmations,
        expires_at=expires_at or utcnow() + timedelta(minutes=60),
    )
