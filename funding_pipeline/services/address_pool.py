"""
Address pool service - hands out pre-generated deposit addresses.

``mark_address_as_used`` is the exclusivity gate: it is a conditional update
on ``is_used = false``, so of two concurrent requests that read the same free
entry only one wins it.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from funding_pipeline.core.database import Database
from funding_pipeline.models import (
    AddressPoolEntry, FundingRecord, Chain, FundingStatus, utcnow
)
from .chains import ChainRegistry


logger = structlog.get_logger(__name__)

MAX_CLAIM_ATTEMPTS = 5


class AddressPoolService:
    """Reservoir of unused deposit addresses per chain."""

    def __init__(self, db: Database, registry: ChainRegistry):
        self.db = db
        self.registry = registry
        self.logger = logger.bind(service="address_pool")

    async def get_unused_address(
        self,
        chain: Chain,
        session: Optional[AsyncSession] = None
    ) -> Optional[AddressPoolEntry]:
        """Oldest unused entry for ``chain``. Does not mark it used."""
        async with self.db.session(session) as s:
            result = await s.execute(
                select(AddressPoolEntry)
                .where(
                    AddressPoolEntry.chain == chain,
                    AddressPoolEntry.is_used.is_(False)
                )
                .order_by(AddressPoolEntry.created_at.asc(), AddressPoolEntry.id.asc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def mark_address_as_used(
        self,
        address: str,
        session: Optional[AsyncSession] = None
    ) -> bool:
        """
        Mark ``address`` used.

        Returns True if this call claimed it, False if it was already used
        (repeated calls are a no-op).
        """
        async with self.db.session(session) as s:
            result = await s.execute(
                update(AddressPoolEntry)
                .where(
                    AddressPoolEntry.address == address,
                    AddressPoolEntry.is_used.is_(False)
                )
                .values(is_used=True, used_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            claimed = result.rowcount == 1

        if not claimed:
            self.logger.debug("Address already used", address=address)
        return claimed

    async def store_address(
        self,
        chain: Chain,
        address: str,
        encrypted_private_key: Optional[str],
        derivation_index: int,
        session: Optional[AsyncSession] = None
    ) -> AddressPoolEntry:
        """Insert a freshly generated, unused entry."""
        async with self.db.session(session) as s:
            entry = AddressPoolEntry(
                chain=chain,
                address=address,
                encrypted_private_key=encrypted_private_key,
                derivation_index=derivation_index,
                is_used=False,
            )
            s.add(entry)
            await s.flush()
            return entry

    async def next_derivation_index(
        self,
        chain: Chain,
        session: Optional[AsyncSession] = None
    ) -> int:
        async with self.db.session(session) as s:
            result = await s.execute(
                select(func.max(AddressPoolEntry.derivation_index))
                .where(AddressPoolEntry.chain == chain)
            )
            current = result.scalar_one_or_none()
            return 0 if current is None else current + 1

    async def pre_generate_addresses(self, chain: Chain, count: int) -> int:
        """Generate ``count`` addresses through the chain adapter and store them."""
        adapter = self.registry.get(chain)
        stored = 0

        async with self.db.session() as s:
            start = await self.next_derivation_index(chain, s)
            for offset in range(count):
                generated = await adapter.generate_address(start + offset)
                await self.store_address(
                    chain,
                    generated.address,
                    generated.encrypted_private_key,
                    generated.derivation_index,
                    s
                )
                stored += 1

        self.logger.info("Pre-generated addresses", chain=chain.value, count=stored, first_index=start)
        return stored

    async def assign_address(
        self,
        chain: Chain,
        session: Optional[AsyncSession] = None
    ) -> AddressPoolEntry:
        """
        Take an address for a new funding: pool first, then on-demand generation.

        The on-demand path stores the address before marking it used so a
        crash never leaves a used address unknown to the pool.
        """
        async with self.db.session(session) as s:
            for _ in range(MAX_CLAIM_ATTEMPTS):
                entry = await self.get_unused_address(chain, s)
                if entry is None:
                    break
                if await self.mark_address_as_used(entry.address, s):
                    await s.refresh(entry)
                    return entry
                self.logger.debug("Lost address claim, retrying", chain=chain.value, address=entry.address)

            self.logger.warning("Address pool empty, generating on demand", chain=chain.value)

            adapter = self.registry.get(chain)
            index = await self.next_derivation_index(chain, s)
            generated = await adapter.generate_address(index)
            entry = await self.store_address(
                chain,
                generated.address,
                generated.encrypted_private_key,
                generated.derivation_index,
                s
            )
            await self.mark_address_as_used(entry.address, s)
            await s.refresh(entry)
            return entry

    async def release_expired_addresses(
        self,
        cooldown_minutes: int,
        now: Optional[datetime] = None,
        session: Optional[AsyncSession] = None
    ) -> int:
        """
        Return addresses to the pool once their funding expired more than
        ``cooldown_minutes`` ago.

        An address that any non-expired funding still references is kept.
        """
        now = now or utcnow()
        cutoff = now - timedelta(minutes=cooldown_minutes)

        expired_addresses = (
            select(FundingRecord.deposit_address)
            .where(
                FundingRecord.status == FundingStatus.EXPIRED,
                FundingRecord.expired_at <= cutoff
            )
        )
        active_addresses = (
            select(FundingRecord.deposit_address)
            .where(FundingRecord.status != FundingStatus.EXPIRED)
        )

        async with self.db.session(session) as s:
            result = await s.execute(
                update(AddressPoolEntry)
                .where(
                    AddressPoolEntry.is_used.is_(True),
                    AddressPoolEntry.address.in_(expired_addresses),
                    AddressPoolEntry.address.not_in(active_addresses)
                )
                .values(is_used=False, used_at=None)
                .execution_options(synchronize_session=False)
            )
            released = result.rowcount

        if released:
            self.logger.info("Released expired addresses", count=released)
        return released

    async def get_pool_stats(self, session: Optional[AsyncSession] = None) -> Dict[str, Any]:
        """Total / unused / used counts per chain."""
        stats: Dict[str, Any] = {
            chain.value: {"total": 0, "unused": 0, "used": 0}
            for chain in self.registry.chains
        }

        async with self.db.session(session) as s:
            result = await s.execute(
                select(AddressPoolEntry.chain, AddressPoolEntry.is_used, func.count())
                .group_by(AddressPoolEntry.chain, AddressPoolEntry.is_used)
            )
            for chain, is_used, count in result.all():
                chain_stats = stats.setdefault(chain.value, {"total": 0, "unused": 0, "used": 0})
                chain_stats["used" if is_used else "unused"] += count
                chain_stats["total"] += count

        return stats
