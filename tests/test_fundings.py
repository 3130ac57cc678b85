"""
Funding lifecycle and funding repository tests.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from funding_pipeline.core.exceptions import FundingNotFoundError, InvalidStatusTransitionError
from funding_pipeline.models import Chain, FundingStatus, utcnow

from conftest import create_funding


class TestFundingStatus:
    def test_allowed_transitions(self):
        assert FundingStatus.PENDING.can_transition_to(FundingStatus.CONFIRMED)
        assert FundingStatus.PENDING.can_transition_to(FundingStatus.EXPIRED)
        assert FundingStatus.CONFIRMED.can_transition_to(FundingStatus.REWARD_SENT)
        assert FundingStatus.CONFIRMED.can_transition_to(FundingStatus.FAILED)

    @pytest.mark.parametrize("current,target", [
        (FundingStatus.PENDING, FundingStatus.REWARD_SENT),
        (FundingStatus.PENDING, FundingStatus.FAILED),
        (FundingStatus.CONFIRMED, FundingStatus.EXPIRED),
        (FundingStatus.CONFIRMED, FundingStatus.PENDING),
        (FundingStatus.EXPIRED, FundingStatus.CONFIRMED),
        (FundingStatus.REWARD_SENT, FundingStatus.FAILED),
        (FundingStatus.FAILED, FundingStatus.CONFIRMED),
    ])
    def test_forbidden_transitions(self, current, target):
        assert not current.can_transition_to(target)

    def test_terminal_states(self):
        terminal = {s for s in FundingStatus if s.is_terminal}
        assert terminal == {FundingStatus.REWARD_SENT, FundingStatus.EXPIRED, FundingStatus.FAILED}

    def test_chain_parse_is_case_insensitive(self):
        assert Chain.parse(" eth ") == Chain.ETH
        with pytest.raises(ValueError):
            Chain.parse("DOGE")


class TestFundingRepository:
    async def test_create_starts_pending(self, fundings):
        record = await create_funding(fundings)

        stored = await fundings.get(record.id)
        assert stored.status == FundingStatus.PENDING
        assert stored.confirmations == 0
        assert stored.min_confirmations == 1
        assert stored.reward_tx_hash is None
        assert len(stored.id) == 36

    async def test_get_or_raise_unknown_id(self, fundings):
        with pytest.raises(FundingNotFoundError):
            await fundings.get_or_raise("missing")

    async def test_confirm_is_idempotent(self, fundings):
        record = await create_funding(fundings)

        assert await fundings.mark_confirmed(record.id, Decimal("1.5"), "0xabc", 3)
        assert not await fundings.mark_confirmed(record.id, Decimal("2"), "0xdef", 5)

        stored = await fundings.get(record.id)
        assert stored.status == FundingStatus.CONFIRMED
        assert stored.funded_amount == Decimal("1.5")
        assert stored.funding_tx_hash == "0xabc"
        assert stored.confirmations == 3
        assert stored.confirmed_at is not None

    async def test_reward_sent_only_once(self, fundings):
        record = await create_funding(fundings)
        await fundings.mark_confirmed(record.id, Decimal("1"), "0xabc", 1)

        assert await fundings.mark_reward_sent(record.id, "0xreward1", Decimal("2000"))
        assert not await fundings.mark_reward_sent(record.id, "0xreward2", Decimal("2000"))

        stored = await fundings.get(record.id)
        assert stored.status == FundingStatus.REWARD_SENT
        assert stored.reward_tx_hash == "0xreward1"

    async def test_reward_sent_requires_confirmed(self, fundings):
        record = await create_funding(fundings)

        assert not await fundings.mark_reward_sent(record.id, "0xreward", Decimal("1"))
        assert (await fundings.get(record.id)).status == FundingStatus.PENDING

    async def test_forbidden_transition_raises(self, fundings):
        record = await create_funding(fundings)

        with pytest.raises(InvalidStatusTransitionError):
            await fundings.transition(record.id, FundingStatus.EXPIRED, FundingStatus.CONFIRMED)

    async def test_expire_only_after_expiry(self, fundings):
        now = utcnow()
        live = await create_funding(fundings, deposit_address="eth-addr-1", expires_at=now + timedelta(minutes=5))
        stale = await create_funding(fundings, deposit_address="eth-addr-2", expires_at=now - timedelta(minutes=5))

        assert not await fundings.expire(live.id, now)
        assert await fundings.expire(stale.id, now)

        stored = await fundings.get(stale.id)
        assert stored.status == FundingStatus.EXPIRED
        assert stored.expired_at == now

    async def test_expire_pending_skips_confirmed(self, fundings):
        now = utcnow()
        past = now - timedelta(minutes=1)
        pending = await create_funding(fundings, deposit_address="eth-addr-1", expires_at=past)
        confirmed = await create_funding(fundings, deposit_address="eth-addr-2", expires_at=past)
        await fundings.mark_confirmed(confirmed.id, Decimal("1"), "0xabc", 1)

        assert await fundings.expire_pending(now) == 1

        assert (await fundings.get(pending.id)).status == FundingStatus.EXPIRED
        assert (await fundings.get(confirmed.id)).status == FundingStatus.CONFIRMED

    async def test_list_pending_excludes_expired_window(self, fundings):
        now = utcnow()
        live = await create_funding(fundings, deposit_address="eth-addr-1", expires_at=now + timedelta(minutes=5))
        await create_funding(fundings, deposit_address="eth-addr-2", expires_at=now - timedelta(minutes=5))

        pending = await fundings.list_pending(now)
        assert [r.id for r in pending] == [live.id]

    async def test_update_confirmations_keeps_pending(self, fundings):
        record = await create_funding(fundings, chain=Chain.BTC, deposit_address="btc-addr-0")

        await fundings.update_confirmations(record.id, 1, "btc-tx")

        stored = await fundings.get(record.id)
        assert stored.status == FundingStatus.PENDING
        assert stored.confirmations == 1
        assert stored.funding_tx_hash == "btc-tx"

    async def test_count_by_status(self, fundings):
        first = await create_funding(fundings, deposit_address="eth-addr-1")
        await create_funding(fundings, deposit_address="eth-addr-2")
        await fundings.mark_confirmed(first.id, Decimal("1"), "0xabc", 1)

        counts = await fundings.count_by_status()
        assert counts["pending"] == 1
        assert counts["confirmed"] == 1
        assert counts["expired"] == 0
