"""Unit tests for the revenue ledger."""

import asyncio

import pytest

from src.exceptions import LedgerWriteError
from src.models import PaymentResult
from src.soulforge.ledger import RevenueLedger, split_revenue


def make_result(payment_id="pay_1", amount=10.0, method="x402pay", currency="USD", success=True):
    return PaymentResult(
        success=success,
        payment_id=payment_id,
        transaction_id=f"tx_{payment_id}",
        method=method,
        amount=amount,
        currency=currency,
    )


@pytest.mark.unit
class TestRevenueSplit:
    """Test the platform/creator split."""

    def test_default_split(self):
        distribution = split_revenue(make_result(amount=10.0), 0.10)
        assert distribution.platform_fee == pytest.approx(1.0)
        assert distribution.creator_revenue == pytest.approx(9.0)
        assert distribution.total_amount == 10.0

    def test_create_agent_fee_split(self):
        distribution = split_revenue(make_result(amount=0.99), 0.10)
        assert distribution.platform_fee == pytest.approx(0.099)
        assert distribution.creator_revenue == pytest.approx(0.891)

    @pytest.mark.parametrize("amount", [0.01, 0.99, 2.99, 1234.56])
    def test_parts_add_up_to_total(self, amount):
        distribution = split_revenue(make_result(amount=amount), 0.10)
        assert distribution.platform_fee + distribution.creator_revenue == pytest.approx(amount)

    def test_split_carries_payment_and_method(self):
        distribution = split_revenue(make_result(payment_id="wallet_abc", method="wallet"), 0.25)
        assert distribution.payment_id == "wallet_abc"
        assert distribution.method == "wallet"
        assert distribution.platform_fee == pytest.approx(2.5)

    def test_split_uses_payment_timestamp(self):
        result = make_result()
        distribution = split_revenue(result, 0.10)
        assert distribution.timestamp == result.timestamp


@pytest.mark.unit
class TestRevenueLedger:
    """Test ledger appends and queries."""

    @pytest.mark.asyncio
    async def test_record_appends_record_and_distribution(self, test_db):
        ledger = RevenueLedger(test_db, platform_fee_rate=0.10)

        assert await ledger.record(make_result()) is True

        history = await ledger.history()
        distributions = await ledger.distributions()
        assert [r.payment_id for r in history] == ["pay_1"]
        assert history[0].transaction_id == "tx_pay_1"
        assert [d.payment_id for d in distributions] == ["pay_1"]
        assert distributions[0].platform_fee == pytest.approx(1.0)
        assert distributions[0].timestamp == history[0].timestamp

    @pytest.mark.asyncio
    async def test_duplicate_payment_recorded_once(self, test_db):
        """The same payment id is never appended twice."""
        ledger = RevenueLedger(test_db)
        result = make_result()

        assert await ledger.record(result) is True
        assert await ledger.record(result) is False

        assert len(await ledger.history()) == 1
        assert len(await ledger.distributions()) == 1

    @pytest.mark.asyncio
    async def test_failed_result_rejected(self, test_db):
        ledger = RevenueLedger(test_db)

        with pytest.raises(ValueError):
            await ledger.record(make_result(success=False))

        assert await ledger.history() == []

    @pytest.mark.asyncio
    async def test_history_in_insertion_order(self, test_db):
        ledger = RevenueLedger(test_db)
        for payment_id in ["c", "a", "b"]:
            await ledger.record(make_result(payment_id=payment_id))

        assert [r.payment_id for r in await ledger.history()] == ["c", "a", "b"]
        assert [d.payment_id for d in await ledger.distributions()] == ["c", "a", "b"]

    @pytest.mark.asyncio
    async def test_concurrent_records_all_land(self, test_db):
        ledger = RevenueLedger(test_db)

        results = await asyncio.gather(
            *(ledger.record(make_result(payment_id=f"pay_{i}", amount=1.0)) for i in range(20))
        )

        assert all(results)
        history = await ledger.history()
        assert len(history) == 20
        assert len({r.payment_id for r in history}) == 20

    @pytest.mark.asyncio
    async def test_totals_per_currency(self, test_db):
        ledger = RevenueLedger(test_db)
        await ledger.record(make_result(payment_id="a", amount=1.5))
        await ledger.record(make_result(payment_id="b", amount=2.5))
        await ledger.record(make_result(payment_id="c", amount=0.01, currency="ETH", method="wallet"))

        totals = await ledger.totals()
        assert totals["USD"] == pytest.approx(4.0)
        assert totals["ETH"] == pytest.approx(0.01)

    @pytest.mark.asyncio
    async def test_unwritable_database_raises(self, broken_db):
        ledger = RevenueLedger(broken_db)

        with pytest.raises(LedgerWriteError):
            await ledger.record(make_result())
