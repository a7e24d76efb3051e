"""Unit tests for the wallet payment rail."""

import pytest

from src.exceptions import BackendError
from src.models import WalletBalance
from src.soulforge.wallet import WalletPaymentService, WalletSession
from tests.fakes import TREASURY, FakeWalletProvider


@pytest.fixture
def provider():
    return FakeWalletProvider()


@pytest.fixture
def service(provider):
    return WalletPaymentService(WalletSession(provider), treasury_address=TREASURY, receipt_timeout=1)


@pytest.mark.unit
class TestWalletPayment:
    """Test transfers to the treasury."""

    @pytest.mark.asyncio
    async def test_successful_transfer(self, service, provider):
        await service.session.connect()

        outcome = await service.create_payment(1.99, "USD", "Unlock Master Kenji")

        assert outcome.success is True
        assert outcome.payment_id.startswith("wallet_")
        assert outcome.transaction_id == "0x" + format(1, "064x")
        assert provider.transfers == [{"amount": 1.99, "currency": "USD", "recipient": TREASURY}]

    @pytest.mark.asyncio
    async def test_payment_ids_are_unique(self, service):
        first = await service.create_payment(1.0, "USD", "a")
        second = await service.create_payment(1.0, "USD", "b")
        assert first.payment_id != second.payment_id

    @pytest.mark.asyncio
    async def test_connects_on_demand(self, service, provider):
        outcome = await service.create_payment(1.0, "USD", "Create Agent")

        assert outcome.success is True
        assert provider.connect_calls == 1
        assert service.session.is_connected() is True

    @pytest.mark.asyncio
    async def test_not_connected_fails(self, service, provider):
        provider.fail_connect = True

        outcome = await service.create_payment(1.0, "USD", "Create Agent")

        assert outcome.success is False
        assert outcome.payment_id == "failed"
        assert outcome.error == "Wallet not connected"
        assert provider.transfers == []

    @pytest.mark.asyncio
    async def test_missing_treasury_raises(self, provider):
        service = WalletPaymentService(WalletSession(provider), treasury_address="")

        with pytest.raises(BackendError):
            await service.create_payment(1.0, "USD", "Create Agent")

    @pytest.mark.asyncio
    async def test_reverted_transfer(self, service, provider):
        provider.receipt = False

        outcome = await service.create_payment(1.0, "USD", "Create Agent")

        assert outcome.success is False
        assert outcome.error == "Transaction reverted"
        assert outcome.transaction_id is not None

    @pytest.mark.asyncio
    async def test_receipt_timeout(self, service, provider):
        provider.receipt = None

        outcome = await service.create_payment(1.0, "USD", "Create Agent")

        assert outcome.success is False
        assert outcome.payment_id.startswith("wallet_")
        assert "No receipt" in outcome.error

    @pytest.mark.asyncio
    async def test_balances_refreshed_after_payment(self, service, provider):
        await service.session.connect()
        provider.balances = [WalletBalance(asset="USDC", amount=23.01, usd_value=23.01)]

        await service.create_payment(1.99, "USD", "Unlock Master Kenji")

        assert [b.amount for b in service.session.get_balances()] == [23.01]
