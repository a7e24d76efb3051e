"""Unit tests for the wallet session state machine."""

import asyncio

import pytest
from pydantic import ValidationError

from src.models import WalletBalance
from src.soulforge.wallet import WalletSession
from tests.fakes import WALLET_ADDRESS, FakeWalletProvider


@pytest.fixture
def provider():
    return FakeWalletProvider()


@pytest.fixture
def session(provider):
    return WalletSession(provider)


@pytest.mark.unit
class TestWalletSession:
    """Test connect, disconnect and snapshots."""

    def test_starts_disconnected(self, session):
        state = session.snapshot()
        assert state.status == "disconnected"
        assert state.address is None
        assert state.balances == ()
        assert session.is_connected() is False

    @pytest.mark.asyncio
    async def test_connect(self, session):
        assert await session.connect() is True

        assert session.is_connected() is True
        assert session.get_address() == WALLET_ADDRESS
        assert [b.asset for b in session.get_balances()] == ["ETH", "USDC"]

    @pytest.mark.asyncio
    async def test_connect_when_connected_is_noop(self, session, provider):
        await session.connect()
        assert await session.connect() is True
        assert provider.connect_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_connects_provision_once(self, session, provider):
        results = await asyncio.gather(session.connect(), session.connect(), session.connect())

        assert results == [True, True, True]
        assert provider.connect_calls == 1

    @pytest.mark.asyncio
    async def test_connect_failure_leaves_disconnected(self, session, provider):
        provider.fail_connect = True

        assert await session.connect() is False

        assert session.snapshot().status == "disconnected"
        assert session.get_address() is None

    @pytest.mark.asyncio
    async def test_balance_failure_does_not_block_connect(self, session, provider):
        provider.fail_balances = True

        assert await session.connect() is True
        assert session.get_balances() == []

    @pytest.mark.asyncio
    async def test_disconnect_clears_state(self, session):
        await session.connect()
        await session.disconnect()

        state = session.snapshot()
        assert state.status == "disconnected"
        assert state.address is None
        assert state.balances == ()

    @pytest.mark.asyncio
    async def test_reconnect_after_disconnect(self, session, provider):
        await session.connect()
        await session.disconnect()
        assert await session.connect() is True
        assert provider.connect_calls == 2

    @pytest.mark.asyncio
    async def test_refresh_balances(self, session, provider):
        await session.connect()
        provider.balances = [WalletBalance(asset="USDC", amount=10.0, usd_value=10.0)]

        balances = await session.refresh_balances()

        assert [(b.asset, b.amount) for b in balances] == [("USDC", 10.0)]
        assert session.get_balances() == balances

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_old_balances(self, session, provider):
        await session.connect()
        before = session.get_balances()
        provider.fail_balances = True

        assert await session.refresh_balances() == before

    @pytest.mark.asyncio
    async def test_refresh_when_disconnected(self, session):
        assert await session.refresh_balances() == []

    @pytest.mark.asyncio
    async def test_snapshot_is_immutable(self, session):
        await session.connect()
        state = session.snapshot()

        with pytest.raises(ValidationError):
            state.status = "disconnected"

        await session.disconnect()
        assert state.address == WALLET_ADDRESS
