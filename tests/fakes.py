"""In-process stand-ins for payment rails and the wallet provider."""

import asyncio
import itertools

from src.exceptions import WalletConnectionError
from src.models import BackendOutcome, WalletBalance

TREASURY = "0x000000000000000000000000000000000000dEaD"
WALLET_ADDRESS = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"


class FakeBackend:
    """Payment backend that succeeds with sequential ids unless told otherwise."""

    def __init__(self, name="fake", outcome=None, error=None, delay=0.0):
        self.name = name
        self.outcome = outcome
        self.error = error
        self.delay = delay
        self.calls = []
        self._ids = itertools.count(1)

    async def create_payment(self, amount, currency, description, metadata=None):
        self.calls.append(
            {"amount": amount, "currency": currency, "description": description, "metadata": metadata}
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        if self.outcome is not None:
            return self.outcome
        n = next(self._ids)
        return BackendOutcome(success=True, payment_id=f"{self.name}_{n}", transaction_id=f"tx_{self.name}_{n}")


class FakeWalletProvider:
    """Wallet provider with scripted connection, balances and receipts."""

    def __init__(self, address=WALLET_ADDRESS, balances=None, receipt=True):
        self.address = address
        self.balances = balances if balances is not None else [
            WalletBalance(asset="ETH", amount=0.5),
            WalletBalance(asset="USDC", amount=25.0, usd_value=25.0),
        ]
        self.receipt = receipt
        self.fail_connect = False
        self.fail_balances = False
        self.connect_calls = 0
        self.transfers = []

    async def connect(self):
        self.connect_calls += 1
        await asyncio.sleep(0)
        if self.fail_connect:
            raise WalletConnectionError("RPC endpoint unreachable")
        return self.address

    async def get_balances(self):
        if self.fail_balances:
            raise RuntimeError("balance lookup failed")
        return list(self.balances)

    async def transfer(self, amount, currency, recipient):
        self.transfers.append({"amount": amount, "currency": currency, "recipient": recipient})
        return "0x" + format(len(self.transfers), "064x")

    async def wait_for_receipt(self, tx_hash, timeout):
        return self.receipt
