"""EVM wallet provider.

Signs transfers locally with ``eth_account`` and talks to the chain over
plain JSON-RPC. USD amounts settle as USDC (6 decimals); ETH settles as a
native transfer.
"""

import asyncio
import itertools
from decimal import Decimal
from typing import Any, List, Optional

import httpx
from eth_account import Account
from eth_utils import to_checksum_address

from src.config import config
from src.exceptions import BackendError, WalletConnectionError
from src.logging_utils import get_logger
from src.models import WalletBalance

logger = get_logger(__name__)

ERC20_TRANSFER_SELECTOR = "a9059cbb"
ERC20_BALANCE_OF_SELECTOR = "70a08231"
USDC_DECIMALS = 6
ETH_DECIMALS = 18

USDC_CURRENCIES = {"USD", "USDC"}


def to_base_units(amount: float, decimals: int) -> int:
    return int(Decimal(str(amount)) * (Decimal(10) ** decimals))


def from_base_units(value: int, decimals: int) -> float:
    return float(Decimal(value) / (Decimal(10) ** decimals))


def encode_address(address: str) -> str:
    return address.lower().removeprefix("0x").rjust(64, "0")


def encode_uint(value: int) -> str:
    return format(value, "x").rjust(64, "0")


class EvmWalletProvider:
    """Wallet provider backed by an EVM JSON-RPC endpoint."""

    def __init__(
        self,
        rpc_url: str = None,
        chain_id: int = None,
        private_key: str = None,
        usdc_address: str = None,
        gas_limit: int = None,
        receipt_poll_interval: float = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url or config.evm_rpc_url
        self.chain_id = chain_id or config.evm_chain_id
        self.private_key = private_key if private_key is not None else config.wallet_private_key
        self.usdc_address = to_checksum_address(usdc_address or config.evm_usdc_address)
        self.gas_limit = gas_limit or config.wallet_gas_limit
        self.receipt_poll_interval = receipt_poll_interval or config.wallet_receipt_poll_interval

        self._http = http_client or httpx.AsyncClient(timeout=config.http_timeout)
        self._ids = itertools.count(1)
        self._account = None
        self._nonce_lock = asyncio.Lock()

    @property
    def address(self) -> Optional[str]:
        return self._account.address if self._account else None

    async def close(self) -> None:
        await self._http.aclose()

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        """Send a JSON-RPC request and return its result.

        Raises:
            BackendError: On transport failures or JSON-RPC errors.
        """
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._http.post(self.rpc_url, json=body)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise BackendError(f"RPC {method} failed: {e}") from e

        if data.get("error"):
            raise BackendError(f"RPC {method} error: {data['error'].get('message', data['error'])}")
        return data.get("result")

    async def connect(self) -> str:
        """Load the wallet account and check the RPC endpoint serves the expected chain.

        Returns:
            The wallet address.

        Raises:
            WalletConnectionError: If the key is invalid or the chain is unreachable.
        """
        try:
            if self.private_key and self.private_key.strip():
                account = Account.from_key(self.private_key)
            else:
                logger.warning("WALLET_PRIVATE_KEY not set - generating temporary key for demo")
                account = Account.create()
        except ValueError as e:
            raise WalletConnectionError(f"Invalid wallet private key: {e}") from e

        try:
            remote_chain_id = int(await self._rpc("eth_chainId", []), 16)
        except (BackendError, TypeError, ValueError) as e:
            raise WalletConnectionError(f"Cannot reach {self.rpc_url}: {e}") from e

        if remote_chain_id != self.chain_id:
            raise WalletConnectionError(
                f"RPC endpoint serves chain {remote_chain_id}, expected {self.chain_id}"
            )

        self._account = account
        logger.info(f"Wallet account: {account.address} on chain {self.chain_id}")
        return account.address

    def _require_account(self):
        if self._account is None:
            raise BackendError("Wallet provider is not connected")
        return self._account

    async def get_balances(self) -> List[WalletBalance]:
        """Native and USDC balances, in that order."""
        account = self._require_account()

        wei = int(await self._rpc("eth_getBalance", [account.address, "latest"]), 16)
        call = {
            "to": self.usdc_address,
            "data": "0x" + ERC20_BALANCE_OF_SELECTOR + encode_address(account.address),
        }
        usdc_raw = await self._rpc("eth_call", [call, "latest"])
        usdc_units = int(usdc_raw, 16) if usdc_raw and usdc_raw != "0x" else 0

        usdc = from_base_units(usdc_units, USDC_DECIMALS)
        return [
            WalletBalance(asset="ETH", amount=from_base_units(wei, ETH_DECIMALS)),
            WalletBalance(asset="USDC", amount=usdc, usd_value=usdc),
        ]

    async def transfer(self, amount: float, currency: str, recipient: str) -> str:
        """Sign and submit a transfer.

        Args:
            amount: Amount in major units.
            currency: USD/USDC for a USDC transfer, ETH for a native transfer.
            recipient: Destination address.

        Returns:
            The transaction hash.

        Raises:
            BackendError: If the currency is unsupported or submission fails.
        """
        account = self._require_account()
        currency = currency.upper()
        recipient = to_checksum_address(recipient)

        if currency in USDC_CURRENCIES:
            units = to_base_units(amount, USDC_DECIMALS)
            to, value = self.usdc_address, 0
            data = "0x" + ERC20_TRANSFER_SELECTOR + encode_address(recipient) + encode_uint(units)
        elif currency == "ETH":
            to, value, data = recipient, to_base_units(amount, ETH_DECIMALS), "0x"
        else:
            raise BackendError(f"Unsupported wallet currency: {currency}")

        async with self._nonce_lock:
            nonce = int(await self._rpc("eth_getTransactionCount", [account.address, "pending"]), 16)
            gas_price = int(await self._rpc("eth_gasPrice", []), 16)

            tx = {
                "to": to,
                "value": value,
                "data": data,
                "nonce": nonce,
                "gas": self.gas_limit,
                "gasPrice": gas_price,
                "chainId": self.chain_id,
            }
            signed = account.sign_transaction(tx)
            raw = "0x" + bytes(signed.raw_transaction).hex()
            tx_hash = await self._rpc("eth_sendRawTransaction", [raw])

        logger.info(f"Submitted {amount} {currency} transfer to {recipient}: {tx_hash}")
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> Optional[bool]:
        """Wait for a transaction receipt.

        Returns:
            True if the transaction succeeded, False if it reverted, None if no
            receipt arrived before the timeout.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            try:
                receipt = await self._rpc("eth_getTransactionReceipt", [tx_hash])
            except BackendError as e:
                logger.warning(f"Receipt poll failed for {tx_hash}: {e}")
                receipt = None

            if receipt:
                return int(receipt.get("status", "0x0"), 16) == 1

            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self.receipt_poll_interval, remaining))
