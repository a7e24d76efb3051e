"""Wallet session and the wallet payment rail.

The session tracks one logical wallet: ``disconnected -> connecting ->
connected``. Connect and disconnect are serialized; readers always get a
complete immutable snapshot.
"""

import asyncio
import uuid
from typing import Any, Dict, List, Optional, Protocol

from src.config import config
from src.exceptions import BackendError
from src.logging_utils import get_logger
from src.models import BackendOutcome, WalletBalance, WalletSessionState

logger = get_logger(__name__)


class WalletProvider(Protocol):
    """What the session and the wallet rail need from a wallet implementation."""

    async def connect(self) -> str: ...

    async def get_balances(self) -> List[WalletBalance]: ...

    async def transfer(self, amount: float, currency: str, recipient: str) -> str: ...

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> Optional[bool]: ...


class WalletSession:
    """Connection state of the platform's wallet."""

    def __init__(self, provider: WalletProvider):
        self.provider = provider
        self._state = WalletSessionState()
        self._lock = asyncio.Lock()

    def snapshot(self) -> WalletSessionState:
        return self._state

    def is_connected(self) -> bool:
        return self._state.is_connected

    def get_address(self) -> Optional[str]:
        return self._state.address

    def get_balances(self) -> List[WalletBalance]:
        return list(self._state.balances)

    async def connect(self) -> bool:
        """Connect the wallet.

        Returns:
            True when connected (including when already connected), False if
            the provider could not be provisioned.
        """
        async with self._lock:
            if self._state.is_connected:
                return True

            self._state = WalletSessionState(status="connecting")
            connected = False
            try:
                address = await self.provider.connect()
                balances = await self._fetch_balances()
                self._state = WalletSessionState(
                    status="connected", address=address, balances=tuple(balances)
                )
                connected = True
                logger.info(f"Wallet connected: {address}")
            except Exception as e:
                logger.error(f"Failed to connect wallet: {e}", exc_info=True)
            finally:
                if not connected:
                    self._state = WalletSessionState()
            return connected

    async def disconnect(self) -> None:
        async with self._lock:
            if self._state.is_connected:
                logger.info(f"Wallet disconnected: {self._state.address}")
            self._state = WalletSessionState()

    async def refresh_balances(self) -> List[WalletBalance]:
        """Re-read balances from the provider; keeps the old ones on failure."""
        async with self._lock:
            if not self._state.is_connected:
                return []
            balances = await self._fetch_balances(default=None)
            if balances is not None:
                self._state = self._state.model_copy(update={"balances": tuple(balances)})
            return list(self._state.balances)

    async def _fetch_balances(self, default=()):
        try:
            return await self.provider.get_balances()
        except Exception as e:
            logger.warning(f"Failed to read wallet balances: {e}")
            return default


class WalletPaymentService:
    """Payment backend that transfers from the session wallet to the treasury."""

    def __init__(
        self,
        session: WalletSession,
        treasury_address: str = None,
        receipt_timeout: float = None,
    ):
        self.session = session
        self.treasury_address = (
            treasury_address if treasury_address is not None else config.treasury_evm_address
        )
        self.receipt_timeout = receipt_timeout or config.wallet_receipt_timeout

    async def create_payment(
        self,
        amount: float,
        currency: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> BackendOutcome:
        """Transfer ``amount`` to the treasury and wait for the receipt.

        Returns:
            Outcome carrying a logical payment id and the settlement tx hash.

        Raises:
            BackendError: If the treasury is unset or the transfer cannot be submitted.
        """
        if not self.session.is_connected() and not await self.session.connect():
            logger.warning(f"Wallet payment '{description}' rejected: wallet not connected")
            return BackendOutcome(success=False, payment_id="failed", error="Wallet not connected")

        if not self.treasury_address:
            raise BackendError("TREASURY_EVM_ADDRESS is not configured")

        payment_id = f"wallet_{uuid.uuid4().hex}"
        logger.info(f"Wallet payment {payment_id}: {amount} {currency} for '{description}'")

        tx_hash = await self.session.provider.transfer(amount, currency, self.treasury_address)
        confirmed = await self.session.provider.wait_for_receipt(tx_hash, self.receipt_timeout)

        if confirmed is None:
            error = f"No receipt for {tx_hash} after {self.receipt_timeout:.0f}s"
            logger.warning(f"Wallet payment {payment_id} timed out: {error}")
            return BackendOutcome(success=False, payment_id=payment_id, transaction_id=tx_hash, error=error)
        if not confirmed:
            logger.warning(f"Wallet payment {payment_id} reverted: {tx_hash}")
            return BackendOutcome(
                success=False, payment_id=payment_id, transaction_id=tx_hash, error="Transaction reverted"
            )

        await self.session.refresh_balances()
        return BackendOutcome(success=True, payment_id=payment_id, transaction_id=tx_hash)
