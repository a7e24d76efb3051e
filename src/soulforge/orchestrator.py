"""Payment orchestrator.

Single entry point for charging a user: picks a rail, runs the payment,
normalizes the outcome and records successful payments in the revenue
ledger before returning.
"""

import asyncio
from typing import Any, Dict, List, Optional, Protocol, Set

from src.config import config
from src.exceptions import LedgerWriteError, UnsupportedPaymentMethodError
from src.logging_utils import RequestIdContext, get_logger
from src.models import (
    BackendOutcome,
    PaymentRequest,
    PaymentResult,
    RevenueDistribution,
    RevenueRecord,
    WalletStatus,
)
from src.soulforge.ledger import RevenueLedger
from src.soulforge.wallet import WalletSession

logger = get_logger(__name__)


class PaymentBackend(Protocol):
    """Capability shared by every rail."""

    async def create_payment(
        self,
        amount: float,
        currency: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> BackendOutcome: ...


class PaymentOrchestrator:
    """Routes payment requests to a rail and keeps the books."""

    def __init__(
        self,
        x402pay: PaymentBackend,
        wallet: PaymentBackend,
        wallet_session: WalletSession,
        ledger: RevenueLedger,
        wallet_min_amount: float = None,
    ):
        """Initialize the orchestrator.

        Args:
            x402pay: Backend for the x402pay rail.
            wallet: Backend for the wallet rail.
            wallet_session: Session consulted for auto resolution and wallet status.
            ledger: Ledger receiving every successful payment.
            wallet_min_amount: Smallest amount auto-routed to the wallet rail.
        """
        self.backends: Dict[str, PaymentBackend] = {"x402pay": x402pay, "wallet": wallet}
        self.wallet_session = wallet_session
        self.ledger = ledger
        self.wallet_min_amount = (
            config.wallet_min_amount if wallet_min_amount is None else wallet_min_amount
        )
        self._unrecorded: List[PaymentResult] = []
        self._inflight: Set[asyncio.Task] = set()

    def resolve_method(self, request: PaymentRequest) -> str:
        """Pick the concrete rail for a request."""
        if request.method != "auto":
            return request.method
        if self.wallet_session.is_connected() and request.amount >= self.wallet_min_amount:
            return "wallet"
        return "x402pay"

    async def process_payment(self, request: PaymentRequest) -> PaymentResult:
        """Charge a payment and record it on success.

        Backend failures come back as ``success=False``. The work runs in a
        shielded task, so a caller that gives up does not stop the rail call
        or the ledger append.

        Raises:
            UnsupportedPaymentMethodError: If the method has no backend.
        """
        method = self.resolve_method(request)
        if method not in self.backends:
            raise UnsupportedPaymentMethodError(method)

        with RequestIdContext(prefix="pay"):
            task = asyncio.ensure_future(self._execute(request, method))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def _execute(self, request: PaymentRequest, method: str) -> PaymentResult:
        logger.info(
            f"Processing {request.amount} {request.currency} payment via {method}: {request.description}"
        )
        backend = self.backends[method]

        try:
            outcome = await backend.create_payment(
                amount=request.amount,
                currency=request.currency,
                description=request.description,
                metadata=request.metadata,
            )
        except Exception as e:
            logger.error(f"{method} payment failed: {e}", exc_info=True)
            outcome = BackendOutcome(success=False, payment_id="failed", error=str(e))

        result = PaymentResult(
            success=outcome.success,
            payment_id=outcome.payment_id,
            transaction_id=outcome.transaction_id,
            method=method,
            amount=request.amount,
            currency=request.currency,
            error=outcome.error,
        )

        if result.success:
            await self._record(result)
        else:
            logger.warning(f"Payment {result.payment_id} via {method} failed: {result.error}")
        return result

    async def _record(self, result: PaymentResult) -> None:
        try:
            await self.ledger.record(result)
        except LedgerWriteError as e:
            logger.error(
                f"Payment {result.payment_id} succeeded but was not recorded, queued for retry: {e}",
                exc_info=True,
            )
            self._unrecorded.append(result)

    @property
    def unrecorded(self) -> List[PaymentResult]:
        """Successful payments still waiting for a ledger append."""
        return list(self._unrecorded)

    async def retry_unrecorded(self) -> int:
        """Retry ledger appends that failed earlier.

        Returns:
            Number of payments recorded (or found already recorded) by this call.
        """
        pending, self._unrecorded = self._unrecorded, []
        recorded = 0
        for result in pending:
            try:
                await self.ledger.record(result)
                recorded += 1
            except LedgerWriteError as e:
                logger.error(f"Retry failed for payment {result.payment_id}: {e}")
                self._unrecorded.append(result)
        if pending:
            logger.info(f"Ledger retry recorded {recorded}/{len(pending)} payments")
        return recorded

    async def get_payment_history(self) -> List[RevenueRecord]:
        return await self.ledger.history()

    async def get_revenue_distributions(self) -> List[RevenueDistribution]:
        return await self.ledger.distributions()

    async def connect_wallet(self) -> bool:
        return await self.wallet_session.connect()

    async def disconnect_wallet(self) -> None:
        await self.wallet_session.disconnect()

    async def get_wallet_status(self) -> WalletStatus:
        """Wallet connection, balances and recorded revenue totals."""
        state = self.wallet_session.snapshot()
        try:
            total_revenue = await self.ledger.totals()
        except Exception as e:
            logger.error(f"Failed to read revenue totals: {e}", exc_info=True)
            total_revenue = {}

        return WalletStatus(
            address=state.address,
            balances=list(state.balances),
            total_revenue=total_revenue,
            is_connected=state.is_connected,
        )
