"""x402pay payment rail.

Creates payment intents on the x402pay API and drives each intent through
``pending -> completed | failed | expired`` from status polls, signed
callbacks and local expiry.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Set

import httpx

from src.config import config
from src.exceptions import BackendError
from src.logging_utils import get_logger
from src.models import BackendOutcome, X402Payment, X402PaymentStatus, utcnow

logger = get_logger(__name__)

TERMINAL_STATUSES = frozenset({"completed", "failed", "expired"})

# Statuses reported by the API that map onto our state machine
REMOTE_STATUS_MAP: Dict[str, X402PaymentStatus] = {
    "pending": "pending",
    "processing": "pending",
    "completed": "completed",
    "paid": "completed",
    "failed": "failed",
    "canceled": "failed",
    "cancelled": "failed",
    "expired": "expired",
}


def parse_remote_status(value: Optional[str]) -> Optional[X402PaymentStatus]:
    if not isinstance(value, str) or not value:
        return None
    return REMOTE_STATUS_MAP.get(value.strip().lower())


class X402PayService:
    """Payment backend for the x402pay rail."""

    def __init__(
        self,
        endpoint: str = None,
        recipient: str = None,
        callback_url: str = None,
        poll_interval: float = None,
        timeout: float = None,
        expiry_minutes: int = None,
        retention_minutes: int = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the x402pay backend.

        Args:
            endpoint: API base URL. Defaults to config.x402pay_endpoint.
            recipient: Address credited by payments. Defaults to config.x402pay_wallet_address.
            callback_url: URL x402pay notifies on status changes.
            poll_interval: Seconds between status polls.
            timeout: Upper bound in seconds on waiting for a terminal status.
            expiry_minutes: Lifetime of a pending intent.
            retention_minutes: How long a settled intent is kept before eviction.
            http_client: Preconfigured client, mainly for tests.
        """
        self.endpoint = (endpoint or config.x402pay_endpoint).rstrip("/")
        self.recipient = recipient if recipient is not None else config.x402pay_wallet_address
        self.callback_url = callback_url or config.x402pay_callback_url
        self.poll_interval = poll_interval or config.x402pay_poll_interval
        self.timeout = timeout or config.x402pay_timeout_seconds
        self.expiry = timedelta(minutes=expiry_minutes or config.x402pay_expiry_minutes)
        self.retention = timedelta(
            minutes=config.x402pay_retention_minutes if retention_minutes is None else retention_minutes
        )

        self._http = http_client or httpx.AsyncClient(base_url=self.endpoint, timeout=config.http_timeout)
        self._payments: Dict[str, X402Payment] = {}
        self._status_events: Dict[str, asyncio.Event] = {}
        self._waiting: Set[str] = set()

    async def close(self) -> None:
        await self._http.aclose()

    def get_payment(self, payment_id: str) -> Optional[X402Payment]:
        return self._payments.get(payment_id)

    @property
    def tracked_payments(self) -> int:
        return len(self._payments)

    def prune(self) -> int:
        """Evict settled intents older than the retention window.

        Pending intents past their expiry are expired first. Pending intents
        still inside their lifetime are kept so a late callback can settle them.
        Intents with an active waiter are never evicted.

        Returns:
            Number of intents evicted.
        """
        now = utcnow()
        for payment_id, payment in list(self._payments.items()):
            if payment.status == "pending" and now >= payment.expires_at:
                self._transition(payment_id, "expired")

        evicted = [
            payment_id
            for payment_id, payment in self._payments.items()
            if payment_id not in self._waiting
            and payment.settled_at is not None
            and now - payment.settled_at >= self.retention
        ]
        for payment_id in evicted:
            del self._payments[payment_id]
            self._status_events.pop(payment_id, None)
        if evicted:
            logger.debug(f"Evicted {len(evicted)} settled x402pay intents")
        return len(evicted)

    async def create_payment(
        self,
        amount: float,
        currency: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> BackendOutcome:
        """Create an intent and wait, bounded by the timeout, for it to settle.

        Args:
            amount: Amount to charge.
            currency: Currency code.
            description: Label shown on the payment page.
            metadata: Opaque data forwarded to x402pay.

        Returns:
            Outcome of the payment. A pending intent at the deadline is a failure.

        Raises:
            BackendError: If the intent cannot be created.
        """
        payment = await self.create_intent(amount, currency, description, metadata)
        payment = await self.wait_for_completion(payment.payment_id)
        if payment.status in TERMINAL_STATUSES:
            self._status_events.pop(payment.payment_id, None)

        if payment.status == "completed":
            logger.info(f"x402pay payment completed: {payment.payment_id}")
            return BackendOutcome(success=True, payment_id=payment.payment_id)

        if payment.status == "pending":
            error = f"Timed out after {self.timeout:.0f}s waiting for payment {payment.payment_id}"
        else:
            error = f"Payment {payment.payment_id} {payment.status}"
        logger.warning(f"x402pay payment not completed: {error}")
        return BackendOutcome(success=False, payment_id=payment.payment_id, error=error)

    async def create_intent(
        self,
        amount: float,
        currency: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> X402Payment:
        """Register a payment intent with x402pay and start tracking it."""
        self.prune()
        created_at = utcnow()
        payload = {
            "amount": amount,
            "currency": currency.upper(),
            "description": description,
            "recipient": self.recipient,
            "metadata": {
                "source": "soulforge",
                "timestamp": created_at.isoformat(),
                **(metadata or {}),
            },
            "callbackUrl": self.callback_url,
        }

        try:
            response = await self._http.post("/payments", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise BackendError(f"Failed to create x402pay payment: {e}") from e
        except ValueError as e:
            raise BackendError(f"Invalid x402pay response: {e}") from e

        if not isinstance(data, dict):
            raise BackendError(f"Unexpected x402pay response: {data!r}")

        payment_id = data.get("paymentId")
        if not payment_id:
            raise BackendError("x402pay response did not include a paymentId")
        if payment_id in self._payments:
            raise BackendError(f"Duplicate x402pay payment id: {payment_id}")

        expires_at = created_at + self.expiry
        if data.get("expiresAt"):
            expires_at = datetime.fromisoformat(data["expiresAt"].replace("Z", "+00:00"))
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)

        status = parse_remote_status(data.get("status")) or "pending"
        payment = X402Payment(
            payment_id=payment_id,
            payment_url=data.get("paymentUrl") or f"{self.endpoint}/pay/{payment_id}",
            amount=amount,
            currency=currency.upper(),
            status=status,
            created_at=created_at,
            expires_at=expires_at,
            settled_at=created_at if status in TERMINAL_STATUSES else None,
        )
        self._payments[payment_id] = payment
        self._status_events[payment_id] = asyncio.Event()
        logger.info(f"Created x402pay payment {payment_id} for {amount} {payment.currency}")
        return payment

    async def check_payment_status(self, payment_id: str) -> X402Payment:
        """Refresh an intent from the API and apply local expiry.

        A failed poll leaves the local state unchanged.

        Raises:
            KeyError: If the payment is not tracked by this service.
        """
        payment = self._payments[payment_id]
        if payment.status in TERMINAL_STATUSES:
            return payment

        try:
            response = await self._http.get(f"/payments/{payment_id}")
            response.raise_for_status()
            data = response.json()
            remote_status = parse_remote_status(data.get("status") if isinstance(data, dict) else None)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Status poll failed for {payment_id}: {e}")
            remote_status = None

        if remote_status:
            payment = self._transition(payment_id, remote_status)

        if payment.status == "pending" and utcnow() >= payment.expires_at:
            payment = self._transition(payment_id, "expired")

        return payment

    async def wait_for_completion(self, payment_id: str) -> X402Payment:
        """Poll until the intent is terminal or the timeout elapses."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        event = self._status_events.setdefault(payment_id, asyncio.Event())
        self._waiting.add(payment_id)

        try:
            while True:
                payment = await self.check_payment_status(payment_id)
                if payment.status in TERMINAL_STATUSES:
                    return payment

                remaining = deadline - loop.time()
                if remaining <= 0:
                    return payment

                # A callback sets the event and cuts the wait short
                try:
                    await asyncio.wait_for(event.wait(), timeout=min(self.poll_interval, remaining))
                except asyncio.TimeoutError:
                    pass
        finally:
            self._waiting.discard(payment_id)

    def handle_callback(self, payment_id: str, status: str) -> X402Payment:
        """Apply a status pushed by x402pay.

        Raises:
            KeyError: If the payment is unknown.
            ValueError: If the status is not recognised.
        """
        new_status = parse_remote_status(status)
        if new_status is None:
            raise ValueError(f"Unknown x402pay status: {status}")
        if payment_id not in self._payments:
            raise KeyError(payment_id)

        logger.info(f"x402pay callback for {payment_id}: {status}")
        return self._transition(payment_id, new_status)

    def _transition(self, payment_id: str, new_status: X402PaymentStatus) -> X402Payment:
        payment = self._payments[payment_id]
        if payment.status == new_status:
            return payment
        if payment.status in TERMINAL_STATUSES:
            logger.warning(
                f"Ignoring {new_status} for {payment_id}: already {payment.status}"
            )
            return payment

        update = {"status": new_status}
        if new_status in TERMINAL_STATUSES:
            update["settled_at"] = utcnow()
        payment = payment.model_copy(update=update)
        self._payments[payment_id] = payment
        event = self._status_events.get(payment_id)
        if event is not None and new_status in TERMINAL_STATUSES:
            event.set()
        logger.info(f"x402pay payment {payment_id} -> {new_status}")
        return payment
