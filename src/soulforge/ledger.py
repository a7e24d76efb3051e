"""Revenue ledger.

Turns completed payments into revenue records and their platform/creator
split, and answers history and aggregate queries.
"""

from src.config import config
from src.database import Database
from src.logging_utils import get_logger
from src.models import PaymentResult, RevenueDistribution, RevenueRecord

logger = get_logger(__name__)


def split_revenue(result: PaymentResult, platform_fee_rate: float) -> RevenueDistribution:
    """Derive the platform/creator split for a completed payment.

    The creator share is the remainder after the platform fee, so the two
    parts always add back up to the total.
    """
    platform_fee = result.amount * platform_fee_rate
    return RevenueDistribution(
        payment_id=result.payment_id,
        total_amount=result.amount,
        platform_fee=platform_fee,
        creator_revenue=result.amount - platform_fee,
        method=result.method,
        timestamp=result.timestamp,
    )


class RevenueLedger:
    """Append-only record of completed payments."""

    def __init__(self, database: Database, platform_fee_rate: float = None):
        self.database = database
        self.platform_fee_rate = (
            config.platform_fee_rate if platform_fee_rate is None else platform_fee_rate
        )

    async def record(self, result: PaymentResult) -> bool:
        """Append a successful payment and its revenue split.

        Args:
            result: A successful payment result.

        Returns:
            True if appended, False if this payment was already recorded.

        Raises:
            ValueError: If the result is not a success.
            LedgerWriteError: If storage is unavailable.
        """
        if not result.success:
            raise ValueError(f"Refusing to record failed payment {result.payment_id}")

        record = RevenueRecord(
            payment_id=result.payment_id,
            method=result.method,
            amount=result.amount,
            currency=result.currency,
            timestamp=result.timestamp,
            transaction_id=result.transaction_id,
        )
        distribution = split_revenue(result, self.platform_fee_rate)

        appended = await self.database.append_revenue(record, distribution)
        if appended:
            logger.info(
                f"Revenue distribution for {result.payment_id}: "
                f"total {distribution.total_amount:.2f} {result.currency}, "
                f"platform fee {distribution.platform_fee:.4f}, "
                f"creator revenue {distribution.creator_revenue:.4f} ({result.method})"
            )
        return appended

    async def history(self) -> list[RevenueRecord]:
        return await self.database.list_revenue_records()

    async def distributions(self) -> list[RevenueDistribution]:
        return await self.database.list_revenue_distributions()

    async def totals(self) -> dict[str, float]:
        """Total recorded amount per currency."""
        return await self.database.revenue_totals()
