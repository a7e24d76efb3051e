"""Shared data models for SoulForge payments.

All Pydantic models used across the payment core, the agent catalog and the
HTTP surface.
"""

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

RailName = Literal["x402pay", "wallet"]
PaymentMethod = Literal["x402pay", "wallet", "auto"]
X402PaymentStatus = Literal["pending", "completed", "failed", "expired"]
WalletConnectionStatus = Literal["disconnected", "connecting", "connected"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentRequest(BaseModel):
    """Input to the payment orchestrator."""

    amount: float = Field(gt=0, description="Amount in major units (e.g. USD dollars)")
    currency: str = Field(default="USD", min_length=1, description="ISO-4217-like currency code")
    description: str = Field(default="", description="Label used for receipts and logs")
    method: PaymentMethod = Field(default="auto", description="Requested rail or 'auto'")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Opaque data passed to the rail")

    @field_validator("currency")
    @classmethod
    def _uppercase_currency(cls, value: str) -> str:
        return value.strip().upper()


class BackendOutcome(BaseModel):
    """What a rail reports back for one payment attempt."""

    success: bool
    payment_id: str
    transaction_id: Optional[str] = None
    error: Optional[str] = None


class PaymentResult(BaseModel):
    """Normalized outcome of a payment attempt."""

    success: bool
    payment_id: str = Field(description="Rail-assigned payment identifier, 'failed' when none")
    transaction_id: Optional[str] = Field(default=None, description="Settlement reference")
    method: RailName = Field(description="Rail actually used")
    amount: float
    currency: str
    timestamp: datetime = Field(default_factory=utcnow)
    error: Optional[str] = Field(default=None, description="Failure reason, if any")


class X402Payment(BaseModel):
    """A payment intent on the x402pay rail."""

    payment_id: str
    payment_url: str
    amount: float
    currency: str
    status: X402PaymentStatus = "pending"
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    settled_at: Optional[datetime] = Field(default=None, description="When the intent reached a terminal status")


class WalletBalance(BaseModel):
    model_config = ConfigDict(frozen=True)

    asset: str
    amount: float
    usd_value: Optional[float] = None


class WalletSessionState(BaseModel):
    """Immutable snapshot of the wallet session."""

    model_config = ConfigDict(frozen=True)

    status: WalletConnectionStatus = "disconnected"
    address: Optional[str] = None
    balances: tuple[WalletBalance, ...] = ()

    @property
    def is_connected(self) -> bool:
        return self.status == "connected"


class WalletStatus(BaseModel):
    """Wallet view returned to callers."""

    address: Optional[str]
    balances: list[WalletBalance] = Field(default_factory=list)
    total_revenue: dict[str, float] = Field(default_factory=dict)
    is_connected: bool


class RevenueRecord(BaseModel):
    """One completed payment, as persisted in the ledger."""

    payment_id: str
    method: RailName
    amount: float
    currency: str
    timestamp: datetime
    transaction_id: Optional[str] = None


class RevenueDistribution(BaseModel):
    """Platform/creator split of one completed payment."""

    payment_id: str
    total_amount: float
    platform_fee: float
    creator_revenue: float
    method: RailName
    timestamp: datetime


class CreateAgentRequest(BaseModel):
    """Fields a user supplies when creating a custom agent."""

    name: str = Field(min_length=1)
    type: Literal["mirror", "custom"] = "custom"
    description: str = ""
    personality: str = ""
    role: str = ""
    backstory: str = ""
    tone: str = "friendly"
    values: list[str] = Field(default_factory=list)
    custom_prompt: str = ""
    is_public: bool = False


class Agent(CreateAgentRequest):
    """An agent persona, built in or user-created."""

    id: str
    rating: float = 0.0
    chat_count: int = 0
    price: float = Field(default=0.0, description="Unlock price, 0 for free agents")
    created_at: datetime = Field(default_factory=utcnow)
    content_id: Optional[str] = Field(default=None, description="Blob-store identifier of the pinned agent")


class ChatMessage(BaseModel):
    id: str
    content: str
    sender: Literal["user", "agent"]
    timestamp: datetime = Field(default_factory=utcnow)
    emotion: Optional[str] = None


class ChatResponse(BaseModel):
    content: str
    emotion: Optional[str] = None
    memory_updated: bool = Field(default=True, description="False when a fallback reply was used")
