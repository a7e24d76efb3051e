"""Exception hierarchy for SoulForge payments."""


class SoulForgeError(Exception):
    """Base class for all domain errors."""


class UnsupportedPaymentMethodError(SoulForgeError, ValueError):
    """A request resolved to a method with no backend.

    This is a programming error and is never converted into a failed result.
    """

    def __init__(self, method: str):
        super().__init__(f"Unsupported payment method: {method}")
        self.method = method


class BackendError(SoulForgeError):
    """A payment rail rejected or could not complete a payment."""


class LedgerWriteError(SoulForgeError):
    """The revenue ledger could not persist an entry."""


class WalletConnectionError(SoulForgeError):
    """The wallet provider could not be provisioned or reached."""


class AgentNotFoundError(SoulForgeError, LookupError):
    def __init__(self, agent_id: str):
        super().__init__(f"Agent not found: {agent_id}")
        self.agent_id = agent_id


class AgentLockedError(SoulForgeError):
    """A premium agent was used before it was unlocked."""

    def __init__(self, agent_id: str, price: float):
        super().__init__(f"Agent {agent_id} requires a ${price:.2f} unlock")
        self.agent_id = agent_id
        self.price = price
