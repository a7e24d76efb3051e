"""Centralized configuration management for SoulForge payments.

Loads all configuration from environment variables with sensible defaults.
"""

from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# Load environment variables from .env file
load_dotenv()


class Config(BaseSettings):
    """Main configuration class for the payment core and its HTTP surface."""

    # x402pay rail
    x402pay_endpoint: str = Field(default="https://api.x402pay.com", description="x402pay API base URL")
    x402pay_wallet_address: str = Field(default="", description="Recipient of x402pay payments")
    x402pay_callback_url: str = Field(
        default="http://localhost:4030/x402pay/callback",
        description="Callback URL registered with each payment intent",
    )
    x402pay_poll_interval: float = Field(default=2.0, description="Seconds between status polls")
    x402pay_timeout_seconds: float = Field(default=60.0, description="Upper bound on waiting for completion")
    x402pay_expiry_minutes: int = Field(default=15, description="Lifetime of a pending intent")
    x402pay_retention_minutes: int = Field(
        default=10, description="How long settled intents stay queryable before eviction"
    )

    # Wallet rail (EVM)
    evm_rpc_url: str = Field(default="https://sepolia.base.org", description="EVM RPC endpoint")
    evm_chain_id: int = Field(default=84532, description="Base Sepolia")
    wallet_private_key: str = Field(default="", description="Private key of the session wallet")
    treasury_evm_address: str = Field(default="", description="Platform treasury receiving wallet payments")
    wallet_receipt_timeout: float = Field(default=120.0, description="Seconds to wait for a transfer receipt")
    wallet_receipt_poll_interval: float = Field(default=2.0)
    wallet_gas_limit: int = Field(default=100000)

    # USDC Token Addresses
    evm_usdc_address: str = Field(
        default="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        description="Base Sepolia USDC address",
    )

    # Business rules
    platform_fee_rate: float = Field(default=0.10, description="Share of each payment kept by the platform")
    wallet_min_amount: float = Field(default=0.10, description="Smallest amount auto-routed to the wallet rail")
    agent_creation_fee: float = Field(default=0.99, description="Price of creating a custom agent")

    # Webhook Security
    webhook_secret: str = Field(
        default="change_me_in_production",
        description="Shared secret for HMAC callback signatures",
    )

    # HTTP timeouts for outbound calls
    http_timeout: float = Field(default=30.0)

    # Service
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=4030)

    # Database
    database_path: str = Field(default="./soulforge.db")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="json")

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global config instance
config = Config()


def validate_config_for_service(service: Literal["server", "wallet", "x402pay"]) -> None:
    """Validate that required configuration is present for a specific component.

    Args:
        service: The component name to validate configuration for.

    Raises:
        ValueError: If required configuration is missing.
    """
    errors = []

    if not 0 <= config.platform_fee_rate <= 1:
        errors.append("PLATFORM_FEE_RATE must be between 0 and 1")
    if config.wallet_min_amount < 0:
        errors.append("WALLET_MIN_AMOUNT must not be negative")

    if service in ["server", "x402pay"]:
        if not config.x402pay_endpoint:
            errors.append("X402PAY_ENDPOINT must be set")
        if config.x402pay_poll_interval <= 0 or config.x402pay_timeout_seconds <= 0:
            errors.append("X402PAY_POLL_INTERVAL and X402PAY_TIMEOUT_SECONDS must be positive")

    if service in ["server", "wallet"]:
        if not config.evm_rpc_url:
            errors.append("EVM_RPC_URL must be set")
        if config.wallet_receipt_timeout <= 0:
            errors.append("WALLET_RECEIPT_TIMEOUT must be positive")

    if errors:
        error_msg = f"Configuration errors for {service}:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ValueError(error_msg)
