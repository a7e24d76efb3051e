"""SoulForge payments service.

FastAPI application exposing:
- payment processing and history
- wallet connection and status
- x402pay status callbacks
- the agent catalog, premium unlocks and chat
"""

from dataclasses import dataclass
from typing import List, Optional

from fastapi import FastAPI, Header, HTTPException, Request
from pydantic import BaseModel, Field, ValidationError

from src.config import config, validate_config_for_service
from src.database import Database
from src.exceptions import AgentLockedError, AgentNotFoundError, UnsupportedPaymentMethodError
from src.logging_utils import RequestIdContext, get_logger, setup_logging
from src.models import (
    Agent,
    ChatMessage,
    ChatResponse,
    CreateAgentRequest,
    PaymentMethod,
    PaymentRequest,
    PaymentResult,
    RevenueDistribution,
    RevenueRecord,
    WalletStatus,
)
from src.soulforge.agents import AgentCatalog
from src.soulforge.callbacks import X402PayCallback, verify_callback_signature
from src.soulforge.chat import ChatService
from src.soulforge.collaborators import InMemoryBlobStore
from src.soulforge.evm import EvmWalletProvider
from src.soulforge.ledger import RevenueLedger
from src.soulforge.orchestrator import PaymentOrchestrator
from src.soulforge.wallet import WalletPaymentService, WalletSession
from src.soulforge.x402pay import X402PayService

logger = get_logger(__name__)


@dataclass
class Services:
    """Everything the HTTP layer talks to."""

    database: Database
    orchestrator: PaymentOrchestrator
    x402pay: X402PayService
    catalog: AgentCatalog
    chat: ChatService
    wallet_provider: Optional[EvmWalletProvider] = None


def build_services(database_path: str = None) -> Services:
    """Wire the payment core and agent features from configuration."""
    database = Database(database_path)
    blob_store = InMemoryBlobStore()

    provider = EvmWalletProvider()
    session = WalletSession(provider)
    x402pay = X402PayService()
    orchestrator = PaymentOrchestrator(
        x402pay=x402pay,
        wallet=WalletPaymentService(session),
        wallet_session=session,
        ledger=RevenueLedger(database),
    )
    catalog = AgentCatalog(database, blob_store=blob_store)
    chat = ChatService(catalog, database, blob_store=blob_store)
    return Services(
        database=database,
        orchestrator=orchestrator,
        x402pay=x402pay,
        catalog=catalog,
        chat=chat,
        wallet_provider=provider,
    )


class CreateAgentBody(BaseModel):
    agent: CreateAgentRequest
    payment_method: PaymentMethod = "auto"


class GenerateAgentBody(BaseModel):
    prompt: str = Field(min_length=1, description="What the user wants the agent to be")
    payment_method: PaymentMethod = "auto"


class UnlockBody(BaseModel):
    payment_method: PaymentMethod = "auto"


class UnlockResponse(BaseModel):
    agent_id: str
    unlocked: bool
    payment: Optional[PaymentResult] = None


class ChatBody(BaseModel):
    message: str = Field(min_length=1)


def create_app(services: Services = None, agent_creation_fee: float = None) -> FastAPI:
    """Create the FastAPI application around a set of services."""
    services = services or build_services()
    creation_fee = config.agent_creation_fee if agent_creation_fee is None else agent_creation_fee
    orchestrator = services.orchestrator

    app = FastAPI(
        title="SoulForge",
        description="Payment orchestration, revenue ledger and agent catalog",
    )
    app.state.services = services

    @app.on_event("startup")
    async def startup():
        """Initialize database on startup."""
        logger.info("Initializing SoulForge service...")
        await services.database.initialize()
        logger.info("SoulForge service initialized")

    @app.on_event("shutdown")
    async def shutdown():
        await services.x402pay.close()
        if services.wallet_provider is not None:
            await services.wallet_provider.close()

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        with RequestIdContext(request.headers.get("X-Request-Id")) as request_id:
            response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response

    async def charge(amount: float, description: str, method: str, metadata: dict) -> PaymentResult:
        request = PaymentRequest(
            amount=amount, currency="USD", description=description, method=method, metadata=metadata
        )
        result = await orchestrator.process_payment(request)
        if not result.success:
            raise HTTPException(
                status_code=402,
                detail={"message": "Payment failed", "payment": result.model_dump(mode="json")},
            )
        return result

    @app.get("/health")
    async def health_check() -> dict:
        """Health check endpoint."""
        return {"status": "ok", "service": "soulforge"}

    # Payments
    @app.post("/payments", response_model=PaymentResult)
    async def process_payment(request: PaymentRequest):
        try:
            return await orchestrator.process_payment(request)
        except UnsupportedPaymentMethodError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.get("/payments", response_model=List[RevenueRecord])
    async def payment_history():
        return await orchestrator.get_payment_history()

    @app.get("/revenue/distributions", response_model=List[RevenueDistribution])
    async def revenue_distributions():
        return await orchestrator.get_revenue_distributions()

    @app.post("/revenue/retry")
    async def retry_unrecorded() -> dict:
        recorded = await orchestrator.retry_unrecorded()
        return {"recorded": recorded, "pending": len(orchestrator.unrecorded)}

    # Wallet
    @app.get("/wallet", response_model=WalletStatus)
    async def wallet_status():
        return await orchestrator.get_wallet_status()

    @app.post("/wallet/connect")
    async def connect_wallet() -> dict:
        return {"connected": await orchestrator.connect_wallet()}

    @app.post("/wallet/disconnect")
    async def disconnect_wallet() -> dict:
        await orchestrator.disconnect_wallet()
        return {"connected": False}

    # x402pay callbacks
    @app.post("/x402pay/callback")
    async def x402pay_callback(
        request: Request,
        x_webhook_signature: str = Header(None, alias="X-Webhook-Signature"),
    ):
        """Receive an x402pay status change.

        The body must be signed with the shared webhook secret.
        """
        if not x_webhook_signature:
            logger.error("Missing X-Webhook-Signature header")
            raise HTTPException(status_code=401, detail="Missing X-Webhook-Signature header")

        raw_payload = await request.body()
        if not verify_callback_signature(raw_payload, x_webhook_signature, config.webhook_secret):
            logger.error("Invalid x402pay callback signature")
            raise HTTPException(status_code=401, detail="Invalid signature")

        try:
            callback = X402PayCallback.model_validate_json(raw_payload)
        except ValidationError as e:
            logger.error(f"Invalid callback payload: {e}")
            raise HTTPException(status_code=400, detail="Invalid callback payload")

        try:
            payment = services.x402pay.handle_callback(callback.paymentId, callback.status)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Unknown payment: {callback.paymentId}")
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        return {"paymentId": payment.payment_id, "status": payment.status}

    # Agents
    @app.get("/agents", response_model=List[Agent])
    async def marketplace_agents():
        return await services.catalog.list_marketplace()

    @app.get("/agents/mine", response_model=List[Agent])
    async def user_agents():
        return await services.catalog.list_user_agents()

    async def create_paid_agent(request: CreateAgentRequest, method: str) -> Agent:
        if creation_fee <= 0:
            return await services.catalog.create_agent(request)

        payment = await charge(creation_fee, "Create Agent", method, {"agent_name": request.name})
        try:
            return await services.catalog.create_agent(request)
        except Exception as e:
            logger.error(f"Agent creation failed after payment {payment.payment_id}: {e}", exc_info=True)
            raise HTTPException(
                status_code=500,
                detail={
                    "message": "Agent could not be created after payment",
                    "payment_id": payment.payment_id,
                },
            )

    @app.post("/agents", response_model=Agent, status_code=201)
    async def create_agent(body: CreateAgentBody):
        """Create a custom agent, charging the creation fee first."""
        return await create_paid_agent(body.agent, body.payment_method)

    @app.post("/agents/generate", response_model=Agent, status_code=201)
    async def generate_agent(body: GenerateAgentBody):
        """Design an agent from a prompt, then charge and store it like /agents."""
        draft = await services.catalog.generate_agent(body.prompt, services.chat.generator)
        return await create_paid_agent(draft, body.payment_method)

    @app.get("/agents/{agent_id}", response_model=Agent)
    async def get_agent(agent_id: str):
        try:
            return await services.catalog.get_agent(agent_id)
        except AgentNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

    @app.delete("/agents/{agent_id}", status_code=204)
    async def delete_agent(agent_id: str):
        try:
            await services.catalog.delete_agent(agent_id)
        except AgentNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.post("/agents/{agent_id}/unlock", response_model=UnlockResponse)
    async def unlock_agent(agent_id: str, body: UnlockBody = None):
        body = body or UnlockBody()
        try:
            agent = await services.catalog.get_agent(agent_id)
        except AgentNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

        async with services.catalog.unlock_lock(agent.id):
            if await services.catalog.is_unlocked(agent):
                return UnlockResponse(agent_id=agent.id, unlocked=True)

            payment = await charge(
                agent.price, f"Unlock {agent.name}", body.payment_method, {"agent_id": agent.id}
            )
            await services.catalog.unlock_agent(agent.id, payment.payment_id)
        return UnlockResponse(agent_id=agent.id, unlocked=True, payment=payment)

    @app.get("/agents/{agent_id}/chat", response_model=List[ChatMessage])
    async def chat_history(agent_id: str):
        return await services.chat.get_history(agent_id)

    @app.post("/agents/{agent_id}/chat", response_model=ChatResponse)
    async def send_message(agent_id: str, body: ChatBody):
        try:
            return await services.chat.send_message(agent_id, body.message)
        except AgentNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except AgentLockedError as e:
            raise HTTPException(status_code=402, detail=str(e))

    return app


def main() -> None:
    import uvicorn

    validate_config_for_service("server")
    setup_logging(config.log_level, config.log_format)
    logger.info(f"Starting SoulForge service on {config.host}:{config.port}")
    uvicorn.run(
        create_app(),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
