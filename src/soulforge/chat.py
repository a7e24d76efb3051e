"""Chat with agent personas."""

import uuid
from typing import Dict, List, Optional

from src.database import Database
from src.exceptions import AgentLockedError
from src.logging_utils import get_logger
from src.models import Agent, ChatMessage, ChatResponse, utcnow
from src.soulforge.agents import AgentCatalog
from src.soulforge.collaborators import BlobStore, FallbackGenerator, TextGenerator, detect_emotion

logger = get_logger(__name__)

# Messages of context passed to the generator
HISTORY_WINDOW = 10


def build_system_prompt(agent: Agent) -> str:
    prompt = (
        f"You are {agent.name}, a {agent.role}.\n\n"
        f"PERSONALITY: {agent.personality}\n"
        f"BACKSTORY: {agent.backstory}\n"
        f"TONE: {agent.tone}\n"
        f"VALUES: {', '.join(agent.values)}\n\n"
        f"DESCRIPTION: {agent.description}"
    )
    if agent.custom_prompt:
        prompt += f"\n\nSPECIAL INSTRUCTIONS: {agent.custom_prompt}"
    if agent.type == "mirror":
        prompt += (
            "\n\nYou are a Mirror Agent: be honest and direct, even when it is uncomfortable. "
            "Challenge the user and never sugarcoat the truth."
        )
    prompt += "\n\nRespond in character and keep responses conversational."
    return prompt


def build_conversation_history(history: List[ChatMessage]) -> List[Dict[str, str]]:
    return [
        {"role": "user" if message.sender == "user" else "assistant", "content": message.content}
        for message in history[-HISTORY_WINDOW:]
    ]


class ChatService:
    """Conversation history and reply generation for agents."""

    def __init__(
        self,
        catalog: AgentCatalog,
        database: Database,
        generator: Optional[TextGenerator] = None,
        blob_store: Optional[BlobStore] = None,
    ):
        self.catalog = catalog
        self.database = database
        self.generator = generator
        self.blob_store = blob_store

    async def get_history(self, agent_id: str) -> List[ChatMessage]:
        return await self.database.list_chat_messages(agent_id)

    async def send_message(self, agent_id: str, message: str) -> ChatResponse:
        """Send a user message to an agent and store the exchange.

        Raises:
            AgentNotFoundError: If the agent does not exist.
            AgentLockedError: If the agent is premium and has not been unlocked.
        """
        agent = await self.catalog.get_agent(agent_id)
        if not await self.catalog.is_unlocked(agent):
            raise AgentLockedError(agent.id, agent.price)

        history = await self.get_history(agent_id)
        system_prompt = build_system_prompt(agent)
        conversation = build_conversation_history(history)

        memory_updated = True
        if self.generator is None:
            reply = await FallbackGenerator(agent).generate(system_prompt, conversation, message)
            memory_updated = False
        else:
            try:
                reply = await self.generator.generate(system_prompt, conversation, message)
            except Exception as e:
                logger.warning(f"Text generation failed for agent {agent_id}, using fallback: {e}")
                reply = await FallbackGenerator(agent).generate(system_prompt, conversation, message)
                memory_updated = False

        content = reply.content.strip()
        emotion = reply.emotion or detect_emotion(content)
        exchange = [
            ChatMessage(id=uuid.uuid4().hex, content=message, sender="user", timestamp=utcnow()),
            ChatMessage(id=uuid.uuid4().hex, content=content, sender="agent", timestamp=utcnow(), emotion=emotion),
        ]
        await self.database.append_chat_messages(agent_id, exchange)
        await self._snapshot(agent_id, history + exchange)

        return ChatResponse(content=content, emotion=emotion, memory_updated=memory_updated)

    async def _snapshot(self, agent_id: str, history: List[ChatMessage]) -> Optional[str]:
        if self.blob_store is None:
            return None
        document = {
            "agent_id": agent_id,
            "history": [message.model_dump(mode="json") for message in history],
            "timestamp": utcnow().isoformat(),
            "type_tag": "soulforge_chat_history",
        }
        try:
            return await self.blob_store.put(document)
        except Exception as e:
            logger.warning(f"Failed to snapshot chat history for {agent_id}: {e}")
            return None
