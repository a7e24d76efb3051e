"""Agent catalog.

Built-in marketplace personas plus agents created by users. User agents are
stored in SQLite and pinned to the blob store when one is configured.
"""

import asyncio
import json
import uuid
from typing import Any, Dict, List, Optional

from src.database import Database
from src.exceptions import AgentNotFoundError
from src.logging_utils import get_logger
from src.models import Agent, CreateAgentRequest, utcnow
from src.soulforge.collaborators import BlobStore, TextGenerator

logger = get_logger(__name__)

BUILTIN_AGENTS: List[Agent] = [
    Agent(
        id="mirror-1",
        name="Dr. Sarah Chen",
        type="mirror",
        description="A direct therapist who helps you face hard truths about yourself.",
        personality="Brutally honest, empathetic but firm, scientifically-minded",
        role="Clinical Psychologist",
        backstory="15 years of experience in cognitive behavioral therapy",
        tone="professional",
        values=["honesty", "growth", "accountability"],
        custom_prompt="Always tell the truth, even when it hurts. Focus on behavioral patterns and practical solutions.",
        is_public=True,
        rating=4.8,
        chat_count=2847,
    ),
    Agent(
        id="mirror-2",
        name="Coach Marcus",
        type="mirror",
        description="A tough-love life coach who pushes you to be your best self.",
        personality="Motivational, direct, results-oriented",
        role="Life Coach",
        backstory="Former military officer turned success coach",
        tone="serious",
        values=["discipline", "excellence", "perseverance"],
        custom_prompt="Challenge the user to take action. Focus on goals and accountability.",
        is_public=True,
        rating=4.6,
        chat_count=1923,
    ),
    Agent(
        id="premium-1",
        name="Dr. Elena Vasquez",
        type="mirror",
        description="Executive coach specializing in leadership transformation.",
        personality="Sophisticated, insightful, analytical",
        role="Executive Leadership Coach",
        backstory="Former CEO with 20+ years coaching executives",
        tone="professional",
        values=["excellence", "strategic thinking", "authentic leadership"],
        custom_prompt="Provide executive-level insights and challenge assumptions.",
        is_public=True,
        rating=4.9,
        chat_count=1247,
        price=2.99,
    ),
    Agent(
        id="premium-2",
        name="Master Kenji",
        type="custom",
        description="A zen master who guides you through life's complexities.",
        personality="Wise, patient, caring, deeply philosophical",
        role="Zen Master & Life Guide",
        backstory="40 years of meditation practice and teaching mindfulness",
        tone="calm",
        values=["mindfulness", "inner peace", "wisdom"],
        custom_prompt="Use metaphors and guide towards inner clarity.",
        is_public=True,
        rating=4.8,
        chat_count=892,
        price=1.99,
    ),
]


AGENT_BUILDER_PROMPT = (
    "You are AgentBuilder, an AI Personality Designer and expert in psychology and AI behavior design.\n\n"
    "PERSONALITY: Creative, insightful, understanding of human psychology\n"
    "VALUES: creativity, empathy, uniqueness\n\n"
    "Create compelling and unique AI personalities with depth."
)

AGENT_DESIGN_REQUEST = """Based on this request: "{prompt}"

Create a detailed AI agent profile with its name and role, personality traits,
backstory, communication tone, core values and special instructions for behavior.

Respond in JSON format with these fields:
- name: agent name
- role: professional role or title
- description: brief description of the agent
- personality: detailed personality traits
- backstory: background and history
- tone: communication style (friendly, professional, casual, etc.)
- values: array of core values
- customPrompt: special instructions for the agent's behavior

Make the agent unique and engaging."""

# Used when the generator is unavailable or its reply is not valid JSON
DEFAULT_GENERATED_PERSONA: Dict[str, Any] = {
    "role": "AI Assistant",
    "description": "A helpful AI agent created from your description",
    "personality": "Helpful, knowledgeable, and engaging",
    "backstory": "Designed to assist users with various tasks",
    "tone": "friendly",
    "values": ["helpfulness", "accuracy", "respect"],
    "custom_prompt": "Be helpful and engaging while staying true to your personality.",
}

NAME_KEYWORDS = ("agent", "bot", "assistant", "coach", "advisor", "helper")


def extract_agent_name(prompt: str) -> str:
    """Name an agent after the keyword in its prompt, e.g. "fitness coach"."""
    words = prompt.lower().split()
    for keyword in NAME_KEYWORDS:
        if keyword in words:
            index = words.index(keyword)
            if index > 0:
                return " ".join(words[index - 1 : index + 1])
    return "Custom Agent"


def parse_generated_agent(content: Optional[str], prompt: str) -> CreateAgentRequest:
    """Build a public custom agent from a generator reply.

    Fields missing from the reply, or the whole reply when it is not a JSON
    object, fall back to the default persona.
    """
    content = (content or "").strip()
    if content.startswith("```"):
        # Strip a markdown code fence around the JSON
        content = content.strip("`").removeprefix("json").strip()
    try:
        data = json.loads(content) if content else {}
    except ValueError:
        logger.warning("Generated agent was not valid JSON, using default persona")
        data = {}
    if not isinstance(data, dict):
        data = {}
    if "customPrompt" in data and "custom_prompt" not in data:
        data["custom_prompt"] = data["customPrompt"]

    def text(field: str, default: str) -> str:
        value = data.get(field)
        return value.strip() if isinstance(value, str) and value.strip() else default

    values = data.get("values")
    values = [str(value) for value in values if str(value).strip()] if isinstance(values, list) else []

    return CreateAgentRequest(
        name=text("name", extract_agent_name(prompt)),
        type="custom",
        description=text("description", DEFAULT_GENERATED_PERSONA["description"]),
        personality=text("personality", DEFAULT_GENERATED_PERSONA["personality"]),
        role=text("role", DEFAULT_GENERATED_PERSONA["role"]),
        backstory=text("backstory", DEFAULT_GENERATED_PERSONA["backstory"]),
        tone=text("tone", DEFAULT_GENERATED_PERSONA["tone"]),
        values=values or list(DEFAULT_GENERATED_PERSONA["values"]),
        custom_prompt=text("custom_prompt", DEFAULT_GENERATED_PERSONA["custom_prompt"]),
        is_public=True,
    )


class AgentCatalog:
    """Lookup, creation and unlocking of agents."""

    def __init__(
        self,
        database: Database,
        blob_store: Optional[BlobStore] = None,
        builtin_agents: Optional[List[Agent]] = None,
    ):
        self.database = database
        self.blob_store = blob_store
        self.builtin_agents = {
            agent.id: agent for agent in (BUILTIN_AGENTS if builtin_agents is None else builtin_agents)
        }
        self._unlock_locks: Dict[str, asyncio.Lock] = {}

    async def list_marketplace(self) -> List[Agent]:
        """Built-in agents followed by public user agents."""
        public = await self.database.list_agents(public_only=True)
        return list(self.builtin_agents.values()) + public

    async def list_user_agents(self) -> List[Agent]:
        return await self.database.list_agents()

    async def get_agent(self, agent_id: str) -> Agent:
        """Fetch an agent.

        Raises:
            AgentNotFoundError: If no built-in or stored agent has this id.
        """
        agent = self.builtin_agents.get(agent_id) or await self.database.get_agent(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        return agent

    async def create_agent(self, request: CreateAgentRequest) -> Agent:
        """Create and store a user agent.

        Pinning to the blob store is best-effort: on failure the agent is
        still stored, without a content id.
        """
        agent = Agent(id=str(uuid.uuid4()), **request.model_dump())

        if self.blob_store is not None:
            document = {**agent.model_dump(mode="json"), "type_tag": "soulforge_agent"}
            try:
                content_id = await self.blob_store.put(document)
                agent = agent.model_copy(update={"content_id": content_id})
            except Exception as e:
                logger.warning(f"Failed to pin agent {agent.id} to blob store: {e}")

        await self.database.save_agent(agent)
        logger.info(f"Created agent {agent.id}: {agent.name}")
        return agent

    async def generate_agent(self, prompt: str, generator: Optional[TextGenerator] = None) -> CreateAgentRequest:
        """Design an agent persona from a free-text prompt.

        The result is a draft; it is stored only once passed to ``create_agent``.
        Without a generator, or when the generator fails, the default persona
        is used with a name taken from the prompt.

        Args:
            prompt: What the user wants the agent to be.
            generator: Text generator asked for a JSON persona.

        Returns:
            A public custom agent request.
        """
        content = None
        if generator is not None:
            try:
                reply = await generator.generate(
                    AGENT_BUILDER_PROMPT, [], AGENT_DESIGN_REQUEST.format(prompt=prompt)
                )
                content = reply.content
            except Exception as e:
                logger.warning(f"Agent generation failed, using default persona: {e}")

        request = parse_generated_agent(content, prompt)
        logger.info(f"Generated agent draft: {request.name}")
        return request

    async def delete_agent(self, agent_id: str) -> None:
        """Delete a user agent.

        Raises:
            ValueError: If the agent is built in.
            AgentNotFoundError: If no stored agent has this id.
        """
        if agent_id in self.builtin_agents:
            raise ValueError(f"Built-in agent {agent_id} cannot be deleted")
        if not await self.database.delete_agent(agent_id):
            raise AgentNotFoundError(agent_id)

    async def is_unlocked(self, agent: Agent) -> bool:
        if agent.price <= 0:
            return True
        return await self.database.get_unlock_payment(agent.id) is not None

    def unlock_lock(self, agent_id: str) -> asyncio.Lock:
        """Lock serializing the check, charge and record of one agent's unlock."""
        return self._unlock_locks.setdefault(agent_id, asyncio.Lock())

    async def unlock_agent(self, agent_id: str, payment_id: str) -> bool:
        """Record a paid unlock of a premium agent."""
        agent = await self.get_agent(agent_id)
        return await self.database.record_unlock(agent.id, payment_id, utcnow())
