"""Contracts for the external collaborators used by the agent features.

The blob store keeps agents and chat snapshots under content identifiers; the
text generator produces agent replies. Both are opaque to the payment core.
"""

import hashlib
import json
import random
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel

from src.models import Agent


class GeneratedReply(BaseModel):
    content: str
    emotion: Optional[str] = None


class BlobStore(Protocol):
    async def put(self, document: Dict[str, Any]) -> str: ...

    async def get(self, content_id: str) -> Optional[Dict[str, Any]]: ...


class TextGenerator(Protocol):
    async def generate(
        self,
        system_prompt: str,
        conversation_history: List[Dict[str, str]],
        user_message: str,
    ) -> GeneratedReply: ...


def content_id_for(document: Dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON encoding."""
    canonical = json.dumps(document, sort_keys=True, separators=(",", ":"), default=str)
    return "sha256-" + hashlib.sha256(canonical.encode()).hexdigest()


class InMemoryBlobStore:
    """Content-addressed store held in process memory."""

    def __init__(self):
        self._blobs: Dict[str, str] = {}

    async def put(self, document: Dict[str, Any]) -> str:
        content_id = content_id_for(document)
        self._blobs[content_id] = json.dumps(document, default=str)
        return content_id

    async def get(self, content_id: str) -> Optional[Dict[str, Any]]:
        blob = self._blobs.get(content_id)
        return json.loads(blob) if blob is not None else None


EMOTION_KEYWORDS = [
    (("sorry", "understand"), "empathetic"),
    (("need to", "should"), "direct"),
    (("great", "excellent"), "encouraging"),
    (("think", "consider"), "thoughtful"),
]


def detect_emotion(content: str) -> str:
    lowered = content.lower()
    for keywords, emotion in EMOTION_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return emotion
    return "thoughtful"


class FallbackGenerator:
    """Persona-flavoured canned replies for when the real generator is down."""

    def __init__(self, agent: Agent, rng: Optional[random.Random] = None):
        self.agent = agent
        self._rng = rng or random.Random()

    def candidates(self, user_message: str) -> List[str]:
        name = self.agent.name
        personality = self.agent.personality.lower()
        message = user_message.lower()

        replies = [
            f"I'm having some technical difficulties, but I'm still here. {name} would want you to know your message matters.",
            f"My full capabilities are limited right now, but I can still share what {name} would say.",
        ]
        if self.agent.type == "mirror":
            replies.append(
                f"Even with my systems acting up, {name} believes in giving you the honest truth, so let's face this head-on."
            )
        if "supportive" in personality or "caring" in personality:
            replies.append(f"I'm sorry my replies aren't perfect right now. {name} wants you to feel heard.")
        if "analytical" in personality or "logical" in personality:
            replies.append(f"My analysis is limited at the moment, but {name} would still approach this step by step.")
        if "help" in message or "advice" in message:
            replies.append(f"{name}'s core advice: focus on what you can control right now.")
        if "problem" in message or "issue" in message:
            replies.append(f"{name} would remind you that every problem has a way through; we need to find the right approach.")
        return replies

    async def generate(
        self,
        system_prompt: str,
        conversation_history: List[Dict[str, str]],
        user_message: str,
    ) -> GeneratedReply:
        content = self._rng.choice(self.candidates(user_message))
        return GeneratedReply(content=content, emotion=detect_emotion(content))
