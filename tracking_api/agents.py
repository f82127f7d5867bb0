"""
Language-model collaborator: the tutor agent backed by Azure OpenAI.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol

from openai import AsyncAzureOpenAI, OpenAIError

from tracking_api.config import Settings
from tracking_api.errors import UpstreamFailure
from tracking_api.session_store import ConversationTurn

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful assistant working as a computer science tutor. "
    "Respond to coding and computer science related questions and politely decline "
    "non-coding and non-programming questions. Your name is USU-AI-Tutor. "
    "If the user asks about the usage of this tool, tell them this is part of a "
    "research project and their data is private and protected. "
    "Be concise, accurate, and to the point."
)


@dataclass
class ModelReply:
    text: str
    token_count: Optional[int]
    model: str


class ChatModel(Protocol):
    model_name: str

    async def generate(self, history: List[ConversationTurn]) -> ModelReply: ...


class AzureTutorAgent:
    """Sends the conversation window, prefixed by the tutor system prompt, to Azure OpenAI.

    The client is created on first use so the server can start (and answer
    health checks) without model credentials.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.model_name = settings.azure_openai_model
        self._client: Optional[AsyncAzureOpenAI] = None

    def _get_client(self) -> AsyncAzureOpenAI:
        if self._client is None:
            if not self.settings.azure_openai_endpoint or not self.settings.azure_openai_key:
                raise UpstreamFailure("Azure OpenAI credentials not configured")
            self._client = AsyncAzureOpenAI(
                api_key=self.settings.azure_openai_key,
                api_version=self.settings.azure_openai_api_version,
                azure_endpoint=self.settings.azure_openai_endpoint,
                azure_deployment=self.model_name,
                timeout=self.settings.model_timeout_seconds,
                max_retries=self.settings.model_max_retries,
            )
            logger.info(f"Azure OpenAI client initialized for deployment {self.model_name}")
        return self._client

    async def generate(self, history: List[ConversationTurn]) -> ModelReply:
        client = self._get_client()
        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        messages.extend(turn.to_message() for turn in history)

        try:
            result = await client.chat.completions.create(
                model=self.model_name,
                messages=messages,
                max_tokens=self.settings.model_max_tokens,
                temperature=self.settings.model_temperature,
            )
        except (OpenAIError, asyncio.TimeoutError) as e:
            logger.error(f"Error calling Azure OpenAI: {e}")
            raise UpstreamFailure(str(e)) from e

        text = result.choices[0].message.content if result.choices else None
        if not text or not text.strip():
            raise UpstreamFailure("Model returned no content")

        token_count = result.usage.total_tokens if result.usage else None
        return ModelReply(text=text, token_count=token_count, model=self.model_name)

    async def close(self):
        if self._client is not None:
            await self._client.close()
            self._client = None
