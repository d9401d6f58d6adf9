"""
Generation Clients.

A generation client turns (input text, persona instruction) into generated
text. The executor calls one concurrently for every node in a level, so
implementations must not share mutable per-call state.
"""

from abc import ABC, abstractmethod
from typing import Optional
import logging

from flowagent.config import Settings, settings as default_settings


logger = logging.getLogger(__name__)


class GenerationFailure(Exception):
    """A generation call failed. The message is shown on the failing node."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class GenerationClient(ABC):
    """Interface consumed by the flow executor."""

    name: str = "base"

    @abstractmethod
    async def generate(self, input_text: str, persona_instruction: str) -> str:
        """
        Generate text for one node invocation.

        Args:
            input_text: The global input or the upstream node's output
            persona_instruction: The node's system/role instruction

        Returns:
            Generated text

        Raises:
            GenerationFailure: If generation failed
        """


class GeminiClient(GenerationClient):
    """
    Generation backed by the Google GenAI SDK.

    The persona is sent as the system instruction and the input text as
    the user content.
    """

    name = "gemini"

    def __init__(self, api_key: Optional[str], model: str = "gemini-2.5-flash"):
        self.api_key = (api_key or "").strip()
        self.model = model
        self._client = None

    def _get_client(self):
        if self._client is None:
            from google import genai

            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def generate(self, input_text: str, persona_instruction: str) -> str:
        if not self.api_key:
            raise GenerationFailure(
                "API Key is missing. Please check your environment variables."
            )

        from google.genai import types

        try:
            response = await self._get_client().aio.models.generate_content(
                model=self.model,
                contents=input_text,
                config=types.GenerateContentConfig(
                    system_instruction=persona_instruction or None,
                ),
            )
        except Exception as e:
            logger.error(f"Gemini API error: {e}")
            raise GenerationFailure(str(e) or "Failed to generate content") from e

        return response.text or "No response generated."


class EchoClient(GenerationClient):
    """Offline backend that returns its input. Useful for wiring up flows."""

    name = "echo"

    def __init__(self, uppercase: bool = False):
        self.uppercase = uppercase

    async def generate(self, input_text: str, persona_instruction: str) -> str:
        return input_text.upper() if self.uppercase else input_text


def build_generation_client(config: Optional[Settings] = None) -> GenerationClient:
    """Create the generation client selected by GENERATION_BACKEND."""
    config = config or default_settings
    backend = config.GENERATION_BACKEND.lower()

    if backend == "gemini":
        return GeminiClient(api_key=config.GEMINI_API_KEY, model=config.GEMINI_MODEL)
    if backend == "echo":
        return EchoClient()

    raise ValueError(
        f"Unknown generation backend '{config.GENERATION_BACKEND}'. "
        f"Available: ['gemini', 'echo']"
    )
