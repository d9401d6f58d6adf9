"""
Services package - External collaborators used by the engine.
"""

from flowagent.services.generation import (
    EchoClient,
    GeminiClient,
    GenerationClient,
    GenerationFailure,
    build_generation_client,
)

__all__ = [
    "EchoClient",
    "GeminiClient",
    "GenerationClient",
    "GenerationFailure",
    "build_generation_client",
]
