"""
FastAPI dependencies shared by the routers.
"""

from functools import lru_cache

from flowagent.config import settings
from flowagent.services.generation import GenerationClient, build_generation_client


@lru_cache(maxsize=1)
def get_generation_client() -> GenerationClient:
    """The process-wide generation client, selected by GENERATION_BACKEND."""
    return build_generation_client(settings)
