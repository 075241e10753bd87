"""
AI Client Module.

OpenAI-compatible chat providers consulted, in configured order, by the
signal enhancer.

Usage:
    from anoa.services.ai import create_enhancer_clients

    clients = create_enhancer_clients()
    response = await clients[0].generate(system_prompt, user_prompt)
"""

import logging
from typing import Optional

from ...core.config import Settings, get_settings
from .base import (
    AIAuthenticationError,
    AIClientConfig,
    AIClientError,
    AIConnectionError,
    AIInvalidRequestError,
    AIRateLimitError,
    AIResponse,
    BaseAIClient,
)
from .openai_client import OpenAICompatibleClient

logger = logging.getLogger(__name__)


def create_enhancer_clients(settings: Optional[Settings] = None) -> list[BaseAIClient]:
    """Build the ordered provider chain from ENHANCER_PROVIDERS."""
    settings = settings or get_settings()
    clients: list[BaseAIClient] = []
    for entry in settings.get_enhancer_providers():
        config = AIClientConfig(
            name=entry["name"],
            api_key=entry["api_key"],
            model=entry["model"],
            base_url=entry["base_url"],
            max_tokens=settings.enhancer_max_tokens,
            timeout=settings.enhancer_timeout,
        )
        try:
            clients.append(OpenAICompatibleClient(config))
        except AIClientError as e:
            logger.warning(f"Skipping enhancer provider {entry['name']}: {e.message}")
    return clients


__all__ = [
    "AIAuthenticationError",
    "AIClientConfig",
    "AIClientError",
    "AIConnectionError",
    "AIInvalidRequestError",
    "AIRateLimitError",
    "AIResponse",
    "BaseAIClient",
    "create_enhancer_clients",
    "OpenAICompatibleClient",
]
