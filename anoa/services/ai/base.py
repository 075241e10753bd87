"""
AI Client Base Classes.

Defines the abstract interface for the chat-completion providers the signal
enhancer consults, and the error hierarchy their adapters raise.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class AIClientConfig:
    """Configuration for one provider in the enhancer chain"""

    name: str  # Provider label used in logs and results
    api_key: str
    model: str
    base_url: Optional[str] = None  # OpenAI-compatible endpoint
    max_tokens: int = 500
    temperature: float = 0.3
    timeout: float = 20.0
    extra_params: dict = field(default_factory=dict)


@dataclass
class AIResponse:
    """Standardized response from AI clients"""

    content: str
    model: str
    provider: str
    tokens_used: int = 0
    stop_reason: str = ""
    latency_ms: int = 0
    raw_response: Optional[Any] = None


class AIClientError(Exception):
    """Base error for AI client operations"""

    def __init__(self, message: str, provider: Optional[str] = None):
        self.message = message
        self.provider = provider
        super().__init__(message)


class AIAuthenticationError(AIClientError):
    """Authentication failed with provider"""

    pass


class AIRateLimitError(AIClientError):
    """Rate limit exceeded"""

    pass


class AIConnectionError(AIClientError):
    """Connection to provider failed"""

    pass


class AIInvalidRequestError(AIClientError):
    """Invalid request to provider"""

    pass


class BaseAIClient(ABC):
    """
    Abstract base class for AI clients.

    Usage:
        client = OpenAICompatibleClient(config)
        response = await client.generate(system_prompt, user_prompt)
    """

    def __init__(self, config: AIClientConfig):
        self.config = config
        self._validate_config()

    def _validate_config(self) -> None:
        if not self.config.api_key:
            raise AIClientError(f"API key is required for {self.config.name}", self.config.name)
        if not self.config.model:
            raise AIClientError(f"Model is required for {self.config.name}", self.config.name)

    @property
    def name(self) -> str:
        return self.config.name

    @abstractmethod
    async def generate(self, system_prompt: str, user_prompt: str) -> AIResponse:
        """
        Generate a chat completion.

        Raises:
            AIClientError: On any error from the AI provider
        """
        pass
