"""
OpenAI-Compatible Client Adapter.

Implements the BaseAIClient interface for OpenAI and any endpoint that
speaks the Chat Completions API (set ``base_url``).
"""

import time

import openai

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


class OpenAICompatibleClient(BaseAIClient):
    """
    Chat Completions client.

    Usage:
        config = AIClientConfig(
            name="zai",
            api_key="...",
            model="glm-4.7",
            base_url="https://api.z.ai/api/paas/v4",
        )
        client = OpenAICompatibleClient(config)
        response = await client.generate(system_prompt, user_prompt)
    """

    def __init__(self, config: AIClientConfig):
        super().__init__(config)

        client_kwargs = {"api_key": config.api_key, "timeout": config.timeout}
        if config.base_url:
            client_kwargs["base_url"] = config.base_url
        self._client = openai.AsyncOpenAI(**client_kwargs)

    async def generate(self, system_prompt: str, user_prompt: str) -> AIResponse:
        start_time = time.time()

        try:
            response = await self._client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                **self.config.extra_params,
            )
        except openai.BadRequestError as e:
            raise AIInvalidRequestError(f"Bad request: {e}", self.name) from e
        except openai.AuthenticationError as e:
            raise AIAuthenticationError(f"Authentication failed: {e}", self.name) from e
        except openai.RateLimitError as e:
            raise AIRateLimitError(f"Rate limit exceeded: {e}", self.name) from e
        except openai.APIConnectionError as e:
            raise AIConnectionError(f"Connection failed: {e}", self.name) from e
        except openai.APIStatusError as e:
            raise AIClientError(f"API error: {e}", self.name) from e

        if not response.choices:
            raise AIClientError("Empty completion", self.name)

        choice = response.choices[0]
        content = (choice.message.content or "").strip()
        if not content:
            raise AIClientError("Empty completion", self.name)

        return AIResponse(
            content=content,
            model=response.model,
            provider=self.name,
            tokens_used=response.usage.total_tokens if response.usage else 0,
            stop_reason=choice.finish_reason or "",
            latency_ms=int((time.time() - start_time) * 1000),
            raw_response=response,
        )
