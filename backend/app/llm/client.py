"""Anthropic client wrapper with retry logic."""

import asyncio
import json
import logging
from typing import Any

import anthropic
from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5"

# Default retry configuration
MAX_RETRIES = 3
RETRY_DELAY = 1.0  # seconds
RETRY_MULTIPLIER = 2.0


class ProviderError(Exception):
    """Error raised when a model provider cannot be used or fails."""

    pass


class ProviderResponse(BaseModel):
    """Text completion returned by a provider."""

    content: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def tokens(self) -> dict[str, int]:
        return {
            "prompt": self.prompt_tokens,
            "completion": self.completion_tokens,
            "total": self.prompt_tokens + self.completion_tokens,
        }


def extract_json(text: str) -> Any:
    """Parse JSON from model output, tolerating markdown code fences.

    Raises:
        ValueError: If the text is not valid JSON
    """
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse JSON response: {text[:500]}...")
        raise ValueError(f"Invalid JSON in response: {e}") from e


class LLMClient:
    """Wrapper around the Anthropic client with retry logic."""

    def __init__(self, api_key: str):
        """Initialize the client.

        Args:
            api_key: Anthropic API key.
        """
        if not api_key:
            raise ProviderError("Anthropic API key required")
        self._client = anthropic.Anthropic(api_key=api_key)

    async def generate(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> ProviderResponse:
        """Generate a text response.

        Args:
            messages: Conversation messages
            system: Optional system prompt
            model: Model name
            max_tokens: Maximum tokens in response
            temperature: Sampling temperature (0-1)

        Returns:
            The text and token usage of the response
        """
        response = await self._call_with_retry(
            messages=messages,
            system=system,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
        )

        text = "".join(block.text for block in response.content if block.type == "text")
        return ProviderResponse(
            content=text,
            model=response.model,
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
        )

    async def _call_with_retry(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> anthropic.types.Message:
        """Call the API with exponential backoff retry.

        Raises:
            ProviderError: If all retries fail or the request is rejected
        """
        last_error: Exception | None = None
        delay = RETRY_DELAY

        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": messages,
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system

        for attempt in range(MAX_RETRIES):
            try:
                # Run sync client in thread pool
                loop = asyncio.get_running_loop()
                return await loop.run_in_executor(
                    None, lambda: self._client.messages.create(**kwargs)
                )

            except anthropic.RateLimitError as e:
                last_error = e
                logger.warning(
                    f"Rate limited (attempt {attempt + 1}/{MAX_RETRIES}), "
                    f"retrying in {delay}s..."
                )
                await asyncio.sleep(delay)
                delay *= RETRY_MULTIPLIER

            except anthropic.APIStatusError as e:
                if e.status_code >= 500:
                    last_error = e
                    logger.warning(
                        f"Server error {e.status_code} (attempt {attempt + 1}/{MAX_RETRIES}), "
                        f"retrying in {delay}s..."
                    )
                    await asyncio.sleep(delay)
                    delay *= RETRY_MULTIPLIER
                else:
                    raise ProviderError(f"Provider rejected request: {e.message}") from e

            except anthropic.APIConnectionError as e:
                raise ProviderError(f"Could not reach provider: {e}") from e

        raise ProviderError(f"Provider request failed after {MAX_RETRIES} attempts: {last_error}")
