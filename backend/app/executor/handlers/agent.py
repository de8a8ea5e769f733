"""Handler for agent (language model) blocks."""

import json
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from app.config import get_rotating_api_key, is_hosted
from app.executor.context import ExecutionContext
from app.executor.exceptions import BlockExecutionError
from app.executor.handlers.base import BlockHandler
from app.llm import DEFAULT_MODEL, LLMClient, ProviderError, extract_json
from app.models import SerializedBlock

logger = logging.getLogger(__name__)

PROVIDER = "anthropic"


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, UTC).isoformat()


def _parse_response_format(value: Any) -> dict[str, Any] | None:
    if value in (None, ""):
        return None
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as e:
            raise BlockExecutionError(f"Invalid response format: {e}") from e
        if isinstance(parsed, dict):
            return parsed
    raise BlockExecutionError("Invalid response format: expected a JSON object")


class AgentBlockHandler(BlockHandler):
    """Sends the block's prompts to the model provider."""

    block_type = "agent"

    def __init__(self, client_factory: Callable[[str], LLMClient] = LLMClient):
        self._client_factory = client_factory

    def _api_key(self, inputs: dict[str, Any]) -> str:
        api_key = inputs.get("apiKey")
        if api_key:
            return str(api_key)
        if is_hosted():
            try:
                return get_rotating_api_key(PROVIDER)
            except ValueError as e:
                raise ProviderError(str(e)) from e
        raise ProviderError("API key is required for agent blocks")

    async def execute(
        self,
        block: SerializedBlock,
        inputs: dict[str, Any],
        context: ExecutionContext,
    ) -> dict[str, Any]:
        system_prompt = inputs.get("systemPrompt") or None
        user_prompt = inputs.get("context")
        if user_prompt is not None and not isinstance(user_prompt, str):
            user_prompt = json.dumps(user_prompt)
        if not system_prompt and not user_prompt:
            raise BlockExecutionError(
                f"{block.display_name} needs a system prompt or context", block_id=block.id
            )

        response_format = _parse_response_format(inputs.get("responseFormat"))
        if response_format is not None:
            schema_text = json.dumps(response_format.get("schema", response_format))
            instruction = f"Respond only with JSON matching this schema:\n{schema_text}"
            system_prompt = f"{system_prompt}\n\n{instruction}" if system_prompt else instruction

        if not user_prompt:
            # The provider needs at least one user message
            messages = [{"role": "user", "content": system_prompt}]
            system_prompt = None
        else:
            messages = [{"role": "user", "content": user_prompt}]

        model = inputs.get("model") or DEFAULT_MODEL
        client = self._client_factory(self._api_key(inputs))

        start = time.time()
        try:
            response = await client.generate(
                messages,
                system=system_prompt,
                model=model,
                max_tokens=int(inputs.get("maxTokens") or 1024),
                temperature=float(inputs.get("temperature", 0.7)),
            )
        except ProviderError as e:
            raise BlockExecutionError(str(e), block_id=block.id) from e
        end = time.time()
        duration = int((end - start) * 1000)

        logger.info(f"Agent block {block.id} completed with {response.model} in {duration}ms")

        output: dict[str, Any] = {
            "content": response.content,
            "model": response.model,
            "tokens": response.tokens,
            "providerTiming": {
                "startTime": _iso(start),
                "endTime": _iso(end),
                "duration": duration,
                "timeSegments": [
                    {
                        "type": "model",
                        "name": response.model,
                        "startTime": _iso(start),
                        "endTime": _iso(end),
                        "duration": duration,
                    }
                ],
            },
        }

        if response_format is not None:
            try:
                structured = extract_json(response.content)
            except ValueError as e:
                raise BlockExecutionError(
                    f"Response did not match the response format: {e}", block_id=block.id
                ) from e
            if isinstance(structured, dict):
                output = {**structured, **output}

        return output
