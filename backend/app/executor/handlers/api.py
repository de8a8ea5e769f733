"""Handler for API (HTTP request) blocks."""

import json
import logging
from typing import Any

import httpx

from app.config import HTTP_BLOCK_TIMEOUT_SECONDS
from app.executor.context import ExecutionContext
from app.executor.exceptions import BlockExecutionError
from app.executor.handlers.base import BlockHandler
from app.models import SerializedBlock

logger = logging.getLogger(__name__)

ALLOWED_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}


def table_to_dict(value: Any) -> dict[str, str]:
    """Normalize a key/value table input.

    Accepts a plain dict, or rows shaped like
    `[{"cells": {"Key": "...", "Value": "..."}}]` as produced by table inputs.
    Rows with an empty key are skipped.
    """
    if value in (None, ""):
        return {}
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise BlockExecutionError(f"Invalid table value: {e}") from e
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items()}
    if isinstance(value, list):
        result: dict[str, str] = {}
        for row in value:
            cells = row.get("cells", row) if isinstance(row, dict) else {}
            key = cells.get("Key") or cells.get("key")
            if key:
                result[str(key)] = str(cells.get("Value", cells.get("value", "")))
        return result
    raise BlockExecutionError(f"Invalid table value of type {type(value).__name__}")


class ApiBlockHandler(BlockHandler):
    """Performs the configured HTTP request with httpx."""

    block_type = "api"

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = HTTP_BLOCK_TIMEOUT_SECONDS,
    ):
        self._transport = transport
        self._timeout = timeout

    async def execute(
        self,
        block: SerializedBlock,
        inputs: dict[str, Any],
        context: ExecutionContext,
    ) -> dict[str, Any]:
        url = inputs.get("url")
        if not url or not isinstance(url, str):
            raise BlockExecutionError(f"{block.display_name} requires a URL", block_id=block.id)

        method = str(inputs.get("method") or "GET").upper()
        if method not in ALLOWED_METHODS:
            raise BlockExecutionError(f"Unsupported HTTP method: {method}", block_id=block.id)

        request_kwargs: dict[str, Any] = {
            "headers": table_to_dict(inputs.get("headers")),
            "params": table_to_dict(inputs.get("params")),
        }

        body = inputs.get("body")
        if isinstance(body, str) and body.strip():
            try:
                request_kwargs["json"] = json.loads(body)
            except json.JSONDecodeError:
                request_kwargs["content"] = body
        elif isinstance(body, (dict, list)):
            request_kwargs["json"] = body

        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self._timeout
            ) as client:
                response = await client.request(method, url, **request_kwargs)
        except httpx.HTTPError as e:
            raise BlockExecutionError(f"Request to {url} failed: {e}", block_id=block.id) from e

        try:
            data: Any = response.json()
        except ValueError:
            data = response.text

        if response.is_error:
            logger.info(f"API block {block.id} got HTTP {response.status_code} from {url}")
            raise BlockExecutionError(
                f"HTTP {response.status_code} {response.reason_phrase} from {url}",
                block_id=block.id,
                status=response.status_code,
            )

        return {
            "data": data,
            "status": response.status_code,
            "headers": dict(response.headers),
        }
