"""Registry of block types that can appear in a workflow."""

from typing import Any

from pydantic import BaseModel, Field


class BlockDefinition(BaseModel):
    """Static description of a block type."""

    type: str
    name: str
    description: str = ""
    tool: str
    inputs: dict[str, str] = Field(default_factory=dict)
    outputs: dict[str, Any] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)


STARTER_BLOCK = BlockDefinition(
    type="starter",
    name="Start",
    description="Entry point of a workflow; exposes the run input.",
    tool="starter",
    inputs={"input": "json"},
    outputs={"input": "any"},
)

AGENT_BLOCK = BlockDefinition(
    type="agent",
    name="Agent",
    description="Calls a language model with a system prompt and context.",
    tool="anthropic",
    inputs={
        "systemPrompt": "string",
        "context": "string",
        "model": "string",
        "temperature": "number",
        "maxTokens": "number",
        "apiKey": "string",
        "responseFormat": "json",
    },
    outputs={
        "content": "string",
        "model": "string",
        "tokens": "json",
        "providerTiming": "json",
    },
)

API_BLOCK = BlockDefinition(
    type="api",
    name="API",
    description="Makes an HTTP request.",
    tool="http_request",
    inputs={
        "url": "string",
        "method": "string",
        "headers": "json",
        "params": "json",
        "body": "json",
    },
    outputs={"data": "any", "status": "number", "headers": "json"},
    required=["url"],
)

CONDITION_BLOCK = BlockDefinition(
    type="condition",
    name="Condition",
    description="Routes execution down the first branch whose expression holds.",
    tool="condition",
    inputs={"conditions": "json"},
    outputs={
        "conditionResult": "boolean",
        "selectedPath": "json",
        "selectedConditionId": "string",
        "content": "string",
    },
    required=["conditions"],
)

_REGISTRY: dict[str, BlockDefinition] = {
    block.type: block for block in (STARTER_BLOCK, AGENT_BLOCK, API_BLOCK, CONDITION_BLOCK)
}


def get_block(block_type: str) -> BlockDefinition | None:
    """Look up a block type, or None if it is unknown."""
    return _REGISTRY.get(block_type)


def list_block_types() -> list[str]:
    """Names of all registered block types, sorted."""
    return sorted(_REGISTRY)
