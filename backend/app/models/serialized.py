"""Pydantic models for the executable (serialized) form of a workflow."""

from typing import Any

from pydantic import Field as PydanticField

from app.models.workflow import CamelModel, Loop, Position


class BlockConfig(CamelModel):
    """Tool binding and parameter values of a serialized block."""

    tool: str
    params: dict[str, Any] = PydanticField(default_factory=dict)


class BlockMetadata(CamelModel):
    """Descriptive data of a serialized block; `id` is the block type."""

    id: str
    name: str | None = None
    description: str | None = None


class SerializedBlock(CamelModel):
    """A block ready for execution."""

    id: str
    position: Position = PydanticField(default_factory=Position)
    config: BlockConfig
    inputs: dict[str, str] = PydanticField(default_factory=dict)
    outputs: dict[str, Any] = PydanticField(default_factory=dict)
    metadata: BlockMetadata
    enabled: bool = True

    @property
    def block_type(self) -> str:
        return self.metadata.id

    @property
    def display_name(self) -> str:
        return self.metadata.name or self.id


class SerializedConnection(CamelModel):
    """A directed connection between serialized blocks."""

    source: str
    target: str
    source_handle: str | None = None
    target_handle: str | None = None


class SerializedWorkflow(CamelModel):
    """A workflow graph in executable form."""

    version: str = "1.0"
    blocks: list[SerializedBlock] = PydanticField(default_factory=list)
    connections: list[SerializedConnection] = PydanticField(default_factory=list)
    loops: dict[str, Loop] = PydanticField(default_factory=dict)
