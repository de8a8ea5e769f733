"""Pydantic models for stored workflows (the editable block graph)."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model using camelCase on the wire and snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Position(BaseModel):
    """Canvas position of a block."""

    x: float = 0
    y: float = 0


class SubBlockState(CamelModel):
    """A single configurable input of a block."""

    id: str
    type: str = "short-input"
    value: Any = None


class BlockState(CamelModel):
    """A block placed on the workflow canvas."""

    id: str
    type: str
    name: str
    position: Position = PydanticField(default_factory=Position)
    enabled: bool = True
    sub_blocks: dict[str, SubBlockState] = PydanticField(default_factory=dict)
    outputs: dict[str, Any] = PydanticField(default_factory=dict)

    def sub_block_values(self) -> dict[str, Any]:
        """Return the raw values of all sub-blocks keyed by sub-block id."""
        return {key: sub.value for key, sub in self.sub_blocks.items()}


class WorkflowEdge(CamelModel):
    """A connection between two blocks."""

    id: str
    source: str
    target: str
    source_handle: str | None = None
    target_handle: str | None = None


class Loop(CamelModel):
    """A group of blocks executed repeatedly."""

    id: str
    nodes: list[str] = PydanticField(default_factory=list)
    iterations: int = 5
    loop_type: Literal["for", "forEach"] = "for"
    for_each_items: list[Any] | dict[str, Any] | str | None = None


class WorkflowState(CamelModel):
    """The complete editable state of a workflow."""

    blocks: dict[str, BlockState] = PydanticField(default_factory=dict)
    edges: list[WorkflowEdge] = PydanticField(default_factory=list)
    loops: dict[str, Loop] = PydanticField(default_factory=dict)


VariableType = Literal["string", "number", "boolean", "object", "array", "plain"]


class WorkflowVariable(CamelModel):
    """A user-defined variable readable from blocks as <variable.name>."""

    id: str
    workflow_id: str | None = None
    name: str
    type: VariableType = "string"
    value: Any = None


class Workflow(CamelModel):
    """A stored workflow with its deployment and run bookkeeping."""

    id: str
    user_id: str
    name: str
    description: str = ""
    state: WorkflowState = PydanticField(default_factory=WorkflowState)
    variables: dict[str, Any] = PydanticField(default_factory=dict)
    is_deployed: bool = False
    deployed_at: str | None = None
    api_key: str | None = None
    run_count: int = 0
    last_run_at: str | None = None
    created_at: str
    updated_at: str


class WorkflowCreate(CamelModel):
    """Request model for creating a workflow."""

    user_id: str
    name: str
    description: str = ""
    state: WorkflowState = PydanticField(default_factory=WorkflowState)
    variables: dict[str, WorkflowVariable] = PydanticField(default_factory=dict)


class WorkflowSummary(CamelModel):
    """Summary of a workflow for list views."""

    id: str
    user_id: str
    name: str
    description: str = ""
    block_count: int = 0
    is_deployed: bool = False
    run_count: int = 0
    last_run_at: str | None = None
    created_at: str
    updated_at: str


class DeploymentInfo(CamelModel):
    """Deployment status returned by the deploy endpoints."""

    is_deployed: bool
    deployed_at: str | None = None
    api_key: str | None = None
