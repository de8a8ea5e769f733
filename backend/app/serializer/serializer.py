"""Conversion between the editable workflow state and its executable form."""

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from app.blocks import get_block
from app.models import (
    BlockConfig,
    BlockMetadata,
    BlockState,
    Loop,
    SerializedBlock,
    SerializedConnection,
    SerializedWorkflow,
    SubBlockState,
    WorkflowEdge,
)

logger = logging.getLogger(__name__)

SERIALIZED_VERSION = "1.0"


class SerializationError(Exception):
    """Raised when a workflow graph cannot be serialized."""

    pass


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class Serializer:
    """Serializes workflow state (blocks, edges, loops) for the executor."""

    def serialize_workflow(
        self,
        blocks: Mapping[str, BlockState | dict[str, Any]],
        edges: Sequence[WorkflowEdge | dict[str, Any]],
        loops: Mapping[str, Loop | dict[str, Any]] | None = None,
        validate_required: bool = False,
    ) -> SerializedWorkflow:
        """Serialize a workflow graph.

        Args:
            blocks: Block states keyed by block ID.
            edges: Connections between blocks.
            loops: Loop definitions keyed by loop ID.
            validate_required: Reject enabled blocks missing required params.

        Returns:
            The serialized workflow.

        Raises:
            SerializationError: On unknown block types or dangling references.
        """
        block_states = {
            block_id: BlockState.model_validate(block) for block_id, block in blocks.items()
        }
        workflow_edges = [WorkflowEdge.model_validate(edge) for edge in edges]
        workflow_loops = {
            loop_id: Loop.model_validate(loop) for loop_id, loop in (loops or {}).items()
        }

        serialized_blocks = [
            self._serialize_block(block, validate_required) for block in block_states.values()
        ]

        connections = []
        for edge in workflow_edges:
            for endpoint in (edge.source, edge.target):
                if endpoint not in block_states:
                    raise SerializationError(
                        f"Edge '{edge.id}' references unknown block '{endpoint}'"
                    )
            connections.append(
                SerializedConnection(
                    source=edge.source,
                    target=edge.target,
                    source_handle=edge.source_handle,
                    target_handle=edge.target_handle,
                )
            )

        for loop in workflow_loops.values():
            missing = [node for node in loop.nodes if node not in block_states]
            if missing:
                raise SerializationError(
                    f"Loop '{loop.id}' references unknown blocks: {', '.join(missing)}"
                )

        logger.debug(
            f"Serialized workflow with {len(serialized_blocks)} blocks, "
            f"{len(connections)} connections, {len(workflow_loops)} loops"
        )

        return SerializedWorkflow(
            version=SERIALIZED_VERSION,
            blocks=serialized_blocks,
            connections=connections,
            loops=workflow_loops,
        )

    def _serialize_block(self, block: BlockState, validate_required: bool) -> SerializedBlock:
        definition = get_block(block.type)
        if definition is None:
            raise SerializationError(f"Invalid block type: {block.type}")

        params = block.sub_block_values()

        if validate_required and block.enabled:
            missing = [name for name in definition.required if _is_missing(params.get(name))]
            if missing:
                raise SerializationError(
                    f"{block.name} is missing required fields: {', '.join(missing)}"
                )

        return SerializedBlock(
            id=block.id,
            position=block.position,
            config=BlockConfig(tool=definition.tool, params=params),
            inputs=dict(definition.inputs),
            outputs={**definition.outputs, **block.outputs},
            metadata=BlockMetadata(
                id=block.type,
                name=block.name,
                description=definition.description,
            ),
            enabled=block.enabled,
        )

    def deserialize_workflow(self, workflow: SerializedWorkflow) -> dict[str, Any]:
        """Rebuild editable state from a serialized workflow.

        Returns:
            A dict with `blocks`, `edges` and `loops`.
        """
        blocks: dict[str, BlockState] = {}
        for serialized in workflow.blocks:
            if get_block(serialized.block_type) is None:
                raise SerializationError(f"Invalid block type: {serialized.block_type}")

            blocks[serialized.id] = BlockState(
                id=serialized.id,
                type=serialized.block_type,
                name=serialized.display_name,
                position=serialized.position,
                enabled=serialized.enabled,
                sub_blocks={
                    key: SubBlockState(
                        id=key,
                        type=serialized.inputs.get(key, "short-input"),
                        value=value,
                    )
                    for key, value in serialized.config.params.items()
                },
            )

        edges = [
            WorkflowEdge(
                id=f"{connection.source}-{connection.target}",
                source=connection.source,
                target=connection.target,
                source_handle=connection.source_handle,
                target_handle=connection.target_handle,
            )
            for connection in workflow.connections
        ]

        return {"blocks": blocks, "edges": edges, "loops": dict(workflow.loops)}
