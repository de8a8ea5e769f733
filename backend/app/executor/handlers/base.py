"""Base interface for block handlers."""

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from app.executor.context import ExecutionContext
from app.models import SerializedBlock


class BlockHandler(ABC):
    """Executes one type of block.

    Handlers receive the block, its resolved inputs and the run context, and
    return the block output. They raise BlockExecutionError on failure.
    """

    block_type: ClassVar[str]

    def can_handle(self, block: SerializedBlock) -> bool:
        return block.block_type == self.block_type

    @abstractmethod
    async def execute(
        self,
        block: SerializedBlock,
        inputs: dict[str, Any],
        context: ExecutionContext,
    ) -> dict[str, Any]:
        """Run the block and return its output."""
        ...
