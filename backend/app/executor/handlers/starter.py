"""Handler for the starter block."""

from typing import Any

from app.executor.context import ExecutionContext
from app.executor.handlers.base import BlockHandler
from app.models import SerializedBlock


def starter_output(workflow_input: Any) -> dict[str, Any]:
    """Build the starter output: input fields plus the whole input under `input`."""
    if isinstance(workflow_input, dict):
        output = dict(workflow_input)
        output.setdefault("input", workflow_input)
        return output
    return {"input": workflow_input}


class StarterBlockHandler(BlockHandler):
    """Exposes the run input to downstream blocks."""

    block_type = "starter"

    def __init__(self, workflow_input: Any = None):
        self.workflow_input = {} if workflow_input is None else workflow_input

    async def execute(
        self,
        block: SerializedBlock,
        inputs: dict[str, Any],
        context: ExecutionContext,
    ) -> dict[str, Any]:
        return starter_output(self.workflow_input)
