"""Block handlers, one per block type."""

from typing import Any

from app.executor.handlers.agent import AgentBlockHandler
from app.executor.handlers.api import ApiBlockHandler
from app.executor.handlers.base import BlockHandler
from app.executor.handlers.condition import ConditionBlockHandler
from app.executor.handlers.starter import StarterBlockHandler


def default_handlers(workflow_input: Any = None) -> list[BlockHandler]:
    """Create the standard handler set for a run."""
    return [
        StarterBlockHandler(workflow_input),
        AgentBlockHandler(),
        ApiBlockHandler(),
        ConditionBlockHandler(),
    ]


__all__ = [
    "AgentBlockHandler",
    "ApiBlockHandler",
    "BlockHandler",
    "ConditionBlockHandler",
    "StarterBlockHandler",
    "default_handlers",
]
