"""Mutable state carried through a single workflow run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from app.models import BlockLog, SerializedWorkflow

if TYPE_CHECKING:
    from app.executor.resolver import InputResolver


@dataclass
class BlockRunState:
    """Latest output of a block in this run."""

    output: Any
    executed: bool = True
    execution_time: int = 0


@dataclass
class LoopState:
    """Progress of a loop in this run."""

    started: bool = False
    completed: bool = False
    iteration: int = 0
    max_iterations: int = 0
    items: list[Any] | None = None
    results: list[dict[str, Any]] = field(default_factory=list)

    @property
    def current_item(self) -> Any:
        if self.items is None or self.iteration >= len(self.items):
            return None
        return self.items[self.iteration]


@dataclass
class ExecutionContext:
    """Everything the executor and block handlers share during a run."""

    workflow_id: str
    workflow: SerializedWorkflow
    environment_variables: dict[str, str] = field(default_factory=dict)
    workflow_variables: dict[str, Any] = field(default_factory=dict)
    block_states: dict[str, BlockRunState] = field(default_factory=dict)
    block_logs: list[BlockLog] = field(default_factory=list)
    executed_blocks: set[str] = field(default_factory=set)
    active_execution_path: set[str] = field(default_factory=set)
    condition_decisions: dict[str, str] = field(default_factory=dict)
    loop_states: dict[str, LoopState] = field(default_factory=dict)
    resolver: InputResolver | None = None
    last_output: Any = None

    def block_output(self, block_id: str) -> Any:
        state = self.block_states.get(block_id)
        return state.output if state else None
