"""Workflow executor.

Runs a serialized workflow layer by layer. A block joins the active path when
an upstream block activates one of its incoming connections, and it runs once
every active upstream block it depends on has finished. Blocks of the same
layer run concurrently. Loops re-run their blocks until the configured
number of iterations (or items) is exhausted.
"""

import asyncio
import json
import logging
import time
from collections import defaultdict, deque
from datetime import UTC, datetime
from typing import Any

from app.executor.context import BlockRunState, ExecutionContext, LoopState
from app.executor.exceptions import ExecutorError, WorkflowValidationError
from app.executor.handlers import BlockHandler, default_handlers
from app.executor.handlers.condition import CONDITION_HANDLE_PREFIX
from app.executor.resolver import InputResolver, has_env_reference
from app.models import (
    BlockLog,
    ExecutionMetadata,
    ExecutionResult,
    Loop,
    SerializedBlock,
    SerializedConnection,
    SerializedWorkflow,
)

logger = logging.getLogger(__name__)

MAX_LOOP_ITERATIONS = 100
MAX_LAYERS = 1000

ERROR_HANDLE = "error"
MASKED_INPUTS = {"apiKey"}


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class Executor:
    """Executes a serialized workflow.

    Example:
        executor = Executor(workflow, block_states, env_vars, {"input": data}, variables)
        result = await executor.execute(workflow_id)
        if not result.success:
            print(result.error)
    """

    def __init__(
        self,
        workflow: SerializedWorkflow | dict[str, Any],
        initial_block_states: dict[str, Any] | None = None,
        environment_variables: dict[str, str] | None = None,
        workflow_input: Any = None,
        workflow_variables: dict[str, Any] | None = None,
        *,
        handlers: list[BlockHandler] | None = None,
    ):
        """Initialize and validate.

        Args:
            workflow: The serialized workflow.
            initial_block_states: Block ID to param overrides merged over the
                block's serialized params.
            environment_variables: Decrypted environment variables.
            workflow_input: Input exposed by the starter block.
            workflow_variables: Workflow variables keyed by variable ID.
            handlers: Handlers tried before the default ones.

        Raises:
            WorkflowValidationError: If the workflow cannot be executed.
        """
        self.workflow = (
            workflow
            if isinstance(workflow, SerializedWorkflow)
            else SerializedWorkflow.model_validate(workflow)
        )
        self.initial_block_states = initial_block_states or {}
        self.environment_variables = environment_variables or {}
        self.workflow_input = {} if workflow_input is None else workflow_input
        self.workflow_variables = workflow_variables or {}
        self._handlers = [*(handlers or []), *default_handlers(self.workflow_input)]

        self._blocks: dict[str, SerializedBlock] = {b.id: b for b in self.workflow.blocks}
        self._order = {b.id: i for i, b in enumerate(self.workflow.blocks)}
        self._incoming: dict[str, list[SerializedConnection]] = defaultdict(list)
        self._outgoing: dict[str, list[SerializedConnection]] = defaultdict(list)
        for conn in self.workflow.connections:
            self._incoming[conn.target].append(conn)
            self._outgoing[conn.source].append(conn)

        self._block_loops: dict[str, str] = {}
        for loop in self.workflow.loops.values():
            for node in loop.nodes:
                self._block_loops.setdefault(node, loop.id)
        self._loop_entries = {
            loop.id: self._entry_nodes(loop) for loop in self.workflow.loops.values()
        }

        self._validate()

    # ==================== Validation ====================

    def _validate(self) -> None:
        starters = [
            b for b in self.workflow.blocks if b.block_type == "starter" and b.enabled
        ]
        if not starters:
            raise WorkflowValidationError("Workflow must have an enabled starter block")
        if len(starters) > 1:
            raise WorkflowValidationError("Workflow must have exactly one starter block")
        self._starter = starters[0]

        if self._incoming.get(self._starter.id):
            raise WorkflowValidationError("Starter block cannot have incoming connections")

        for conn in self.workflow.connections:
            for endpoint in (conn.source, conn.target):
                if endpoint not in self._blocks:
                    raise WorkflowValidationError(
                        f"Connection references non-existent block: {endpoint}"
                    )

        for loop in self.workflow.loops.values():
            if not loop.nodes:
                raise WorkflowValidationError(f"Loop {loop.id} has no blocks")
            for node in loop.nodes:
                if node not in self._blocks:
                    raise WorkflowValidationError(
                        f"Loop {loop.id} references non-existent block: {node}"
                    )
            if not 1 <= loop.iterations <= MAX_LOOP_ITERATIONS:
                raise WorkflowValidationError(
                    f"Loop {loop.id} iterations must be between 1 and {MAX_LOOP_ITERATIONS}"
                )
            if loop.loop_type == "forEach" and loop.for_each_items in (None, ""):
                raise WorkflowValidationError(f"forEach loop {loop.id} needs items")

        self._check_acyclic()

    def _check_acyclic(self) -> None:
        """Reject cycles that are not loop back edges (Kahn's algorithm)."""
        in_degree = {block_id: 0 for block_id in self._blocks}
        adjacency: dict[str, list[str]] = defaultdict(list)
        for conn in self.workflow.connections:
            if self._is_back_edge(conn):
                continue
            adjacency[conn.source].append(conn.target)
            in_degree[conn.target] += 1

        queue = deque(block_id for block_id, degree in in_degree.items() if degree == 0)
        visited = 0
        while queue:
            current = queue.popleft()
            visited += 1
            for neighbor in adjacency[current]:
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    queue.append(neighbor)

        if visited != len(self._blocks):
            raise WorkflowValidationError("Workflow contains a cycle outside of a loop")

    # ==================== Graph Helpers ====================

    def _entry_nodes(self, loop: Loop) -> set[str]:
        members = set(loop.nodes)
        entries = {
            node
            for node in loop.nodes
            if any(conn.source not in members for conn in self._incoming.get(node, []))
        }
        return entries or {loop.nodes[0]}

    def _is_back_edge(self, conn: SerializedConnection) -> bool:
        loop_id = self._block_loops.get(conn.source)
        return (
            loop_id is not None
            and self._block_loops.get(conn.target) == loop_id
            and conn.target in self._loop_entries[loop_id]
        )

    def _pending_blocks(self, context: ExecutionContext) -> set[str]:
        """Blocks that may still run: active unexecuted blocks and their descendants."""
        frontier = [
            block_id
            for block_id in context.active_execution_path
            if block_id not in context.executed_blocks and self._blocks[block_id].enabled
        ]
        pending = set(frontier)
        while frontier:
            current = frontier.pop()
            for conn in self._outgoing.get(current, []):
                if self._is_back_edge(conn):
                    continue
                target = conn.target
                if target in pending or not self._blocks[target].enabled:
                    continue
                pending.add(target)
                frontier.append(target)
        return pending

    def _is_ready(self, block_id: str, context: ExecutionContext, pending: set[str]) -> bool:
        own_loop = self._block_loops.get(block_id)
        for conn in self._incoming.get(block_id, []):
            if self._is_back_edge(conn):
                continue
            source = conn.source
            if source not in context.executed_blocks:
                if source in pending:
                    return False
                continue
            source_loop = self._block_loops.get(source)
            if (
                source_loop is not None
                and source_loop != own_loop
                and not context.loop_states[source_loop].completed
            ):
                return False
        return True

    def _next_layer(self, context: ExecutionContext) -> list[SerializedBlock]:
        pending = self._pending_blocks(context)
        ready = [
            self._blocks[block_id]
            for block_id in context.active_execution_path
            if block_id not in context.executed_blocks
            and self._blocks[block_id].enabled
            and self._is_ready(block_id, context, pending)
        ]
        return sorted(ready, key=lambda block: self._order[block.id])

    def _activate_outgoing(
        self, block: SerializedBlock, context: ExecutionContext, success: bool
    ) -> None:
        selected_handle = None
        if block.block_type == "condition" and success:
            decision = context.condition_decisions.get(block.id)
            selected_handle = f"{CONDITION_HANDLE_PREFIX}{decision}"

        for conn in self._outgoing.get(block.id, []):
            if conn.source_handle == ERROR_HANDLE:
                if not success:
                    context.active_execution_path.add(conn.target)
                continue
            if not success:
                continue
            if selected_handle is not None and conn.source_handle != selected_handle:
                continue
            context.active_execution_path.add(conn.target)

    def _has_error_path(self, block_id: str) -> bool:
        return any(conn.source_handle == ERROR_HANDLE for conn in self._outgoing.get(block_id, []))

    # ==================== Loops ====================

    def _resolve_loop_items(self, loop: Loop, context: ExecutionContext) -> list[Any]:
        items = loop.for_each_items
        if isinstance(items, str):
            resolved = context.resolver.resolve_value(
                items, self._blocks[loop.nodes[0]]
            )
            if isinstance(resolved, str):
                try:
                    resolved = json.loads(resolved)
                except json.JSONDecodeError as e:
                    raise ExecutorError(f"forEach items of loop {loop.id} are not valid JSON") from e
            items = resolved
        if isinstance(items, dict):
            return [[key, value] for key, value in items.items()]
        if isinstance(items, list):
            return items
        raise ExecutorError(f"forEach items of loop {loop.id} must be a list or object")

    def _start_loop(self, loop: Loop, context: ExecutionContext) -> None:
        state = context.loop_states[loop.id]
        state.started = True
        if loop.loop_type == "forEach":
            state.items = self._resolve_loop_items(loop, context)
            state.max_iterations = min(len(state.items), MAX_LOOP_ITERATIONS)
        else:
            state.max_iterations = loop.iterations
        logger.debug(f"Loop {loop.id} starting with {state.max_iterations} iteration(s)")

        if state.max_iterations == 0:
            # Nothing to iterate: skip the body and continue after the loop
            state.completed = True
            for node in loop.nodes:
                context.block_states[node] = BlockRunState(output={}, executed=False)
                context.executed_blocks.add(node)
                context.active_execution_path.add(node)
                self._activate_outgoing(self._blocks[node], context, success=True)

    def _advance_loops(self, context: ExecutionContext) -> None:
        for loop in self.workflow.loops.values():
            state = context.loop_states[loop.id]
            if not state.started or state.completed:
                continue

            nodes = [node for node in loop.nodes if self._blocks[node].enabled]
            if any(
                node in context.active_execution_path and node not in context.executed_blocks
                for node in nodes
            ):
                continue

            state.results.append(
                {
                    node: context.block_output(node)
                    for node in nodes
                    if node in context.executed_blocks
                }
            )
            state.iteration += 1

            if state.iteration >= state.max_iterations:
                state.completed = True
                logger.debug(f"Loop {loop.id} completed after {state.iteration} iteration(s)")
                continue

            for node in loop.nodes:
                context.executed_blocks.discard(node)
                context.active_execution_path.discard(node)
                context.condition_decisions.pop(node, None)
            context.active_execution_path.update(self._loop_entries[loop.id])

    # ==================== Execution ====================

    def _handler_for(self, block: SerializedBlock) -> BlockHandler:
        for handler in self._handlers:
            if handler.can_handle(block):
                return handler
        raise ExecutorError(f"No handler for block type: {block.block_type}")

    async def _execute_block(self, block: SerializedBlock, context: ExecutionContext) -> BlockLog:
        started_at = _now_iso()
        start = time.perf_counter()
        inputs: dict[str, Any] = {}
        raw_params = block.config.params
        # Params carrying secrets: resolved from their raw form, masked in logs
        secret_keys = {key for key, value in raw_params.items() if has_env_reference(value)}

        try:
            overrides = self.initial_block_states.get(block.id)
            params = {**raw_params, **(overrides if isinstance(overrides, dict) else {})}
            # Overrides of these hold substituted secrets that must not be re-parsed
            params.update({key: raw_params[key] for key in secret_keys})
            inputs = context.resolver.resolve_inputs(block, params)
            output = await self._handler_for(block).execute(block, inputs, context)
            success, error = True, None
        except Exception as e:
            logger.warning(f"Block {block.display_name} ({block.id}) failed: {e}")
            output, success, error = {"error": str(e)}, False, str(e)

        duration = int((time.perf_counter() - start) * 1000)
        context.block_states[block.id] = BlockRunState(output=output, execution_time=duration)
        context.executed_blocks.add(block.id)
        if success and block.block_type == "condition":
            context.condition_decisions[block.id] = output["selectedConditionId"]

        return BlockLog(
            block_id=block.id,
            block_name=block.display_name,
            block_type=block.block_type,
            started_at=started_at,
            ended_at=_now_iso(),
            duration_ms=duration,
            success=success,
            output=output,
            error=error,
            input={
                k: "***" if (k in MASKED_INPUTS or k in secret_keys) and v else v
                for k, v in inputs.items()
            },
        )

    def _create_context(self, workflow_id: str) -> ExecutionContext:
        context = ExecutionContext(
            workflow_id=workflow_id,
            workflow=self.workflow,
            environment_variables=dict(self.environment_variables),
            workflow_variables=dict(self.workflow_variables),
            loop_states={loop_id: LoopState() for loop_id in self.workflow.loops},
        )
        context.resolver = InputResolver(self.workflow, context, self._block_loops)
        context.active_execution_path.add(self._starter.id)
        return context

    async def execute(self, workflow_id: str) -> ExecutionResult:
        """Execute the workflow.

        Block failures end the run with success=False unless the failed block
        has an error connection to follow.

        Args:
            workflow_id: ID of the workflow, used for logging.

        Returns:
            The execution result with output, block logs and timing.
        """
        start_time = _now_iso()
        start = time.perf_counter()
        context = self._create_context(workflow_id)
        error: str | None = None

        logger.info(f"Executing workflow {workflow_id} ({len(self._blocks)} blocks)")

        try:
            layers = 0
            while error is None:
                ready = self._next_layer(context)
                skipped_loop = False
                for block in list(ready):
                    loop_id = self._block_loops.get(block.id)
                    if loop_id and not context.loop_states[loop_id].started:
                        self._start_loop(self.workflow.loops[loop_id], context)
                    if loop_id and block.id in context.executed_blocks:
                        ready.remove(block)
                        skipped_loop = True
                if not ready:
                    if skipped_loop:
                        continue
                    break

                layers += 1
                if layers > MAX_LAYERS:
                    raise ExecutorError(f"Maximum execution depth of {MAX_LAYERS} layers exceeded")

                logs = await asyncio.gather(*(self._execute_block(b, context) for b in ready))

                for block, log in zip(ready, logs):
                    context.block_logs.append(log)
                    if log.success:
                        context.last_output = log.output
                    elif not self._has_error_path(block.id):
                        error = log.error
                    self._activate_outgoing(block, context, log.success)

                self._advance_loops(context)
        except ExecutorError as e:
            error = str(e)

        end_time = _now_iso()
        metadata = ExecutionMetadata(
            duration=int((time.perf_counter() - start) * 1000),
            start_time=start_time,
            end_time=end_time,
        )

        if error is not None:
            logger.info(f"Workflow {workflow_id} failed: {error}")
            return ExecutionResult(
                success=False,
                output={},
                error=error,
                logs=context.block_logs,
                metadata=metadata,
            )

        logger.info(f"Workflow {workflow_id} completed in {metadata.duration}ms")
        return ExecutionResult(
            success=True,
            output=context.last_output if context.last_output is not None else {},
            logs=context.block_logs,
            metadata=metadata,
        )
