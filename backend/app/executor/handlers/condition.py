"""Handler for condition (branching) blocks."""

import json
import logging
from typing import Any

from app.executor.context import ExecutionContext
from app.executor.evaluator import ExpressionError, evaluate_expression, translate_operators
from app.executor.exceptions import BlockExecutionError
from app.executor.handlers.base import BlockHandler
from app.models import SerializedBlock

logger = logging.getLogger(__name__)

CONDITION_HANDLE_PREFIX = "condition-"


def parse_conditions(value: Any) -> list[dict[str, Any]]:
    """Parse the conditions param (a list, or its JSON text)."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise BlockExecutionError(f"Invalid conditions format: {e}") from e
    if not isinstance(value, list) or not value:
        raise BlockExecutionError("Conditions must be a non-empty list")
    for condition in value:
        if not isinstance(condition, dict) or "id" not in condition:
            raise BlockExecutionError("Each condition needs an id")
    return value


class ConditionBlockHandler(BlockHandler):
    """Evaluates conditions in order and selects the first branch that holds."""

    block_type = "condition"

    async def execute(
        self,
        block: SerializedBlock,
        inputs: dict[str, Any],
        context: ExecutionContext,
    ) -> dict[str, Any]:
        conditions = parse_conditions(inputs.get("conditions"))

        selected: dict[str, Any] | None = None
        for condition in conditions:
            title = str(condition.get("title", "")).strip().lower()
            if title == "else":
                selected = condition
                break

            expression = str(condition.get("value") or "").strip()
            if not expression:
                continue

            try:
                resolved = context.resolver.resolve_value(
                    translate_operators(expression), block, literal=True
                )
                result = evaluate_expression(resolved)
            except ExpressionError as e:
                raise BlockExecutionError(
                    f"Evaluation error in condition \"{condition.get('title', condition['id'])}\": {e}",
                    block_id=block.id,
                ) from e

            if result:
                selected = condition
                break

        if selected is None:
            raise BlockExecutionError(
                f"No matching condition in {block.display_name}", block_id=block.id
            )

        handle = f"{CONDITION_HANDLE_PREFIX}{selected['id']}"
        target_connection = next(
            (
                conn
                for conn in context.workflow.connections
                if conn.source == block.id and conn.source_handle == handle
            ),
            None,
        )
        if target_connection is None:
            raise BlockExecutionError(
                f"No target block found for condition {selected['id']}", block_id=block.id
            )
        target = next(b for b in context.workflow.blocks if b.id == target_connection.target)

        logger.debug(f"Condition block {block.id} selected {selected['id']} -> {target.id}")

        return {
            "content": self._upstream_content(block, context),
            "conditionResult": True,
            "selectedConditionId": selected["id"],
            "selectedPath": {
                "blockId": target.id,
                "blockType": target.block_type,
                "blockTitle": target.display_name,
            },
        }

    @staticmethod
    def _upstream_content(block: SerializedBlock, context: ExecutionContext) -> str:
        for conn in context.workflow.connections:
            if conn.target != block.id:
                continue
            output = context.block_output(conn.source)
            if isinstance(output, dict) and "content" in output:
                return str(output["content"])
        return ""
