"""Persist execution results to the workflow log."""

import json
import logging
from typing import Any

from app.db import workflow_store
from app.logs.trace_spans import build_trace_spans
from app.models import BlockLog, ExecutionResult, ExecutionTrigger

logger = logging.getLogger(__name__)

MAX_SUMMARY_LENGTH = 200


def _trigger_label(trigger: str) -> str:
    return trigger[:1].upper() + trigger[1:]


def _summarize(value: Any) -> str:
    if isinstance(value, dict) and "content" in value:
        value = value["content"]
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    if len(text) > MAX_SUMMARY_LENGTH:
        return text[:MAX_SUMMARY_LENGTH] + "..."
    return text


def _block_message(log: BlockLog) -> str:
    detail = _summarize(log.output) if log.success else log.error
    return f"Block {log.block_name or log.block_id} ({log.block_type}): {detail}"


async def persist_execution_logs(
    workflow_id: str,
    execution_id: str,
    result: ExecutionResult,
    trigger: ExecutionTrigger,
) -> None:
    """Write a row per block log and a summary row with the trace spans."""
    try:
        for log in result.logs:
            await workflow_store.append_log(
                workflow_id,
                execution_id,
                level="info" if log.success else "error",
                message=_block_message(log),
                trigger=trigger,
                duration=f"{log.duration_ms}ms",
                metadata={"blockId": log.block_id, "blockType": log.block_type},
            )

        if result.trace_spans is not None:
            spans, total_duration = result.trace_spans, result.total_duration
        else:
            spans, total_duration = build_trace_spans(result)

        label = _trigger_label(trigger)
        if result.success:
            message = f"{label} execution completed successfully"
        else:
            message = f"{label} execution failed: {result.error}"

        await workflow_store.append_log(
            workflow_id,
            execution_id,
            level="info" if result.success else "error",
            message=message,
            trigger=trigger,
            duration=f"{total_duration}ms",
            metadata={
                "traceSpans": [span.model_dump(by_alias=True, mode="json") for span in spans],
                "totalDuration": total_duration,
            },
        )
    except Exception as e:
        logger.exception(f"Failed to persist execution logs for {workflow_id}: {e}")


async def persist_execution_error(
    workflow_id: str,
    execution_id: str,
    error: Exception | str,
    trigger: ExecutionTrigger,
) -> None:
    """Write a single error row for a run that could not complete."""
    try:
        await workflow_store.append_log(
            workflow_id,
            execution_id,
            level="error",
            message=f"{_trigger_label(trigger)} execution failed: {error}",
            trigger=trigger,
        )
    except Exception as e:
        logger.exception(f"Failed to persist execution error for {workflow_id}: {e}")
