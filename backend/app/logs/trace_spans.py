"""Build trace spans from the block logs of an execution."""

from typing import Any

from app.models import BlockLog, ExecutionResult, TraceSpan


def _child_spans(log: BlockLog, parent_id: str) -> list[TraceSpan]:
    output = log.output if isinstance(log.output, dict) else {}
    timing = output.get("providerTiming")
    if not isinstance(timing, dict):
        return []

    children = []
    for index, segment in enumerate(timing.get("timeSegments") or []):
        children.append(
            TraceSpan(
                id=f"{parent_id}-segment-{index}",
                name=segment.get("name") or segment.get("type", "segment"),
                type=segment.get("type", "model"),
                duration=int(segment.get("duration") or 0),
                start_time=segment.get("startTime", log.started_at),
                end_time=segment.get("endTime", log.ended_at),
                status="success" if log.success else "error",
            )
        )
    return children


def _span_for_log(log: BlockLog, index: int) -> TraceSpan:
    span_id = f"{log.block_id}-{index}"
    output: Any = log.output if log.success else {"error": log.error}

    span = TraceSpan(
        id=span_id,
        name=log.block_name or log.block_id,
        type=log.block_type or "block",
        duration=log.duration_ms,
        start_time=log.started_at,
        end_time=log.ended_at,
        status="success" if log.success else "error",
        block_id=log.block_id,
        input=log.input or None,
        output=output,
    )

    if log.block_type == "agent" and isinstance(log.output, dict):
        tokens = log.output.get("tokens")
        if isinstance(tokens, dict):
            span.tokens = tokens
        span.model = log.output.get("model")
        span.children = _child_spans(log, span_id)

    return span


def build_trace_spans(result: ExecutionResult) -> tuple[list[TraceSpan], int]:
    """Build one span per block log, ordered by start time.

    Returns:
        The spans and the total duration in milliseconds. The total is the
        run's duration when known, otherwise the sum of span durations.
    """
    spans = [_span_for_log(log, index) for index, log in enumerate(result.logs)]
    spans.sort(key=lambda span: span.start_time)

    total_duration = result.metadata.duration if result.metadata else 0
    if not total_duration:
        total_duration = sum(span.duration for span in spans)

    return spans, total_duration
