"""Tests for trace spans, execution log persistence and run counts."""

import pytest

from app.db import workflow_store
from app.logs import build_trace_spans, persist_execution_error, persist_execution_logs
from app.models import BlockLog, ExecutionMetadata, ExecutionResult, WorkflowCreate
from app.workflows import update_workflow_run_counts


def _result(success=True, duration=120):
    logs = [
        BlockLog(
            block_id="agent",
            block_name="Writer",
            block_type="agent",
            started_at="2026-01-01T00:00:00.200000+00:00",
            ended_at="2026-01-01T00:00:00.300000+00:00",
            duration_ms=100,
            success=True,
            output={
                "content": "Hi",
                "model": "claude-sonnet-4-5",
                "tokens": {"prompt": 3, "completion": 2, "total": 5},
                "providerTiming": {
                    "timeSegments": [
                        {
                            "type": "model",
                            "name": "claude-sonnet-4-5",
                            "startTime": "2026-01-01T00:00:00.210000+00:00",
                            "endTime": "2026-01-01T00:00:00.290000+00:00",
                            "duration": 80,
                        }
                    ]
                },
            },
        ),
        BlockLog(
            block_id="start",
            block_name="Start",
            block_type="starter",
            started_at="2026-01-01T00:00:00.100000+00:00",
            ended_at="2026-01-01T00:00:00.100000+00:00",
            duration_ms=0,
            success=True,
            output={"input": {}},
        ),
    ]
    if not success:
        logs.append(
            BlockLog(
                block_id="fetch",
                block_name="Fetch",
                block_type="api",
                started_at="2026-01-01T00:00:00.400000+00:00",
                ended_at="2026-01-01T00:00:00.450000+00:00",
                duration_ms=50,
                success=False,
                output={"error": "HTTP 500"},
                error="HTTP 500",
            )
        )
    return ExecutionResult(
        success=success,
        output={"content": "Hi"},
        error=None if success else "HTTP 500",
        logs=logs,
        metadata=ExecutionMetadata(duration=duration),
    )


class TestBuildTraceSpans:
    """Tests for build_trace_spans."""

    def test_spans_sorted_with_agent_details(self):
        spans, total = build_trace_spans(_result())

        assert [span.block_id for span in spans] == ["start", "agent"]
        assert total == 120
        agent = spans[1]
        assert agent.type == "agent"
        assert agent.tokens == {"prompt": 3, "completion": 2, "total": 5}
        assert agent.model == "claude-sonnet-4-5"
        assert len(agent.children) == 1
        assert agent.children[0].duration == 80

    def test_total_falls_back_to_span_sum(self):
        _, total = build_trace_spans(_result(duration=0))
        assert total == 100

    def test_failed_span(self):
        spans, _ = build_trace_spans(_result(success=False))
        failed = spans[-1]
        assert failed.status == "error"
        assert failed.output == {"error": "HTTP 500"}


async def _create_workflow():
    return await workflow_store.create_workflow(WorkflowCreate(user_id="user-1", name="Flow"))


class TestPersistExecutionLogs:
    """Tests for persisted execution logs."""

    async def test_block_rows_and_summary(self):
        workflow = await _create_workflow()

        await persist_execution_logs(workflow.id, "exec-1", _result(), "api")

        logs, total = await workflow_store.list_logs(workflow.id)
        assert total == 3
        summary = logs[0]
        assert summary.message == "Api execution completed successfully"
        assert summary.level == "info"
        assert summary.execution_id == "exec-1"
        assert summary.metadata["totalDuration"] == 120
        assert len(summary.metadata["traceSpans"]) == 2
        assert any(log.message == "Block Writer (agent): Hi" for log in logs)

    async def test_failed_run_summary(self):
        workflow = await _create_workflow()

        await persist_execution_logs(workflow.id, "exec-2", _result(success=False), "manual")

        logs, _ = await workflow_store.list_logs(workflow.id, execution_id="exec-2")
        assert logs[0].message == "Manual execution failed: HTTP 500"
        assert logs[0].level == "error"
        assert logs[1].message == "Block Fetch (api): HTTP 500"

    async def test_persist_error(self):
        workflow = await _create_workflow()

        await persist_execution_error(workflow.id, "exec-3", RuntimeError("kaboom"), "api")

        logs, total = await workflow_store.list_logs(workflow.id)
        assert total == 1
        assert logs[0].message == "Api execution failed: kaboom"
        assert logs[0].level == "error"

    async def test_persistence_failure_not_raised(self):
        """Log writes against a missing workflow are reported, not raised."""
        await persist_execution_error("missing-workflow", "exec-4", "boom", "api")


class TestUpdateRunCounts:
    """Tests for update_workflow_run_counts."""

    async def test_increments_counts_and_stats(self):
        workflow = await _create_workflow()

        await update_workflow_run_counts(workflow.id)
        await update_workflow_run_counts(workflow.id, runs=2)

        updated = await workflow_store.get_workflow(workflow.id)
        assert updated.run_count == 3
        assert updated.last_run_at is not None
        stats = await workflow_store.get_user_stats("user-1")
        assert stats["total_api_calls"] == 3

    async def test_trigger_column(self):
        workflow = await _create_workflow()

        await update_workflow_run_counts(workflow.id, trigger="webhook")

        stats = await workflow_store.get_user_stats("user-1")
        assert stats["total_webhook_triggers"] == 1
        assert stats["total_api_calls"] == 0

    async def test_unknown_workflow(self):
        with pytest.raises(ValueError, match="not found"):
            await update_workflow_run_counts("missing")
