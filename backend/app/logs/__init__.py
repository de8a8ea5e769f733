"""Execution logging: trace spans and persisted log rows."""

from app.logs.execution_logger import persist_execution_error, persist_execution_logs
from app.logs.trace_spans import build_trace_spans

__all__ = ["build_trace_spans", "persist_execution_error", "persist_execution_logs"]
