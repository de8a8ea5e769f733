"""Workflow execution routes (/workflows/{id}/execute)."""

import asyncio
import json
import logging
import uuid
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from app.api.errors import APIError, create_error_response
from app.api.middleware import validate_workflow_access
from app.config import EXECUTION_TIMEOUT_SECONDS
from app.db import workflow_store
from app.db.secrets import decrypt_variables
from app.executor import Executor
from app.logs import build_trace_spans, persist_execution_error, persist_execution_logs
from app.models import ExecutionResult, Workflow
from app.serializer import Serializer
from app.workflows import process_block_states, update_workflow_run_counts

logger = logging.getLogger(__name__)

router = APIRouter()

# Workflows currently executing in this process
_running_workflows: set[str] = set()


def build_workflow_input(body: Any) -> dict[str, Any]:
    """Expose the request body to the starter block, whole and field by field."""
    if isinstance(body, dict):
        return {**body, "input": body}
    return {"input": body}


async def execute_workflow(workflow: Workflow, execution_id: str, body: Any) -> ExecutionResult:
    """Run a stored workflow with the given input.

    Raises:
        APIError: If the workflow is already running.
    """
    if workflow.id in _running_workflows:
        logger.warning(f"[{execution_id}] Workflow {workflow.id} is already running")
        raise APIError("Workflow is already running", 409)

    _running_workflows.add(workflow.id)
    try:
        encrypted_env = await workflow_store.get_environment(workflow.user_id)
        decrypted_env = decrypt_variables(encrypted_env)

        state = workflow.state
        block_states = process_block_states(state.blocks, decrypted_env)
        serialized = Serializer().serialize_workflow(state.blocks, state.edges, state.loops)

        executor = Executor(
            serialized,
            block_states,
            decrypted_env,
            build_workflow_input(body),
            workflow.variables,
        )
        try:
            result = await asyncio.wait_for(
                executor.execute(workflow.id), timeout=EXECUTION_TIMEOUT_SECONDS
            )
        except TimeoutError as e:
            raise RuntimeError(
                f"Execution timed out after {EXECUTION_TIMEOUT_SECONDS:g} seconds"
            ) from e

        trace_spans, total_duration = build_trace_spans(result)
        result.trace_spans = trace_spans
        result.total_duration = total_duration

        if result.success:
            await update_workflow_run_counts(workflow.id)

        await persist_execution_logs(workflow.id, execution_id, result, "api")
        return result
    finally:
        _running_workflows.discard(workflow.id)


async def _run(workflow: Workflow, body: Any, execution_id: str) -> JSONResponse:
    try:
        result = await execute_workflow(workflow, execution_id, body)
    except APIError:
        raise
    except Exception as e:
        logger.exception(f"[{execution_id}] Error executing workflow {workflow.id}: {e}")
        await persist_execution_error(workflow.id, execution_id, e, "api")
        return create_error_response(str(e) or "Failed to execute workflow", 500)

    return JSONResponse(content=result.model_dump(by_alias=True, mode="json"))


@router.get("/workflows/{workflow_id}/execute")
async def execute_workflow_get(workflow_id: str, request: Request) -> JSONResponse:
    """Execute a deployed workflow without input."""
    execution_id = str(uuid.uuid4())
    logger.info(f"[{execution_id}] GET execution request for workflow {workflow_id}")

    validation = await validate_workflow_access(request, workflow_id)
    if validation.error:
        raise APIError(validation.error.message, validation.error.status)

    return await _run(validation.workflow, {}, execution_id)


@router.post("/workflows/{workflow_id}/execute")
async def execute_workflow_post(workflow_id: str, request: Request) -> JSONResponse:
    """Execute a deployed workflow with the JSON request body as input."""
    execution_id = str(uuid.uuid4())
    logger.info(f"[{execution_id}] POST execution request for workflow {workflow_id}")

    validation = await validate_workflow_access(request, workflow_id)
    if validation.error:
        raise APIError(validation.error.message, validation.error.status)

    raw_body = await request.body()
    body: Any = {}
    if raw_body.strip():
        try:
            body = json.loads(raw_body)
        except ValueError:
            raise APIError("Invalid JSON in request body", 400)

    return await _run(validation.workflow, body, execution_id)
