"""Workflow API routes."""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from app.db import workflow_store
from app.models import (
    DeploymentInfo,
    Workflow,
    WorkflowCreate,
    WorkflowLog,
    WorkflowState,
    WorkflowSummary,
    WorkflowVariable,
)
from app.models.workflow import CamelModel
from app.serializer import SerializationError, Serializer

logger = logging.getLogger(__name__)

router = APIRouter()


class VariablesUpdate(BaseModel):
    """Request body replacing a workflow's variables."""

    variables: dict[str, WorkflowVariable]


class WorkflowLogsResponse(CamelModel):
    """A page of execution logs."""

    logs: list[WorkflowLog]
    total: int
    limit: int
    offset: int


# ==================== Workflow CRUD ====================


@router.get("/workflows", response_model=list[WorkflowSummary])
async def list_workflows(
    user_id: str | None = Query(None, alias="userId"),
) -> list[WorkflowSummary]:
    """List workflows, optionally filtered by owner."""
    return await workflow_store.list_workflows(user_id)


@router.post("/workflows", response_model=Workflow, status_code=201)
async def create_workflow(workflow: WorkflowCreate) -> Workflow:
    """Create a new workflow."""
    _check_serializable(workflow.state)
    created = await workflow_store.create_workflow(workflow)
    logger.info(f"Created workflow {created.id} for user {created.user_id}")
    return created


@router.get("/workflows/{workflow_id}", response_model=Workflow)
async def get_workflow(workflow_id: str) -> Workflow:
    """Get a workflow by ID."""
    workflow = await workflow_store.get_workflow(workflow_id)
    if workflow is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return workflow


@router.put("/workflows/{workflow_id}/state", response_model=Workflow)
async def update_workflow_state(workflow_id: str, state: WorkflowState) -> Workflow:
    """Replace the blocks, edges and loops of a workflow."""
    _check_serializable(state)
    workflow = await workflow_store.update_workflow_state(workflow_id, state)
    if workflow is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return workflow


@router.put("/workflows/{workflow_id}/variables", response_model=Workflow)
async def update_workflow_variables(workflow_id: str, update: VariablesUpdate) -> Workflow:
    """Replace the variables of a workflow."""
    variables: dict[str, Any] = {
        key: variable.model_dump(by_alias=True) for key, variable in update.variables.items()
    }
    workflow = await workflow_store.update_workflow_variables(workflow_id, variables)
    if workflow is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return workflow


@router.delete("/workflows/{workflow_id}", status_code=204)
async def delete_workflow(workflow_id: str) -> None:
    """Delete a workflow and its logs."""
    deleted = await workflow_store.delete_workflow(workflow_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Workflow not found")
    logger.info(f"Deleted workflow {workflow_id}")


def _check_serializable(state: WorkflowState) -> None:
    try:
        Serializer().serialize_workflow(state.blocks, state.edges, state.loops)
    except SerializationError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ==================== Deployment ====================


@router.post("/workflows/{workflow_id}/deploy", response_model=DeploymentInfo)
async def deploy_workflow(workflow_id: str) -> DeploymentInfo:
    """Deploy a workflow so it can be executed through the API."""
    info = await workflow_store.deploy_workflow(workflow_id)
    if info is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    logger.info(f"Deployed workflow {workflow_id}")
    return info


@router.delete("/workflows/{workflow_id}/deploy", response_model=DeploymentInfo)
async def undeploy_workflow(workflow_id: str) -> DeploymentInfo:
    """Stop serving a workflow through the API."""
    info = await workflow_store.undeploy_workflow(workflow_id)
    if info is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    logger.info(f"Undeployed workflow {workflow_id}")
    return info


# ==================== Logs ====================


@router.get("/workflows/{workflow_id}/logs", response_model=WorkflowLogsResponse)
async def list_workflow_logs(
    workflow_id: str,
    execution_id: str | None = Query(None, alias="executionId"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> WorkflowLogsResponse:
    """List execution logs of a workflow, newest first."""
    workflow = await workflow_store.get_workflow(workflow_id)
    if workflow is None:
        raise HTTPException(status_code=404, detail="Workflow not found")

    logs, total = await workflow_store.list_logs(workflow_id, execution_id, limit, offset)
    return WorkflowLogsResponse(logs=logs, total=total, limit=limit, offset=offset)
