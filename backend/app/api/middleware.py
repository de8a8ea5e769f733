"""Access validation for workflow API routes."""

import logging
import secrets

from fastapi import Request
from pydantic import BaseModel

from app.db import workflow_store
from app.models import Workflow

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"


class ValidationError(BaseModel):
    """Why access to a workflow was refused."""

    message: str
    status: int


class ValidationResult(BaseModel):
    """Outcome of an access check: the workflow, or an error."""

    workflow: Workflow | None = None
    error: ValidationError | None = None


async def validate_workflow_access(
    request: Request,
    workflow_id: str,
    require_deployment: bool = True,
) -> ValidationResult:
    """Check that a workflow exists and that the caller may run it.

    When deployment is required, the workflow must be deployed and the
    request must carry its API key in the `X-API-Key` header.
    """
    workflow = await workflow_store.get_workflow(workflow_id)
    if workflow is None:
        return ValidationResult(error=ValidationError(message="Workflow not found", status=404))

    if require_deployment:
        if not workflow.is_deployed:
            return ValidationResult(
                error=ValidationError(message="Workflow is not deployed", status=403)
            )

        provided = request.headers.get(API_KEY_HEADER)
        if (
            not provided
            or not workflow.api_key
            or not secrets.compare_digest(provided, workflow.api_key)
        ):
            logger.info(f"Rejected execution of {workflow_id}: invalid API key")
            return ValidationResult(error=ValidationError(message="Unauthorized", status=401))

    return ValidationResult(workflow=workflow)
