"""User environment variable routes."""

import logging

from fastapi import APIRouter
from pydantic import BaseModel

from app.db import workflow_store
from app.db.secrets import encrypt_secret

logger = logging.getLogger(__name__)

router = APIRouter()


class EnvironmentUpdate(BaseModel):
    """Plain-text variables replacing a user's environment."""

    variables: dict[str, str]


class EnvironmentResponse(BaseModel):
    """Names of a user's environment variables. Values are never returned."""

    variables: list[str]


@router.get("/users/{user_id}/environment", response_model=EnvironmentResponse)
async def get_environment(user_id: str) -> EnvironmentResponse:
    """List the names of a user's environment variables."""
    variables = await workflow_store.get_environment(user_id)
    return EnvironmentResponse(variables=sorted(variables))


@router.put("/users/{user_id}/environment", response_model=EnvironmentResponse)
async def set_environment(user_id: str, update: EnvironmentUpdate) -> EnvironmentResponse:
    """Replace a user's environment variables, encrypting each value."""
    encrypted = {name: encrypt_secret(value) for name, value in update.variables.items()}
    await workflow_store.set_environment(user_id, encrypted)
    logger.info(f"Updated {len(encrypted)} environment variable(s) for user {user_id}")
    return EnvironmentResponse(variables=sorted(encrypted))
