"""Workflow helpers shared by the API routes."""

import json
import logging
import re
from collections.abc import Mapping
from typing import Any

from app.db import workflow_store
from app.models import BlockState, ExecutionTrigger

logger = logging.getLogger(__name__)

ENV_VAR_REFERENCE = re.compile(r"\{\{([^{}]+)\}\}")


class EnvironmentVariableError(Exception):
    """A sub-block value references an environment variable that is not set."""

    pass


def _substitute_env_vars(value: str, env_vars: Mapping[str, str]) -> str:
    def replace(match: re.Match[str]) -> str:
        name = match.group(1).strip()
        if name not in env_vars:
            raise EnvironmentVariableError(f'Environment variable "{name}" was not found')
        return env_vars[name]

    return ENV_VAR_REFERENCE.sub(replace, value)


def process_block_states(
    blocks: Mapping[str, BlockState], env_vars: Mapping[str, str]
) -> dict[str, dict[str, Any]]:
    """Collect each block's sub-block values ready for execution.

    `{{NAME}}` references in string values are replaced with the decrypted
    environment variable, and a JSON `responseFormat` is parsed.

    Raises:
        EnvironmentVariableError: If a referenced variable is not set.
    """
    processed: dict[str, dict[str, Any]] = {}
    for block_id, block in blocks.items():
        values: dict[str, Any] = {}
        for key, value in block.sub_block_values().items():
            if isinstance(value, str):
                value = _substitute_env_vars(value, env_vars)
            values[key] = value

        response_format = values.get("responseFormat")
        if isinstance(response_format, str) and response_format.strip():
            try:
                values["responseFormat"] = json.loads(response_format)
            except json.JSONDecodeError:
                logger.warning(f"Block {block_id} has a responseFormat that is not valid JSON")

        processed[block_id] = values
    return processed


async def update_workflow_run_counts(
    workflow_id: str, runs: int = 1, trigger: ExecutionTrigger = "api"
) -> None:
    """Increment the workflow's run count and its owner's trigger counters.

    Raises:
        ValueError: If the workflow does not exist or the trigger is unknown.
    """
    user_id = await workflow_store.increment_run_count(workflow_id, runs)
    if user_id is None:
        raise ValueError(f"Workflow {workflow_id} not found")

    await workflow_store.increment_user_stats(user_id, trigger, runs)
    logger.debug(f"Recorded {runs} {trigger} run(s) for workflow {workflow_id}")
