"""WorkflowStore - Storage abstraction for workflows, environments and logs."""

import json
import secrets
import uuid
from datetime import datetime
from typing import Any

import aiosqlite

from app.db.database import get_db
from app.models import (
    DeploymentInfo,
    Workflow,
    WorkflowCreate,
    WorkflowLog,
    WorkflowState,
    WorkflowSummary,
)

# user_stats column bumped for each execution trigger
TRIGGER_STAT_COLUMNS = {
    "api": "total_api_calls",
    "manual": "total_manual_executions",
    "webhook": "total_webhook_triggers",
    "schedule": "total_scheduled_executions",
    "chat": "total_chat_executions",
}


def _generate_id() -> str:
    """Generate a unique ID."""
    return str(uuid.uuid4())


def _now() -> str:
    """Get current timestamp in ISO format."""
    return datetime.utcnow().isoformat()


def _generate_api_key() -> str:
    """Generate a workflow API key."""
    return f"sim_{secrets.token_urlsafe(24)}"


def _row_to_workflow(row: aiosqlite.Row) -> Workflow:
    return Workflow(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        description=row["description"],
        state=WorkflowState.model_validate_json(row["state_json"]),
        variables=json.loads(row["variables_json"]),
        is_deployed=bool(row["is_deployed"]),
        deployed_at=row["deployed_at"],
        api_key=row["api_key"],
        run_count=row["run_count"],
        last_run_at=row["last_run_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class WorkflowStore:
    """Storage abstraction for workflow operations."""

    # ==================== Workflows ====================

    async def create_workflow(self, workflow: WorkflowCreate) -> Workflow:
        """Create a new workflow."""
        db = await get_db()
        workflow_id = _generate_id()
        now = _now()

        variables = {
            key: variable.model_dump(by_alias=True)
            for key, variable in workflow.variables.items()
        }

        await db.execute(
            """
            INSERT INTO workflows (id, user_id, name, description, state_json, variables_json, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                workflow_id,
                workflow.user_id,
                workflow.name,
                workflow.description,
                workflow.state.model_dump_json(by_alias=True),
                json.dumps(variables),
                now,
                now,
            ),
        )
        await db.commit()

        return Workflow(
            id=workflow_id,
            user_id=workflow.user_id,
            name=workflow.name,
            description=workflow.description,
            state=workflow.state,
            variables=variables,
            created_at=now,
            updated_at=now,
        )

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        """Get a workflow by ID."""
        db = await get_db()
        cursor = await db.execute("SELECT * FROM workflows WHERE id = ?", (workflow_id,))
        row = await cursor.fetchone()

        if row is None:
            return None

        return _row_to_workflow(row)

    async def list_workflows(self, user_id: str | None = None) -> list[WorkflowSummary]:
        """List workflows, optionally only those owned by a user."""
        db = await get_db()
        query = "SELECT * FROM workflows"
        params: list[Any] = []
        if user_id:
            query += " WHERE user_id = ?"
            params.append(user_id)
        query += " ORDER BY updated_at DESC"

        cursor = await db.execute(query, params)
        rows = await cursor.fetchall()

        summaries = []
        for row in rows:
            state = json.loads(row["state_json"])
            summaries.append(
                WorkflowSummary(
                    id=row["id"],
                    user_id=row["user_id"],
                    name=row["name"],
                    description=row["description"],
                    block_count=len(state.get("blocks", {})),
                    is_deployed=bool(row["is_deployed"]),
                    run_count=row["run_count"],
                    last_run_at=row["last_run_at"],
                    created_at=row["created_at"],
                    updated_at=row["updated_at"],
                )
            )
        return summaries

    async def update_workflow_state(
        self, workflow_id: str, state: WorkflowState
    ) -> Workflow | None:
        """Replace the block graph of a workflow."""
        db = await get_db()
        cursor = await db.execute(
            "UPDATE workflows SET state_json = ?, updated_at = ? WHERE id = ?",
            (state.model_dump_json(by_alias=True), _now(), workflow_id),
        )
        await db.commit()

        if cursor.rowcount == 0:
            return None
        return await self.get_workflow(workflow_id)

    async def update_workflow_variables(
        self, workflow_id: str, variables: dict[str, Any]
    ) -> Workflow | None:
        """Replace the variables of a workflow."""
        db = await get_db()
        cursor = await db.execute(
            "UPDATE workflows SET variables_json = ?, updated_at = ? WHERE id = ?",
            (json.dumps(variables), _now(), workflow_id),
        )
        await db.commit()

        if cursor.rowcount == 0:
            return None
        return await self.get_workflow(workflow_id)

    async def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a workflow and its logs."""
        db = await get_db()
        cursor = await db.execute("DELETE FROM workflows WHERE id = ?", (workflow_id,))
        await db.commit()
        return cursor.rowcount > 0

    # ==================== Deployment ====================

    async def deploy_workflow(self, workflow_id: str) -> DeploymentInfo | None:
        """Mark a workflow as deployed, generating an API key if it has none."""
        workflow = await self.get_workflow(workflow_id)
        if workflow is None:
            return None

        db = await get_db()
        now = _now()
        api_key = workflow.api_key or _generate_api_key()

        await db.execute(
            """
            UPDATE workflows SET is_deployed = 1, deployed_at = ?, api_key = ?, updated_at = ?
            WHERE id = ?
            """,
            (now, api_key, now, workflow_id),
        )
        await db.commit()

        return DeploymentInfo(is_deployed=True, deployed_at=now, api_key=api_key)

    async def undeploy_workflow(self, workflow_id: str) -> DeploymentInfo | None:
        """Mark a workflow as not deployed. The API key is kept for redeploys."""
        db = await get_db()
        cursor = await db.execute(
            "UPDATE workflows SET is_deployed = 0, deployed_at = NULL, updated_at = ? WHERE id = ?",
            (_now(), workflow_id),
        )
        await db.commit()

        if cursor.rowcount == 0:
            return None
        return DeploymentInfo(is_deployed=False)

    # ==================== Run Bookkeeping ====================

    async def increment_run_count(self, workflow_id: str, runs: int = 1) -> str | None:
        """Add to a workflow's run count.

        Returns:
            The owning user ID, or None when the workflow does not exist.
        """
        db = await get_db()
        now = _now()
        cursor = await db.execute(
            "UPDATE workflows SET run_count = run_count + ?, last_run_at = ? WHERE id = ?",
            (runs, now, workflow_id),
        )
        if cursor.rowcount == 0:
            await db.commit()
            return None

        cursor = await db.execute("SELECT user_id FROM workflows WHERE id = ?", (workflow_id,))
        row = await cursor.fetchone()
        await db.commit()
        return row["user_id"]

    async def increment_user_stats(self, user_id: str, trigger: str, runs: int = 1) -> None:
        """Bump the per-trigger usage counter of a user."""
        column = TRIGGER_STAT_COLUMNS.get(trigger)
        if column is None:
            raise ValueError(f"Unknown execution trigger: {trigger}")

        db = await get_db()
        now = _now()
        await db.execute(
            "INSERT INTO user_stats (user_id, last_active) VALUES (?, ?) "
            "ON CONFLICT(user_id) DO NOTHING",
            (user_id, now),
        )
        await db.execute(
            f"UPDATE user_stats SET {column} = {column} + ?, last_active = ? WHERE user_id = ?",
            (runs, now, user_id),
        )
        await db.commit()

    async def get_user_stats(self, user_id: str) -> dict[str, Any] | None:
        """Get the usage counters of a user."""
        db = await get_db()
        cursor = await db.execute("SELECT * FROM user_stats WHERE user_id = ?", (user_id,))
        row = await cursor.fetchone()
        return dict(row) if row else None

    # ==================== Environment ====================

    async def get_environment(self, user_id: str) -> dict[str, str]:
        """Get a user's environment variables (values still encrypted)."""
        db = await get_db()
        cursor = await db.execute(
            "SELECT variables_json FROM environment WHERE user_id = ? LIMIT 1",
            (user_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return {}
        return json.loads(row["variables_json"])

    async def set_environment(self, user_id: str, variables: dict[str, str]) -> None:
        """Replace a user's environment variables (values already encrypted)."""
        db = await get_db()
        await db.execute(
            """
            INSERT INTO environment (id, user_id, variables_json, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                variables_json = excluded.variables_json,
                updated_at = excluded.updated_at
            """,
            (_generate_id(), user_id, json.dumps(variables), _now()),
        )
        await db.commit()

    # ==================== Logs ====================

    async def append_log(
        self,
        workflow_id: str,
        execution_id: str | None,
        level: str,
        message: str,
        trigger: str,
        duration: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> WorkflowLog:
        """Append an execution log row."""
        db = await get_db()
        log_id = _generate_id()
        now = _now()

        await db.execute(
            """
            INSERT INTO workflow_logs (id, workflow_id, execution_id, level, message, duration, trigger, metadata_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                log_id,
                workflow_id,
                execution_id,
                level,
                message,
                duration,
                trigger,
                json.dumps(metadata) if metadata is not None else None,
                now,
            ),
        )
        await db.commit()

        return WorkflowLog(
            id=log_id,
            workflow_id=workflow_id,
            execution_id=execution_id,
            level=level,
            message=message,
            duration=duration,
            trigger=trigger,
            created_at=now,
            metadata=metadata,
        )

    async def list_logs(
        self,
        workflow_id: str,
        execution_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[WorkflowLog], int]:
        """List logs of a workflow, newest first, with the total count."""
        db = await get_db()
        where = "workflow_id = ?"
        params: list[Any] = [workflow_id]
        if execution_id:
            where += " AND execution_id = ?"
            params.append(execution_id)

        cursor = await db.execute(f"SELECT COUNT(*) FROM workflow_logs WHERE {where}", params)
        total = (await cursor.fetchone())[0]

        # rowid breaks ties between rows written within the same timestamp
        cursor = await db.execute(
            f"""
            SELECT * FROM workflow_logs WHERE {where}
            ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?
            """,
            [*params, limit, offset],
        )
        rows = await cursor.fetchall()

        logs = [
            WorkflowLog(
                id=row["id"],
                workflow_id=row["workflow_id"],
                execution_id=row["execution_id"],
                level=row["level"],
                message=row["message"],
                duration=row["duration"],
                trigger=row["trigger"],
                created_at=row["created_at"],
                metadata=json.loads(row["metadata_json"]) if row["metadata_json"] else None,
            )
            for row in rows
        ]
        return logs, total


# Global instance
workflow_store = WorkflowStore()
