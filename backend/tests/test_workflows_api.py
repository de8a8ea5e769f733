"""Tests for workflow, deployment, log and environment routes."""

from app.db import workflow_store
from app.db.secrets import decrypt_secret

STATE = {
    "blocks": {
        "start": {"id": "start", "type": "starter", "name": "Start"},
        "fetch": {
            "id": "fetch",
            "type": "api",
            "name": "Fetch",
            "subBlocks": {"url": {"id": "url", "type": "short-input", "value": "https://api.test"}},
        },
    },
    "edges": [{"id": "e1", "source": "start", "target": "fetch"}],
}


async def _create(client, user_id="user-1", name="My Flow"):
    response = await client.post(
        "/api/workflows",
        json={"userId": user_id, "name": name, "description": "Demo", "state": STATE},
    )
    assert response.status_code == 201
    return response.json()


class TestWorkflowCrud:
    """Tests for workflow CRUD."""

    async def test_create_and_get(self, client):
        created = await _create(client)

        response = await client.get(f"/api/workflows/{created['id']}")

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "My Flow"
        assert data["userId"] == "user-1"
        assert data["isDeployed"] is False
        assert data["runCount"] == 0
        assert data["state"]["blocks"]["fetch"]["subBlocks"]["url"]["value"] == "https://api.test"

    async def test_create_rejects_unknown_block_type(self, client):
        state = {"blocks": {"x": {"id": "x", "type": "teleport", "name": "X"}}}

        response = await client.post("/api/workflows", json={"userId": "u", "name": "Bad", "state": state})

        assert response.status_code == 400
        assert "Invalid block type" in response.json()["detail"]

    async def test_list_filters_by_user(self, client):
        await _create(client, "user-1", "One")
        await _create(client, "user-2", "Two")

        response = await client.get("/api/workflows", params={"userId": "user-1"})

        assert response.status_code == 200
        summaries = response.json()
        assert [s["name"] for s in summaries] == ["One"]
        assert summaries[0]["blockCount"] == 2

    async def test_update_state_and_variables(self, client):
        created = await _create(client)
        new_state = {"blocks": {"start": STATE["blocks"]["start"]}, "edges": []}

        response = await client.put(f"/api/workflows/{created['id']}/state", json=new_state)
        assert response.status_code == 200
        assert list(response.json()["state"]["blocks"]) == ["start"]

        variables = {"v1": {"id": "v1", "name": "limit", "type": "number", "value": "5"}}
        response = await client.put(f"/api/workflows/{created['id']}/variables", json={"variables": variables})
        assert response.status_code == 200
        assert response.json()["variables"]["v1"]["name"] == "limit"

    async def test_delete(self, client):
        created = await _create(client)

        response = await client.delete(f"/api/workflows/{created['id']}")
        assert response.status_code == 204

        response = await client.get(f"/api/workflows/{created['id']}")
        assert response.status_code == 404

    async def test_missing_workflow(self, client):
        response = await client.put("/api/workflows/missing/state", json={"blocks": {}})
        assert response.status_code == 404


class TestDeployment:
    """Tests for deploy and undeploy."""

    async def test_deploy_generates_key(self, client):
        created = await _create(client)

        response = await client.post(f"/api/workflows/{created['id']}/deploy")

        assert response.status_code == 200
        data = response.json()
        assert data["isDeployed"] is True
        assert data["apiKey"].startswith("sim_")
        assert data["deployedAt"] is not None

    async def test_redeploy_keeps_key(self, client):
        created = await _create(client)
        first = (await client.post(f"/api/workflows/{created['id']}/deploy")).json()

        undeployed = await client.delete(f"/api/workflows/{created['id']}/deploy")
        assert undeployed.json()["isDeployed"] is False

        second = (await client.post(f"/api/workflows/{created['id']}/deploy")).json()
        assert second["apiKey"] == first["apiKey"]


class TestLogs:
    """Tests for listing execution logs."""

    async def test_logs_newest_first(self, client):
        created = await _create(client)
        for i in range(3):
            await workflow_store.append_log(created["id"], f"exec-{i}", "info", f"run {i}", "api")

        response = await client.get(f"/api/workflows/{created['id']}/logs", params={"limit": 2})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert [log["message"] for log in data["logs"]] == ["run 2", "run 1"]
        assert data["logs"][0]["executionId"] == "exec-2"

    async def test_logs_for_missing_workflow(self, client):
        response = await client.get("/api/workflows/missing/logs")
        assert response.status_code == 404


class TestEnvironment:
    """Tests for user environment variables."""

    async def test_values_stored_encrypted(self, client):
        response = await client.put(
            "/api/users/user-1/environment",
            json={"variables": {"OPENAI_API_KEY": "sk-123", "HOST": "example.com"}},
        )

        assert response.status_code == 200
        assert response.json() == {"variables": ["HOST", "OPENAI_API_KEY"]}
        stored = await workflow_store.get_environment("user-1")
        assert stored["OPENAI_API_KEY"] != "sk-123"
        assert decrypt_secret(stored["OPENAI_API_KEY"]) == "sk-123"

    async def test_get_returns_names_only(self, client):
        await client.put("/api/users/user-1/environment", json={"variables": {"TOKEN": "t"}})

        response = await client.get("/api/users/user-1/environment")

        assert response.json() == {"variables": ["TOKEN"]}
