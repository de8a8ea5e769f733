"""Tests for the workflow executor."""

import json

import httpx
import pytest

from app.executor import MAX_LOOP_ITERATIONS, Executor, WorkflowValidationError
from app.executor.handlers import AgentBlockHandler, ApiBlockHandler
from app.llm import ProviderResponse
from app.serializer import Serializer


def block(block_id, block_type, name=None, enabled=True, **params):
    return {
        "id": block_id,
        "type": block_type,
        "name": name or block_id,
        "enabled": enabled,
        "subBlocks": {
            key: {"id": key, "type": "short-input", "value": value} for key, value in params.items()
        },
    }


def edge(source, target, handle=None):
    return {"id": f"{source}-{target}", "source": source, "target": target, "sourceHandle": handle}


def serialize(blocks, edges, loops=None):
    return Serializer().serialize_workflow({b["id"]: b for b in blocks}, edges, loops)


class FakeLLM:
    """Records prompts and answers with a canned response."""

    def __init__(self, content="Hello from the model"):
        self.content = content
        self.calls = []
        self.api_keys = []

    def factory(self, api_key):
        self.api_keys.append(api_key)
        return self

    async def generate(self, messages, system=None, model="m", max_tokens=1024, temperature=0.7):
        self.calls.append({"messages": messages, "system": system, "model": model})
        return ProviderResponse(content=self.content, model=model, prompt_tokens=10, completion_tokens=5)


class FakeAPI:
    """httpx mock transport recording requests."""

    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.payload = payload if payload is not None else {"ok": True}
        self.requests = []
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request):
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.payload)

    @property
    def urls(self):
        return [str(request.url) for request in self.requests]


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def api():
    return FakeAPI()


def make_executor(workflow, llm, api, workflow_input=None, **kwargs):
    handlers = [AgentBlockHandler(client_factory=llm.factory), ApiBlockHandler(transport=api.transport)]
    return Executor(workflow, kwargs.pop("block_states", None), kwargs.pop("env", None),
                    workflow_input, kwargs.pop("variables", None), handlers=handlers)


class TestLinearExecution:
    """Tests for simple chains of blocks."""

    async def test_starter_to_agent(self, llm, api):
        """The agent sees the resolved input and its output becomes the result."""
        workflow = serialize(
            [
                block("start", "starter", "Start"),
                block("agent", "agent", "Writer", systemPrompt="Be brief",
                      context="Topic: <start.input.topic>", apiKey="sk-test"),
            ],
            [edge("start", "agent")],
        )
        body = {"topic": "otters"}

        result = await make_executor(workflow, llm, api, {**body, "input": body}).execute("wf-1")

        assert result.success
        assert result.error is None
        assert result.output["content"] == "Hello from the model"
        assert result.output["tokens"] == {"prompt": 10, "completion": 5, "total": 15}
        assert llm.calls[0]["messages"] == [{"role": "user", "content": "Topic: otters"}]
        assert llm.calls[0]["system"] == "Be brief"
        assert llm.api_keys == ["sk-test"]
        assert [log.block_id for log in result.logs] == ["start", "agent"]
        assert result.logs[1].input["apiKey"] == "***"
        assert result.metadata.start_time is not None
        assert result.metadata.duration >= 0

    async def test_env_vars_and_variables(self, llm, api):
        """Env vars and workflow variables are resolved in block params."""
        workflow = serialize(
            [
                block("start", "starter", "Start"),
                block("fetch", "api", "Fetch", url="https://api.test/<variable.path>",
                      headers={"Authorization": "Bearer {{TOKEN}}"}),
            ],
            [edge("start", "fetch")],
        )
        variables = {"v1": {"id": "v1", "name": "path", "type": "string", "value": "users"}}

        result = await make_executor(
            workflow, llm, api, {}, env={"TOKEN": "secret"}, variables=variables
        ).execute("wf-1")

        assert result.success
        assert api.urls == ["https://api.test/users"]
        assert api.requests[0].headers["Authorization"] == "Bearer secret"
        assert result.output["data"] == {"ok": True}
        assert result.output["status"] == 200

    async def test_block_state_overrides(self, llm, api):
        """Initial block states override the serialized params."""
        workflow = serialize(
            [block("start", "starter"), block("fetch", "api", url="https://api.test/old")],
            [edge("start", "fetch")],
        )

        await make_executor(
            workflow, llm, api, block_states={"fetch": {"url": "https://api.test/new"}}
        ).execute("wf-1")

        assert api.urls == ["https://api.test/new"]

    async def test_output_with_braces_passed_through(self, llm):
        """Template text in one block's output reaches the next block unchanged."""
        api = FakeAPI(payload={"msg": "Hello {{name}}"})
        workflow = serialize(
            [
                block("start", "starter"),
                block("fetch", "api", "Fetch", url="https://api.test/greeting"),
                block("agent", "agent", context="Summarize: <fetch.data.msg>", apiKey="sk"),
            ],
            [edge("start", "fetch"), edge("fetch", "agent")],
        )

        result = await make_executor(workflow, llm, api).execute("wf-1")

        assert result.success, result.error
        assert llm.calls[0]["messages"][0]["content"] == "Summarize: Hello {{name}}"

    async def test_secret_params_not_reparsed_and_masked(self, llm, api):
        """Env var values are substituted once and hidden from block logs."""
        workflow = serialize(
            [
                block("start", "starter"),
                block("fetch", "api", url="https://api.test/me",
                      headers={"Authorization": "Bearer {{TOKEN}}"}),
            ],
            [edge("start", "fetch")],
        )
        token = "p<nobody.field>ss{{x}}"
        block_states = {"fetch": {"url": "https://api.test/me",
                                  "headers": {"Authorization": f"Bearer {token}"}}}

        result = await make_executor(
            workflow, llm, api, {}, env={"TOKEN": token}, block_states=block_states
        ).execute("wf-1")

        assert result.success, result.error
        assert api.requests[0].headers["Authorization"] == f"Bearer {token}"
        fetch_log = result.logs[1]
        assert fetch_log.input["headers"] == "***"
        assert fetch_log.input["url"] == "https://api.test/me"

    async def test_response_format_merged_into_output(self, llm, api):
        """Structured agent responses expose their fields."""
        llm.content = '```json\n{"sentiment": "positive"}\n```'
        workflow = serialize(
            [
                block("start", "starter"),
                block("agent", "agent", context="Rate this", apiKey="sk",
                      responseFormat={"schema": {"type": "object"}}),
            ],
            [edge("start", "agent")],
        )

        result = await make_executor(workflow, llm, api).execute("wf-1")

        assert result.output["sentiment"] == "positive"
        assert "Respond only with JSON" in llm.calls[0]["system"]

    async def test_disabled_block_skipped(self, llm, api):
        workflow = serialize(
            [block("start", "starter"), block("fetch", "api", enabled=False, url="https://api.test")],
            [edge("start", "fetch")],
        )

        result = await make_executor(workflow, llm, api).execute("wf-1")

        assert result.success
        assert api.requests == []
        assert [log.block_id for log in result.logs] == ["start"]

    async def test_join_waits_for_all_branches(self, llm, api):
        """A block with two active parents runs once, after both."""
        workflow = serialize(
            [
                block("start", "starter"),
                block("a", "api", url="https://api.test/a"),
                block("b", "api", url="https://api.test/b"),
                block("c", "api", url="https://api.test/c"),
            ],
            [edge("start", "a"), edge("start", "b"), edge("a", "c"), edge("b", "c")],
        )

        result = await make_executor(workflow, llm, api).execute("wf-1")

        assert result.success
        assert sorted(api.urls[:2]) == ["https://api.test/a", "https://api.test/b"]
        assert api.urls[2:] == ["https://api.test/c"]


class TestFailures:
    """Tests for block failures and error paths."""

    async def test_failed_block_stops_run(self, llm):
        api = FakeAPI(status_code=500, payload={"message": "boom"})
        workflow = serialize(
            [
                block("start", "starter"),
                block("fetch", "api", "Fetch", url="https://api.test/x"),
                block("after", "api", url="https://api.test/after"),
            ],
            [edge("start", "fetch"), edge("fetch", "after")],
        )

        result = await make_executor(workflow, llm, api).execute("wf-1")

        assert not result.success
        assert result.error == "HTTP 500 Internal Server Error from https://api.test/x"
        assert api.urls == ["https://api.test/x"]
        failed = result.logs[-1]
        assert failed.block_id == "fetch"
        assert not failed.success
        assert failed.error == result.error

    async def test_error_handle_followed(self, llm):
        api = FakeAPI(status_code=404)
        workflow = serialize(
            [
                block("start", "starter"),
                block("fetch", "api", url="https://api.test/missing"),
                block("ok", "agent", context="fine", apiKey="sk"),
                block("recover", "agent", context="Recover from <fetch.error>", apiKey="sk"),
            ],
            [edge("start", "fetch"), edge("fetch", "ok"), edge("fetch", "recover", "error")],
        )

        result = await make_executor(workflow, llm, api).execute("wf-1")

        assert result.success
        assert [log.block_id for log in result.logs] == ["start", "fetch", "recover"]
        assert "HTTP 404" in llm.calls[0]["messages"][0]["content"]

    async def test_agent_requires_api_key(self, llm, api, monkeypatch):
        monkeypatch.delenv("SIM_HOSTED", raising=False)
        workflow = serialize(
            [block("start", "starter"), block("agent", "agent", context="hi")],
            [edge("start", "agent")],
        )

        result = await make_executor(workflow, llm, api).execute("wf-1")

        assert not result.success
        assert result.error == "API key is required for agent blocks"

    async def test_hosted_rotating_key(self, llm, api, monkeypatch):
        monkeypatch.setenv("SIM_HOSTED", "true")
        monkeypatch.setenv("ANTHROPIC_API_KEY_1", "hosted-key")
        monkeypatch.delenv("ANTHROPIC_API_KEY_2", raising=False)
        monkeypatch.delenv("ANTHROPIC_API_KEY_3", raising=False)
        workflow = serialize(
            [block("start", "starter"), block("agent", "agent", context="hi")],
            [edge("start", "agent")],
        )

        result = await make_executor(workflow, llm, api).execute("wf-1")

        assert result.success
        assert llm.api_keys == ["hosted-key"]

    async def test_unresolvable_reference_fails_block(self, llm, api):
        workflow = serialize(
            [block("start", "starter"), block("fetch", "api", url="https://api.test/<start.input.nope>")],
            [edge("start", "fetch")],
        )

        result = await make_executor(workflow, llm, api, {"input": {}}).execute("wf-1")

        assert not result.success
        assert 'No value found at path "input.nope"' in result.error


class TestConditions:
    """Tests for condition routing."""

    def _workflow(self):
        conditions = json.dumps(
            [
                {"id": "big", "title": "if", "value": "<start.input.count> > 5"},
                {"id": "small", "title": "else", "value": ""},
            ]
        )
        return serialize(
            [
                block("start", "starter"),
                block("check", "condition", "Check", conditions=conditions),
                block("big", "api", url="https://api.test/big"),
                block("small", "api", url="https://api.test/small"),
                block("done", "api", url="https://api.test/done"),
            ],
            [
                edge("start", "check"),
                edge("check", "big", "condition-big"),
                edge("check", "small", "condition-small"),
                edge("big", "done"),
                edge("small", "done"),
            ],
        )

    @pytest.mark.parametrize(
        "count,expected",
        [(7, "https://api.test/big"), (2, "https://api.test/small")],
    )
    async def test_only_selected_branch_runs(self, llm, api, count, expected):
        result = await make_executor(self._workflow(), llm, api, {"input": {"count": count}}).execute("wf-1")

        assert result.success
        assert api.urls == [expected, "https://api.test/done"]
        check = next(log for log in result.logs if log.block_id == "check")
        assert check.output["conditionResult"] is True
        assert check.output["selectedPath"]["blockId"] == expected.rsplit("/", 1)[1]

    async def test_condition_evaluation_error(self, llm, api):
        conditions = json.dumps([{"id": "c1", "title": "if", "value": "undefined_name > 1"}])
        workflow = serialize(
            [block("start", "starter"), block("check", "condition", conditions=conditions),
             block("next", "api", url="https://api.test")],
            [edge("start", "check"), edge("check", "next", "condition-c1")],
        )

        result = await make_executor(workflow, llm, api).execute("wf-1")

        assert not result.success
        assert "Evaluation error in condition" in result.error


class TestLoops:
    """Tests for for and forEach loops."""

    async def test_for_loop_repeats_blocks(self, llm, api):
        workflow = serialize(
            [
                block("start", "starter"),
                block("fetch", "api", url="https://api.test/page/<loop.index>"),
                block("after", "api", url="https://api.test/after"),
            ],
            [edge("start", "fetch"), edge("fetch", "after")],
            {"loop-1": {"id": "loop-1", "nodes": ["fetch"], "iterations": 3, "loopType": "for"}},
        )

        result = await make_executor(workflow, llm, api).execute("wf-1")

        assert result.success
        assert api.urls == [
            "https://api.test/page/0",
            "https://api.test/page/1",
            "https://api.test/page/2",
            "https://api.test/after",
        ]

    async def test_multi_block_loop_with_back_edge(self, llm, api):
        workflow = serialize(
            [
                block("start", "starter"),
                block("a", "api", url="https://api.test/a"),
                block("b", "api", url="https://api.test/b"),
            ],
            [edge("start", "a"), edge("a", "b"), edge("b", "a")],
            {"loop-1": {"id": "loop-1", "nodes": ["a", "b"], "iterations": 2}},
        )

        result = await make_executor(workflow, llm, api).execute("wf-1")

        assert result.success
        assert api.urls == ["https://api.test/a", "https://api.test/b"] * 2

    async def test_for_each_items(self, llm, api):
        workflow = serialize(
            [block("start", "starter"), block("fetch", "api", url="https://api.test/<loop.currentItem>")],
            [edge("start", "fetch")],
            {"loop-1": {"id": "loop-1", "nodes": ["fetch"], "loopType": "forEach",
                        "forEachItems": '["red", "blue"]'}},
        )

        result = await make_executor(workflow, llm, api).execute("wf-1")

        assert result.success
        assert api.urls == ["https://api.test/red", "https://api.test/blue"]

    async def test_for_each_over_reference(self, llm, api):
        """forEach items can come from another block's output."""
        workflow = serialize(
            [block("start", "starter"), block("fetch", "api", url="https://api.test/<loop.currentItem>")],
            [edge("start", "fetch")],
            {"loop-1": {"id": "loop-1", "nodes": ["fetch"], "loopType": "forEach",
                        "forEachItems": "<start.input.ids>"}},
        )

        result = await make_executor(workflow, llm, api, {"input": {"ids": [4, 5]}}).execute("wf-1")

        assert api.urls == ["https://api.test/4", "https://api.test/5"]

    async def test_for_each_capped_at_max_iterations(self, llm, api):
        workflow = serialize(
            [block("start", "starter"), block("fetch", "api", url="https://api.test/<loop.currentItem>")],
            [edge("start", "fetch")],
            {"loop-1": {"id": "loop-1", "nodes": ["fetch"], "loopType": "forEach",
                        "forEachItems": list(range(MAX_LOOP_ITERATIONS + 1))}},
        )

        result = await make_executor(workflow, llm, api).execute("wf-1")

        assert result.success
        assert len(api.requests) == MAX_LOOP_ITERATIONS
        assert api.urls[-1] == f"https://api.test/{MAX_LOOP_ITERATIONS - 1}"

    async def test_empty_for_each_skips_body(self, llm, api):
        workflow = serialize(
            [
                block("start", "starter"),
                block("fetch", "api", url="https://api.test/item"),
                block("after", "api", url="https://api.test/after"),
            ],
            [edge("start", "fetch"), edge("fetch", "after")],
            {"loop-1": {"id": "loop-1", "nodes": ["fetch"], "loopType": "forEach", "forEachItems": []}},
        )

        result = await make_executor(workflow, llm, api).execute("wf-1")

        assert result.success
        assert api.urls == ["https://api.test/after"]


class TestValidation:
    """Tests for workflow validation at construction."""

    def test_requires_starter(self):
        workflow = serialize([block("fetch", "api", url="https://api.test")], [])
        with pytest.raises(WorkflowValidationError, match="starter"):
            Executor(workflow)

    def test_single_starter(self):
        workflow = serialize([block("s1", "starter"), block("s2", "starter")], [])
        with pytest.raises(WorkflowValidationError, match="exactly one starter"):
            Executor(workflow)

    def test_starter_without_incoming(self):
        workflow = serialize(
            [block("start", "starter"), block("fetch", "api", url="https://api.test")],
            [edge("start", "fetch"), edge("fetch", "start")],
        )
        with pytest.raises(WorkflowValidationError, match="incoming"):
            Executor(workflow)

    def test_cycle_outside_loop(self):
        workflow = serialize(
            [block("start", "starter"), block("a", "api", url="x"), block("b", "api", url="y")],
            [edge("start", "a"), edge("a", "b"), edge("b", "a")],
        )
        with pytest.raises(WorkflowValidationError, match="cycle"):
            Executor(workflow)

    def test_loop_iteration_limit(self):
        workflow = serialize(
            [block("start", "starter"), block("a", "api", url="x")],
            [edge("start", "a")],
            {"loop-1": {"id": "loop-1", "nodes": ["a"], "iterations": 101}},
        )
        with pytest.raises(WorkflowValidationError, match="iterations"):
            Executor(workflow)

    def test_accepts_plain_dict(self):
        """The serialized workflow may be passed as its JSON form."""
        workflow = serialize([block("start", "starter")], [])
        executor = Executor(workflow.model_dump(by_alias=True))
        assert executor.workflow.blocks[0].id == "start"


class TestLimits:
    """Tests for execution depth limits."""

    async def test_max_layers(self, llm, api, monkeypatch):
        monkeypatch.setattr("app.executor.executor.MAX_LAYERS", 2)
        workflow = serialize(
            [
                block("start", "starter"),
                block("a", "api", url="https://api.test/a"),
                block("b", "api", url="https://api.test/b"),
            ],
            [edge("start", "a"), edge("a", "b")],
        )

        result = await make_executor(workflow, llm, api).execute("wf-1")

        assert not result.success
        assert result.error == "Maximum execution depth of 2 layers exceeded"
        assert api.urls == ["https://api.test/a"]
