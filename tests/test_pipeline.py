"""
End-to-end tests for the orchestration engine.
"""

import json

import pytest

from codecrew.agents.merger import NARRATIVE_PATH
from codecrew.cache.lexical import ResponseCache
from codecrew.cache.multi_tier import MultiTierCache
from codecrew.models import CacheTier, CheckResult, ExecutionMode, OrchestrationRequest, ReferenceMaterial
from codecrew.progress import ProgressReporter
from codecrew.quota.ledger import InMemoryQuotaStore, QuotaGuard
from codecrew.workflows.pipeline import OrchestrationEngine, fast_project_name
from codecrew.workflows.session import SessionHistory

from conftest import APP_TSX, FakeGateway, FakeSandbox, RecordingSink, fenced


LAYOUT_TSX = "export function Layout() {\n  return <main />;\n}"

PLAN = {
    "projectName": "todo-app",
    "summary": "A todo list with a card layout",
    "subTasks": [
        {"id": "task-1", "agent": "design", "description": "Design the UI", "dependencies": []},
        {"id": "task-2", "agent": "frontend", "description": "Build the React app", "dependencies": ["task-1"]},
    ],
    "parallelGroups": [["task-1"], ["task-2"]],
}


def planning_responder(prompt):
    if "project planner" in prompt:
        return json.dumps(PLAN)
    if "Lead reviewer" in prompt:
        return fenced("/Layout.tsx", LAYOUT_TSX)
    if "specialized design agent" in prompt:
        return "Card layout.\n" + fenced("/Layout.tsx", LAYOUT_TSX)
    return fenced("/App.tsx", APP_TSX)


def fast_request(text="build a todo list app", **kwargs):
    return OrchestrationRequest(text=text, mode=ExecutionMode.fast, **kwargs)


def make_cache(tracker):
    return MultiTierCache(lexical=ResponseCache(), background=tracker)


class FakeKnowledge:
    def __init__(self, material=None, error=None):
        self.material = material
        self.error = error
        self.queries = []

    async def retrieve(self, text):
        self.queries.append(text)
        if self.error is not None:
            raise self.error
        return self.material


class TestFastMode:
    """Test the single-call path."""

    @pytest.mark.asyncio
    async def test_one_call_and_files(self, tracker):
        gateway = FakeGateway([fenced("/App.tsx", APP_TSX)])
        engine = OrchestrationEngine(gateway, FakeSandbox(), cache=make_cache(tracker))

        result = await engine.orchestrate(fast_request())

        assert result.success is True
        assert result.files == {"/App.tsx": APP_TSX}
        assert result.mode is ExecutionMode.fast
        assert result.project_name == "build-a-todo"
        assert len(gateway.calls) == 1
        assert "project planner" not in gateway.prompts[0]
        assert [r.task_id for r in result.agent_results] == ["fast"]

    @pytest.mark.asyncio
    async def test_resubmission_is_served_from_cache(self, tracker):
        gateway = FakeGateway([fenced("/App.tsx", APP_TSX)])
        engine = OrchestrationEngine(gateway, FakeSandbox(), cache=make_cache(tracker))

        await engine.orchestrate(fast_request())
        second = await engine.orchestrate(fast_request())

        assert len(gateway.calls) == 1
        assert second.success is True
        assert second.cache_tier is CacheTier.lexical
        assert second.files == {"/App.tsx": APP_TSX}
        assert second.project_name == "build-a-todo"

    @pytest.mark.asyncio
    async def test_prose_only_output_becomes_narrative(self):
        gateway = FakeGateway(["Use a single component with local state."])
        result = await OrchestrationEngine(gateway, FakeSandbox()).orchestrate(fast_request())

        assert result.success is True
        assert list(result.files) == [NARRATIVE_PATH]

    @pytest.mark.asyncio
    async def test_empty_output_is_a_failure(self):
        result = await OrchestrationEngine(FakeGateway([""]), FakeSandbox()).orchestrate(fast_request())
        assert result.success is False
        assert result.files == {}

    @pytest.mark.asyncio
    async def test_quota_is_checked_under_fast_key(self, tracker):
        store = InMemoryQuotaStore()
        store.set_usage("user-1", "fast", count=20)
        gateway = FakeGateway([fenced("/App.tsx", APP_TSX)])
        engine = OrchestrationEngine(gateway, FakeSandbox(), quota_guard=QuotaGuard(store, background=tracker))

        result = await engine.orchestrate(fast_request(user_id="user-1"))

        assert result.success is False
        assert "Quota exceeded for fast" in result.summary
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_progress_milestones(self):
        sink = RecordingSink()
        gateway = FakeGateway([fenced("/App.tsx", APP_TSX)])
        await OrchestrationEngine(gateway, FakeSandbox()).orchestrate(fast_request(), progress=ProgressReporter(sink))

        assert [percent for percent, _ in sink.reports] == [5, 20, 80, 100]

    @pytest.mark.asyncio
    async def test_reference_is_included(self):
        gateway = FakeGateway([fenced("/App.tsx", APP_TSX)])
        knowledge = FakeKnowledge(ReferenceMaterial(best_practices=["Persist todos to localStorage"]))
        engine = OrchestrationEngine(gateway, FakeSandbox(), knowledge=knowledge)

        await engine.orchestrate(fast_request())
        assert "Persist todos to localStorage" in gateway.prompts[0]

    @pytest.mark.asyncio
    async def test_reference_failure_is_not_fatal(self):
        gateway = FakeGateway([fenced("/App.tsx", APP_TSX)])
        engine = OrchestrationEngine(gateway, FakeSandbox(), knowledge=FakeKnowledge(error=RuntimeError("down")))

        result = await engine.orchestrate(fast_request())
        assert result.success is True


class TestPlanningMode:
    """Test decompose, schedule, verify and merge."""

    @pytest.mark.asyncio
    async def test_end_to_end(self, tracker):
        gateway = FakeGateway(responder=planning_responder)
        sink = RecordingSink()
        engine = OrchestrationEngine(gateway, FakeSandbox([CheckResult(passed=True)]), cache=make_cache(tracker))

        result = await engine.orchestrate(
            OrchestrationRequest(text="Build a todo app with a card layout"),
            progress=ProgressReporter(sink),
        )

        assert result.success is True
        assert result.project_name == "todo-app"
        assert result.summary == "A todo list with a card layout"
        assert result.files == {"/Layout.tsx": LAYOUT_TSX, "/App.tsx": APP_TSX}
        assert [r.task_id for r in result.agent_results] == ["task-1", "task-2"]
        assert result.agent_results[1].verified is True
        assert result.mode is ExecutionMode.planning

        percents = [percent for percent, _ in sink.reports]
        assert percents[0] == 5
        assert percents[-1] == 100
        assert percents == sorted(percents)

    @pytest.mark.asyncio
    async def test_mode_argument_overrides_request(self):
        gateway = FakeGateway(responder=planning_responder)
        engine = OrchestrationEngine(gateway, FakeSandbox())

        result = await engine.orchestrate(fast_request(), mode=ExecutionMode.planning)
        assert result.mode is ExecutionMode.planning
        assert "project planner" in gateway.prompts[0]

    @pytest.mark.asyncio
    async def test_unparseable_plan_is_a_failed_result(self):
        engine = OrchestrationEngine(FakeGateway(["no plan today"]), FakeSandbox())
        result = await engine.orchestrate(OrchestrationRequest(text="Build a todo app"))

        assert result.success is False
        assert result.project_name == "error"
        assert result.summary

    @pytest.mark.asyncio
    async def test_gateway_failure_is_a_failed_result(self):
        engine = OrchestrationEngine(FakeGateway([RuntimeError("provider down")]), FakeSandbox())
        result = await engine.orchestrate(OrchestrationRequest(text="Build a todo app"))

        assert result.success is False
        assert result.summary == "provider down"

    @pytest.mark.asyncio
    async def test_quota_failure_keeps_partial_results(self, tracker):
        store = InMemoryQuotaStore()
        store.set_usage("user-1", "frontend", count=20)
        gateway = FakeGateway(responder=planning_responder)
        engine = OrchestrationEngine(gateway, FakeSandbox(), quota_guard=QuotaGuard(store, background=tracker))

        result = await engine.orchestrate(OrchestrationRequest(text="Build a todo app", user_id="user-1"))

        assert result.success is False
        assert "Quota exceeded for frontend" in result.summary
        assert [r.task_id for r in result.agent_results] == ["task-1"]

    @pytest.mark.asyncio
    async def test_all_subtasks_failing_is_a_failure(self):
        def respond(prompt):
            if "project planner" in prompt:
                return json.dumps(PLAN)
            return RuntimeError("provider down")

        result = await OrchestrationEngine(FakeGateway(responder=respond), FakeSandbox()).orchestrate(
            OrchestrationRequest(text="Build a todo app")
        )
        assert result.success is False
        assert all(not r.success for r in result.agent_results)


class TestSessionHistory:
    """Test conversation memory across requests."""

    @pytest.mark.asyncio
    async def test_later_request_sees_earlier_turn(self):
        gateway = FakeGateway([fenced("/App.tsx", APP_TSX)])
        engine = OrchestrationEngine(gateway, FakeSandbox())

        await engine.orchestrate(fast_request("build a todo list app", session_id="s1"))
        await engine.orchestrate(fast_request("add a dark mode toggle", session_id="s1"))

        assert "User: build a todo list app" not in gateway.prompts[0]
        assert "User: build a todo list app" in gateway.prompts[1]

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self):
        gateway = FakeGateway([fenced("/App.tsx", APP_TSX)])
        engine = OrchestrationEngine(gateway, FakeSandbox())

        await engine.orchestrate(fast_request("build a todo list app", session_id="s1"))
        await engine.orchestrate(fast_request("add a dark mode toggle", session_id="s2"))

        assert "PREVIOUS CONVERSATION" not in gateway.prompts[1]

    def test_history_keeps_last_turns(self):
        history = SessionHistory(max_turns=2)
        for i in range(3):
            history.append("s1", f"request {i}", f"summary {i}")

        rendered = history.render("s1")
        assert "request 0" not in rendered
        assert rendered.startswith("User: request 1\nResult: summary 1")

    def test_history_evicts_oldest_session(self):
        history = SessionHistory(max_sessions=2)
        history.append("a", "r", "s")
        history.append("b", "r", "s")
        history.append("a", "r2", "s2")
        history.append("c", "r", "s")

        assert len(history) == 2
        assert history.render("b") is None
        assert history.render("a") is not None

    def test_no_session_is_not_recorded(self):
        history = SessionHistory()
        history.append(None, "r", "s")
        assert len(history) == 0
        assert history.render(None) is None


class TestFastProjectName:
    """Test fast-mode project naming."""

    def test_first_three_words(self):
        assert fast_project_name("Build a Todo list app!") == "build-a-todo"

    def test_no_words(self):
        assert fast_project_name("!!!") == "fast-project"
