"""Tests for invocation context, push tests, listeners and messaging."""

import pytest
from goaldispatch.context import (
    ALL_PHASES,
    NO_OP_LISTENER,
    AnyPush,
    ExecutionContext,
    GoalLifecyclePhase,
    GoalProjectListener,
    Project,
    push_test,
)
from goaldispatch.messaging import InMemoryMessageClient, MessageClient, NoOpMessageClient


class TestProject:
    """Tests for Project.glob."""

    @pytest.fixture
    def project(self, tmp_path):
        (tmp_path / "src" / "lib").mkdir(parents=True)
        (tmp_path / "src" / "main.py").write_text("")
        (tmp_path / "src" / "lib" / "util.py").write_text("")
        (tmp_path / "README.md").write_text("")
        return Project(tmp_path)

    def test_recursive_glob(self, project):
        assert project.glob("src/**/*.py") == ["src/lib/util.py", "src/main.py"]

    def test_several_patterns_deduplicated(self, project):
        assert project.glob(["*.md", "README.md", "src/*.py"]) == ["README.md", "src/main.py"]

    def test_directories_excluded(self, project):
        assert project.glob("src/*") == ["src/main.py"]

    def test_no_match(self, project):
        assert project.glob("*.java") == []

    def test_accepts_string_path(self, tmp_path):
        assert Project(str(tmp_path)).base_dir == tmp_path


class TestPushTest:
    """Tests for PushTest."""

    def test_any_push(self, make_invocation, goal):
        assert AnyPush(make_invocation(goal))

    def test_predicate_receives_invocation_and_project(self, make_invocation, goal, tmp_path):
        seen = []
        test = push_test("Recording", lambda invocation, project: seen.append((invocation, project)) or True)
        invocation = make_invocation(goal)
        project = Project(tmp_path)

        assert test(invocation, project)
        assert seen == [(invocation, project)]

    def test_result_is_bool(self, make_invocation, goal):
        assert push_test("Truthy", lambda invocation, project: "yes")(make_invocation(goal)) is True


class TestGoalProjectListener:
    """Tests for GoalProjectListener.applies."""

    def test_phase_filter(self, make_invocation, goal):
        listener = GoalProjectListener(AnyPush, (GoalLifecyclePhase.AFTER,), lambda p, i, phase: None)
        invocation = make_invocation(goal)
        assert listener.applies(invocation, None, GoalLifecyclePhase.AFTER)
        assert not listener.applies(invocation, None, GoalLifecyclePhase.BEFORE)

    def test_push_test_filter(self, make_invocation, goal):
        never = push_test("Never", lambda invocation, project: False)
        listener = GoalProjectListener(never, ALL_PHASES, lambda p, i, phase: None)
        assert not listener.applies(make_invocation(goal), None, GoalLifecyclePhase.BEFORE)

    def test_no_op_listener(self, make_invocation, goal):
        invocation = make_invocation(goal)
        for phase in ALL_PHASES:
            assert NO_OP_LISTENER.applies(invocation, None, phase)
            assert NO_OP_LISTENER.action(None, invocation, phase) is None


class TestInvocation:
    """Tests for GoalInvocation."""

    def test_cache_scope_is_goal_set(self, make_invocation, goal):
        assert make_invocation(goal).cache_scope == goal.goal_set_id


class TestMessaging:
    """Tests for message clients."""

    def test_clients_implement_protocol(self):
        assert isinstance(NoOpMessageClient(), MessageClient)
        assert isinstance(InMemoryMessageClient(), MessageClient)

    def test_in_memory_records(self):
        client = InMemoryMessageClient()
        client.send({"uniqueName": "build"})
        assert client.sent == [{"uniqueName": "build"}]

    def test_no_op_drops(self):
        NoOpMessageClient().send({"uniqueName": "build"})

    def test_context_defaults_to_no_op_client(self):
        ctx = ExecutionContext(workspace_id="T1", correlation_id="c")
        assert isinstance(ctx.message_client, NoOpMessageClient)
        assert ctx.workspace_name is None
