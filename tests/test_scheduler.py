"""Tests for KubernetesGoalScheduler and the orchestrator API boundary."""

import dataclasses
from unittest.mock import MagicMock, patch

import pytest
from goaldispatch.errors import JobConflictError, SchedulingError
from goaldispatch.schemas import Fulfillment
from goaldispatch.scheduling import (
    InMemoryOrchestratorApi,
    KubernetesGoalScheduler,
    KubernetesOrchestratorApi,
    OrchestratorApi,
    is_goal_relevant,
)
from goaldispatch.scheduling import orchestrator

K8S_ENV = {"GOALDISPATCH_GOAL_SCHEDULER": "kubernetes", "HOSTNAME": "demo-sdm-5b6c7d8f9-x2x4z"}


@pytest.fixture
def api(pod_template):
    return InMemoryOrchestratorApi(pods={("sdm", "demo-sdm-5b6c7d8f9-x2x4z"): pod_template})


@pytest.fixture
def scheduler(api):
    return KubernetesGoalScheduler(api, env=K8S_ENV, namespace="sdm")


class TestSupports:
    """Tests for KubernetesGoalScheduler.supports."""

    def test_selected(self, scheduler, make_invocation, goal):
        assert scheduler.supports(make_invocation(goal))

    def test_kubernetes_all_selected(self, api, make_invocation, goal):
        s = KubernetesGoalScheduler(api, env={"GOALDISPATCH_GOAL_LAUNCHER": '["kubernetes-all"]'}, namespace="sdm")
        assert s.supports(make_invocation(goal))

    def test_not_selected(self, api, make_invocation, goal):
        s = KubernetesGoalScheduler(api, env={"GOALDISPATCH_GOAL_SCHEDULER": "docker"}, namespace="sdm")
        assert not s.supports(make_invocation(goal))

    def test_not_supported_inside_isolated_goal(self, api, make_invocation, goal):
        env = dict(K8S_ENV, GOALDISPATCH_ISOLATED_GOAL="true")
        s = KubernetesGoalScheduler(api, env=env, namespace="sdm")
        assert not s.supports(make_invocation(goal))


class TestSchedule:
    """Tests for KubernetesGoalScheduler.schedule."""

    def test_creates_job(self, scheduler, api, make_invocation, goal):
        result = scheduler.schedule(make_invocation(goal))

        assert result.job_name == "demo-sdm-job-61d3172-build"
        assert result.namespace == "sdm"
        assert result.replaced is False
        assert result.description == "Scheduled k8s job sdm:demo-sdm-job-61d3172-build"
        job = api.jobs[("sdm", "demo-sdm-job-61d3172-build")]
        assert job["kind"] == "Job"
        assert job["metadata"]["labels"]["goaldispatch.io/workspace-id"] == "AR05343M1LY"

    def test_pod_name_defaults_to_hostname(self, scheduler):
        assert scheduler.pod_name == "demo-sdm-5b6c7d8f9-x2x4z"

    def test_replaces_conflicting_job(self, scheduler, api, make_invocation, goal):
        invocation = make_invocation(goal)
        scheduler.schedule(invocation)

        result = scheduler.schedule(invocation)

        assert result.replaced is True
        assert api.deleted == [("sdm", "demo-sdm-job-61d3172-build")]
        assert ("sdm", "demo-sdm-job-61d3172-build") in api.jobs

    def test_unreadable_pod(self, make_invocation, goal):
        s = KubernetesGoalScheduler(InMemoryOrchestratorApi(), env=K8S_ENV, namespace="sdm")
        with pytest.raises(SchedulingError, match="Failed to read pod"):
            s.schedule(make_invocation(goal))

    def test_unknown_pod_name(self, api, make_invocation, goal):
        s = KubernetesGoalScheduler(api, env={"GOALDISPATCH_GOAL_SCHEDULER": "kubernetes"}, namespace="sdm")
        with pytest.raises(SchedulingError, match="pod name"):
            s.schedule(make_invocation(goal))

    def test_create_failure_propagates(self, pod_template, make_invocation, goal):
        api = MagicMock()
        api.read_pod.return_value = pod_template
        api.create_job.side_effect = SchedulingError("quota exceeded")
        s = KubernetesGoalScheduler(api, env=K8S_ENV, namespace="sdm")
        with pytest.raises(SchedulingError, match="quota exceeded"):
            s.schedule(make_invocation(goal))
        api.delete_job.assert_not_called()

    def test_namespace_from_service_account(self, api, tmp_path, monkeypatch):
        ns_file = tmp_path / "namespace"
        ns_file.write_text("delivery\n")
        monkeypatch.setattr(orchestrator, "SERVICE_ACCOUNT_NAMESPACE", ns_file)
        assert KubernetesGoalScheduler(api, env=K8S_ENV).namespace == "delivery"

    def test_namespace_default(self, api, tmp_path, monkeypatch):
        monkeypatch.setattr(orchestrator, "SERVICE_ACCOUNT_NAMESPACE", tmp_path / "missing")
        assert KubernetesGoalScheduler(api, env=K8S_ENV).namespace == "default"


class TestIsGoalRelevant:
    """Tests for is_goal_relevant."""

    def _goal(self, goal, registration):
        return dataclasses.replace(
            goal, fulfillment=Fulfillment(method="sdm", name="npm-run-build", registration=registration),
        )

    def test_same_registration(self, goal):
        assert is_goal_relevant(self._goal(goal, "@acme/delivery"), "@acme/delivery")

    def test_isolated_job_of_registration(self, goal):
        assert is_goal_relevant(self._goal(goal, "@acme/delivery"), "@acme/delivery-job-61d3172-build")

    def test_other_registration(self, goal):
        assert not is_goal_relevant(self._goal(goal, "@acme/delivery"), "@acme/other")

    def test_prefix_is_not_enough(self, goal):
        assert not is_goal_relevant(self._goal(goal, "@acme/delivery"), "@acme/delivery-staging")

    def test_no_fulfillment_registration(self, goal):
        assert not is_goal_relevant(goal, "@acme/delivery")


class TestInMemoryOrchestratorApi:
    """Tests for the in-memory orchestrator."""

    def test_implements_protocol(self):
        assert isinstance(InMemoryOrchestratorApi(), OrchestratorApi)

    def test_conflict(self):
        api = InMemoryOrchestratorApi()
        body = {"metadata": {"name": "job-1"}}
        api.create_job("sdm", body)
        with pytest.raises(JobConflictError):
            api.create_job("sdm", body)


class TestKubernetesOrchestratorApi:
    """Tests for the kubernetes client adapter, with the client mocked."""

    @pytest.fixture
    def k8s(self):
        with patch("kubernetes.client.CoreV1Api") as core, patch("kubernetes.client.BatchV1Api") as batch:
            api_client = MagicMock()
            api_client.sanitize_for_serialization.side_effect = lambda obj: {"serialized": obj}
            yield KubernetesOrchestratorApi(api_client=api_client), core.return_value, batch.return_value

    def test_implements_protocol(self, k8s):
        api, _, _ = k8s
        assert isinstance(api, OrchestratorApi)

    def test_read_pod(self, k8s):
        api, core, _ = k8s
        core.read_namespaced_pod.return_value = "pod"
        assert api.read_pod("p", "sdm") == {"serialized": "pod"}
        core.read_namespaced_pod.assert_called_once_with(name="p", namespace="sdm")

    def test_read_pod_failure(self, k8s):
        from kubernetes.client.exceptions import ApiException

        api, core, _ = k8s
        core.read_namespaced_pod.side_effect = ApiException(status=403, reason="Forbidden")
        with pytest.raises(SchedulingError, match="403"):
            api.read_pod("p", "sdm")

    def test_create_conflict(self, k8s):
        from kubernetes.client.exceptions import ApiException

        api, _, batch = k8s
        batch.create_namespaced_job.side_effect = ApiException(status=409, reason="Conflict")
        with pytest.raises(JobConflictError):
            api.create_job("sdm", {"metadata": {"name": "job-1"}})

    def test_create_failure(self, k8s):
        from kubernetes.client.exceptions import ApiException

        api, _, batch = k8s
        batch.create_namespaced_job.side_effect = ApiException(status=422, reason="Invalid")
        with pytest.raises(SchedulingError) as exc_info:
            api.create_job("sdm", {"metadata": {"name": "job-1"}})
        assert not isinstance(exc_info.value, JobConflictError)

    def test_delete_missing_job_is_ignored(self, k8s):
        from kubernetes.client.exceptions import ApiException

        api, _, batch = k8s
        batch.delete_namespaced_job.side_effect = ApiException(status=404, reason="Not Found")
        api.delete_job("job-1", "sdm")
