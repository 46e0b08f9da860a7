"""
KubernetesGoalScheduler - run goals as isolated Kubernetes Jobs.

When a deployment selects the kubernetes scheduler, goals are not executed
in the dispatcher process. Instead a Job is created from the dispatcher's own
pod, and the job picks the goal up through the GOALDISPATCH_* environment.

Failure semantics:
- No matching selector: scheduler not engaged, goal runs locally
- Running pod unreadable: SchedulingError, the goal fails
- Job name conflict: stale Job is deleted and the Job submitted again
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from goaldispatch.context import GoalInvocation
from goaldispatch.errors import JobConflictError, SchedulingError
from goaldispatch.schemas import GoalMessage
from goaldispatch.scheduling.environment import is_configured_in_env, is_isolated_goal
from goaldispatch.scheduling.job_spec import create_job_spec
from goaldispatch.scheduling.orchestrator import OrchestratorApi, current_namespace

logger = logging.getLogger(__name__)

SCHEDULER_NAMES = ("kubernetes", "kubernetes-all")


@dataclass(frozen=True)
class ScheduleResult:
    """
    Outcome of scheduling a goal.

    Attributes:
        job_name: Name of the submitted Job
        namespace: Namespace the Job was created in
        replaced: True if a stale Job with the same name was deleted first
    """
    job_name: str
    namespace: str
    replaced: bool = False

    @property
    def description(self) -> str:
        return f"Scheduled k8s job {self.namespace}:{self.job_name}"


def is_goal_relevant(goal: GoalMessage, registration_name: str) -> bool:
    """
    Check whether a goal is handled by this registration.

    A goal belongs to the registration fulfilling it. An isolated job of that
    registration runs under "<registration>-job-..." and handles its goals
    too.
    """
    registration = goal.fulfillment.registration if goal.fulfillment else None
    if not registration:
        return False
    return registration_name == registration or registration_name.startswith(f"{registration}-job-")


class KubernetesGoalScheduler:
    """
    Goal scheduler creating a Kubernetes Job per goal.

    Usage:
        scheduler = KubernetesGoalScheduler(KubernetesOrchestratorApi(), env=os.environ)
        if scheduler.supports(invocation):
            result = scheduler.schedule(invocation)
    """

    def __init__(
        self,
        api: OrchestratorApi,
        env: Optional[Mapping[str, str]] = None,
        pod_name: Optional[str] = None,
        namespace: Optional[str] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            api: Orchestrator API
            env: Environment snapshot; defaults to os.environ at construction
            pod_name: Running pod; defaults to $HOSTNAME
            namespace: Namespace for Jobs; defaults to the pod's namespace
        """
        self.api = api
        self.env = dict(os.environ if env is None else env)
        self.pod_name = pod_name or self.env.get("HOSTNAME")
        self.namespace = namespace or current_namespace()

    def supports(self, invocation: GoalInvocation) -> bool:
        """True if kubernetes scheduling is selected and this is not already an isolated goal."""
        return is_configured_in_env(self.env, *SCHEDULER_NAMES) and not is_isolated_goal(self.env)

    def read_pod_template(self) -> dict[str, Any]:
        """
        Read the running pod, the clone source for every Job.

        Raises:
            SchedulingError: If the pod cannot be read
        """
        if not self.pod_name:
            raise SchedulingError("Cannot determine the running pod name (set HOSTNAME or scheduler.pod_name)")
        return self.api.read_pod(self.pod_name, self.namespace)

    def schedule(self, invocation: GoalInvocation) -> ScheduleResult:
        """
        Submit the goal as a Kubernetes Job.

        Args:
            invocation: Goal to schedule

        Returns:
            ScheduleResult describing the submitted Job

        Raises:
            SchedulingError: If the pod cannot be read or the Job not created
        """
        goal = invocation.goal_event
        pod = self.read_pod_template()
        spec = create_job_spec(pod, self.namespace, invocation)
        job_name = spec["metadata"]["name"]

        replaced = False
        try:
            self.api.create_job(self.namespace, spec)
        except JobConflictError:
            logger.info(f"Job {self.namespace}:{job_name} already exists; replacing it")
            self.api.delete_job(job_name, self.namespace)
            self.api.create_job(self.namespace, spec)
            replaced = True

        logger.info(
            f"Scheduled goal {goal.unique_name} of goal set {goal.goal_set_id} "
            f"as job {self.namespace}:{job_name}"
        )
        return ScheduleResult(job_name=job_name, namespace=self.namespace, replaced=replaced)
