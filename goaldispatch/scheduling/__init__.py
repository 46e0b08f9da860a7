"""Isolated goal scheduling on Kubernetes."""

from goaldispatch.scheduling.environment import (
    ISOLATED_GOAL_VARIABLE,
    SELECTOR_VARIABLES,
    configured_selectors,
    is_configured_in_env,
    is_isolated_goal,
)
from goaldispatch.scheduling.job_spec import create_job_spec, k8s_job_env
from goaldispatch.scheduling.naming import MAX_NAME_LENGTH, k8s_container_name, k8s_job_name
from goaldispatch.scheduling.orchestrator import (
    InMemoryOrchestratorApi,
    KubernetesOrchestratorApi,
    OrchestratorApi,
)
from goaldispatch.scheduling.scheduler import (
    KubernetesGoalScheduler,
    ScheduleResult,
    is_goal_relevant,
)

__all__ = [
    "ISOLATED_GOAL_VARIABLE",
    "InMemoryOrchestratorApi",
    "KubernetesGoalScheduler",
    "KubernetesOrchestratorApi",
    "MAX_NAME_LENGTH",
    "OrchestratorApi",
    "SELECTOR_VARIABLES",
    "ScheduleResult",
    "configured_selectors",
    "create_job_spec",
    "is_configured_in_env",
    "is_goal_relevant",
    "is_isolated_goal",
    "k8s_container_name",
    "k8s_job_env",
    "k8s_job_name",
]
