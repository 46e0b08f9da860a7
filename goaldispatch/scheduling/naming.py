"""
Kubernetes Job naming for isolated goals.

Job names must be valid DNS names of at most 63 characters. They are a pure
function of the running pod and the goal, so a redelivered goal maps onto
the same Job and conflicts are detectable.
"""

import re
from typing import Any

from goaldispatch.schemas import GoalMessage

MAX_NAME_LENGTH = 63

_INVALID_CHARS = re.compile(r"[^a-z0-9.-]")
_TRAILING_INVALID = re.compile(r"[^a-z0-9]+$")


def first_container(pod_template: dict[str, Any]) -> dict[str, Any]:
    """First container of a pod in API JSON shape."""
    containers = (pod_template.get("spec") or {}).get("containers") or []
    if not containers:
        raise ValueError("Pod template has no containers")
    return containers[0]


def goal_name_segment(unique_name: str) -> str:
    """Unique name up to the first '#', lower-cased, restricted to [a-z0-9.-]."""
    return _INVALID_CHARS.sub("", unique_name.split("#", 1)[0].lower())


def k8s_job_name(pod_template: dict[str, Any], goal_event: GoalMessage) -> str:
    """
    Derive the Job name for a goal.

    Format: <container>-job-<goalSetId[:7]>-<goal name>, truncated to
    MAX_NAME_LENGTH with trailing non-alphanumeric characters removed.

    Example:
        container "wild-horses", goal set "abcdef0-123456789-abcdef",
        unique name "Sundown.ts#L74" -> "wild-horses-job-abcdef0-sundown.ts"
    """
    container = first_container(pod_template)["name"]
    name = f"{container}-job-{goal_event.goal_set_id[:7]}-{goal_name_segment(goal_event.unique_name)}"
    return _TRAILING_INVALID.sub("", name[:MAX_NAME_LENGTH])


def k8s_container_name(job_name: str) -> str:
    """
    Container name for a Job's goal container.

    Container names are DNS labels, so the dots a Job name may carry
    become dashes: "wild-horses-job-abcdef0-sundown.ts" -> "wild-horses-job-abcdef0-sundown-ts".
    """
    return _TRAILING_INVALID.sub("", job_name.replace(".", "-"))
