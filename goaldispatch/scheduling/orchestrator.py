"""
Orchestrator API boundary for isolated goal scheduling.

The scheduler only needs three calls: read the running pod, create a Job and
delete a Job. They sit behind the OrchestratorApi protocol so that:
1. Scheduling logic has no Kubernetes client imports
2. Tests substitute InMemoryOrchestratorApi
3. Another orchestrator can be plugged in

All bodies are plain dicts in Kubernetes API JSON shape (camelCase).
"""

import logging
import threading
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from goaldispatch.errors import JobConflictError, SchedulingError

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_NAMESPACE = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")


def current_namespace(default: str = "default") -> str:
    """Namespace of the running pod, from the mounted service account."""
    try:
        namespace = SERVICE_ACCOUNT_NAMESPACE.read_text().strip()
    except OSError:
        return default
    return namespace or default


@runtime_checkable
class OrchestratorApi(Protocol):
    """Protocol for the orchestrator calls used by the scheduler."""

    def read_pod(self, name: str, namespace: str) -> dict[str, Any]:
        """
        Read a pod.

        Raises:
            SchedulingError: If the pod cannot be read
        """
        ...

    def create_job(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        """
        Create a Job.

        Raises:
            JobConflictError: If a Job with the same name exists
            SchedulingError: On any other failure
        """
        ...

    def delete_job(self, name: str, namespace: str) -> None:
        """
        Delete a Job and its pods.

        Raises:
            SchedulingError: If the Job cannot be deleted
        """
        ...


class KubernetesOrchestratorApi:
    """
    OrchestratorApi backed by the official kubernetes client.

    Uses in-cluster credentials when running in a pod, otherwise the local
    kubeconfig.
    """

    def __init__(self, api_client=None):
        from kubernetes import client, config

        if api_client is None:
            try:
                config.load_incluster_config()
            except config.ConfigException:
                config.load_kube_config()
            api_client = client.ApiClient()

        self._api_client = api_client
        self._core = client.CoreV1Api(api_client)
        self._batch = client.BatchV1Api(api_client)

    def read_pod(self, name: str, namespace: str) -> dict[str, Any]:
        from kubernetes.client.exceptions import ApiException

        try:
            pod = self._core.read_namespaced_pod(name=name, namespace=namespace)
        except ApiException as e:
            raise SchedulingError(f"Failed to read pod {namespace}/{name}: {e.status} {e.reason}") from e
        return self._api_client.sanitize_for_serialization(pod)

    def create_job(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        from kubernetes.client.exceptions import ApiException

        name = body["metadata"]["name"]
        try:
            job = self._batch.create_namespaced_job(namespace=namespace, body=body)
        except ApiException as e:
            if e.status == 409:
                raise JobConflictError(f"Job {namespace}/{name} already exists") from e
            raise SchedulingError(f"Failed to create job {namespace}/{name}: {e.status} {e.reason}") from e
        return self._api_client.sanitize_for_serialization(job)

    def delete_job(self, name: str, namespace: str) -> None:
        from kubernetes import client
        from kubernetes.client.exceptions import ApiException

        try:
            self._batch.delete_namespaced_job(
                name=name,
                namespace=namespace,
                body=client.V1DeleteOptions(propagation_policy="Background"),
            )
        except ApiException as e:
            if e.status == 404:
                return
            raise SchedulingError(f"Failed to delete job {namespace}/{name}: {e.status} {e.reason}") from e


class InMemoryOrchestratorApi:
    """
    In-memory OrchestratorApi for testing and dry runs.

    Pods are registered up front; created Jobs are kept by (namespace, name).
    """

    def __init__(self, pods: Optional[dict[tuple[str, str], dict[str, Any]]] = None):
        self._lock = threading.Lock()
        self.pods: dict[tuple[str, str], dict[str, Any]] = dict(pods or {})
        self.jobs: dict[tuple[str, str], dict[str, Any]] = {}
        self.deleted: list[tuple[str, str]] = []

    def read_pod(self, name: str, namespace: str) -> dict[str, Any]:
        with self._lock:
            pod = self.pods.get((namespace, name))
        if pod is None:
            raise SchedulingError(f"Failed to read pod {namespace}/{name}: not found")
        return pod

    def create_job(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        key = (namespace, body["metadata"]["name"])
        with self._lock:
            if key in self.jobs:
                raise JobConflictError(f"Job {key[0]}/{key[1]} already exists")
            self.jobs[key] = body
        return body

    def delete_job(self, name: str, namespace: str) -> None:
        with self._lock:
            self.jobs.pop((namespace, name), None)
            self.deleted.append((namespace, name))
