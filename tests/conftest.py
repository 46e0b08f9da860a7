import copy

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from goaldispatch.config import (
    CacheConfig,
    DispatchConfig,
    GoalSigningConfig,
    GoalSigningKey,
    GoalVerificationKey,
)
from goaldispatch.context import DispatcherIdentity, ExecutionContext, GoalInvocation
from goaldispatch.messaging import InMemoryMessageClient
from goaldispatch.schemas import Fulfillment, GoalMessage, GoalState

PASSPHRASE = "123456"
KEY_NAME = "goaldispatch.io/test"


def _rsa_key_pair(passphrase: str) -> tuple[str, str]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.BestAvailableEncryption(passphrase.encode()),
    ).decode()
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


@pytest.fixture(scope="session")
def key_pair():
    """Passphrase protected RSA key pair (private PEM, public PEM)."""
    return _rsa_key_pair(PASSPHRASE)


@pytest.fixture(scope="session")
def other_key_pair():
    """A second, untrusted key pair."""
    return _rsa_key_pair(PASSPHRASE)


@pytest.fixture
def signing_config(key_pair):
    private_pem, public_pem = key_pair
    return GoalSigningConfig(
        enabled=True,
        signing_key=GoalSigningKey(name=KEY_NAME, private_key=private_pem, passphrase=PASSPHRASE),
        verification_keys=(GoalVerificationKey(name=KEY_NAME, public_key=public_pem),),
    )


SAMPLE_GOAL = {
    "environment": "0-code",
    "uniqueName": "build#goals.ts:42",
    "name": "build",
    "sha": "329f8ed3746d969233ef11c5cae72a3d9231a09d",
    "branch": "master",
    "fulfillment": {
        "method": "sdm",
        "name": "npm-run-build",
    },
    "description": "Building",
    "url": "https://delivery.example.com/logs/sdm-pack-node/329f8ed/0-code/build",
    "externalUrls": [],
    "state": "in_process",
    "phase": "npm compile",
    "externalKey": "sdm/0-code/build#goals.ts:42",
    "goalSet": "Build with Release",
    "goalSetId": "61d31727-3006-4979-b846-9f20d4e16cdd",
    "ts": 1550839105466,
    "retryFeasible": True,
    "preConditions": [
        {"environment": "0-code", "uniqueName": "autofix#goals.ts:41", "name": "autofix"},
        {"environment": "0-code", "uniqueName": "version#goals.ts:40", "name": "version"},
    ],
    "approval": None,
    "approvalRequired": False,
    "preApproval": None,
    "preApprovalRequired": False,
    "provenance": [
        {
            "registration": "@acme/delivery-job-61d3172-build",
            "version": "1.0.3-master.20190222122821",
            "name": "FulfillGoalOnRequested",
            "correlationId": "b14ac8be-43ce-4e68-b843-ec9e12449676",
            "ts": 1550839105466,
        },
        {
            "correlationId": "b14ac8be-43ce-4e68-b843-ec9e12449676",
            "registration": "@acme/delivery",
            "name": "SetGoalState",
            "version": "1.0.3-master.20190222122821",
            "ts": 1550839066508,
            "userId": None,
            "channelId": None,
        },
        {
            "correlationId": "fd6029dd-73f9-4941-8b64-c1591d58d9ec",
            "registration": "@acme/delivery",
            "name": "SetGoalsOnPush",
            "version": "1.0.3-master.20190221080543",
            "ts": 1550837810077,
            "userId": None,
            "channelId": None,
        },
    ],
    "data": None,
    "version": 17,
    "repo": {
        "name": "sdm-pack-node",
        "owner": "acme",
        "providerId": "zjlmxjzwhurspem",
    },
}


@pytest.fixture
def goal_dict():
    """Wire form of an in-process build goal."""
    return copy.deepcopy(SAMPLE_GOAL)


@pytest.fixture
def goal(goal_dict):
    return GoalMessage.from_dict(goal_dict)


@pytest.fixture
def requested_goal(goal):
    """Requested goal fulfilled by the test dispatcher."""
    return goal.advance(
        GoalState.REQUESTED,
        fulfillment=Fulfillment(method="sdm", name="npm-run-build", registration="@acme/delivery"),
    )


@pytest.fixture
def identity():
    return DispatcherIdentity(name="@acme/delivery", version="1.2.3")


@pytest.fixture
def message_client():
    return InMemoryMessageClient()


@pytest.fixture
def context(message_client):
    return ExecutionContext(
        workspace_id="AR05343M1LY",
        workspace_name="Odessey and Oracle",
        correlation_id="fedcba9876543210-0123456789abcdef-f9e8d7c6b5a43210",
        message_client=message_client,
    )


@pytest.fixture
def cache_enabled_config(tmp_path):
    return DispatchConfig(
        name="@acme/delivery",
        version="1.2.3",
        cache=CacheConfig(enabled=True, path=str(tmp_path / "cache")),
    )


@pytest.fixture
def make_invocation(context, identity):
    """Build a GoalInvocation for a goal and configuration."""
    def _make(goal_event, configuration=None):
        return GoalInvocation(
            goal_event=goal_event,
            context=context,
            identity=identity,
            configuration=configuration or DispatchConfig(name=identity.name, version=identity.version),
        )
    return _make


DEMO_POD = {
    "apiVersion": "v1",
    "kind": "Pod",
    "metadata": {
        "name": "demo-sdm-5b6c7d8f9-x2x4z",
        "namespace": "sdm",
        "labels": {"app.kubernetes.io/name": "demo-sdm"},
    },
    "spec": {
        "affinity": {
            "nodeAffinity": {
                "requiredDuringSchedulingIgnoredDuringExecution": {
                    "nodeSelectorTerms": [
                        {
                            "matchExpressions": [
                                {"key": "sandbox.gke.io/runtime", "operator": "In", "values": ["gvisor"]},
                            ],
                        },
                    ],
                },
            },
        },
        "containers": [
            {
                "name": "demo-sdm",
                "image": "acme/demo-sdm:1.0.0",
                "env": [
                    {"name": "NODE_ENV", "value": "production"},
                ],
                "volumeMounts": [
                    {"name": "secret", "mountPath": "/opt/secret", "readOnly": True},
                ],
            },
        ],
        "initContainers": [
            {"name": "git-config", "image": "acme/git:2.20"},
        ],
        "nodeName": "gke-node-1",
        "restartPolicy": "Always",
        "serviceAccountName": "demo-sdm",
        "tolerations": [
            {"key": "sandbox.gke.io/runtime", "operator": "Equal", "value": "gvisor", "effect": "NoSchedule"},
        ],
        "volumes": [
            {"name": "secret", "secret": {"secretName": "demo-sdm", "defaultMode": 288}},
        ],
    },
}


@pytest.fixture
def pod_template():
    """Running dispatcher pod in API JSON shape."""
    return copy.deepcopy(DEMO_POD)
