"""
Goal message schemas - the state of one goal instance on the event bus.

A GoalMessage is the canonical state of a goal: identity, commit reference,
lifecycle state, preconditions, version counter and provenance log.
A SignedGoalMessage wraps it with the detached signature envelope.

Wire format is camelCase JSON, matching what producers publish:

    {
        "uniqueName": "build#goals.py:42",
        "environment": "0-code",
        "name": "build",
        "state": "in_process",
        "version": 17,
        "goalSetId": "61d31727-3006-4979-b846-9f20d4e16cdd",
        ...
        "signature": "<base64>",        # SignedGoalMessage only
        "signerName": "acme.com/sdm",   # SignedGoalMessage only
    }

Keys the schema does not know (for example "push", attached downstream by
enrichment) are kept in GoalMessage.extras so a round trip is lossless.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional


class GoalState(str, Enum):
    """Lifecycle state of a goal."""
    PLANNED = "planned"
    REQUESTED = "requested"
    IN_PROCESS = "in_process"
    SUCCESS = "success"
    FAILURE = "failure"
    WAITING_FOR_APPROVAL = "waiting_for_approval"
    APPROVED = "approved"
    WAITING_FOR_PRE_APPROVAL = "waiting_for_pre_approval"
    PRE_APPROVED = "pre_approved"
    STOPPED = "stopped"
    CANCELED = "canceled"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        """True when no further transition is expected."""
        return self in (
            GoalState.SUCCESS,
            GoalState.FAILURE,
            GoalState.STOPPED,
            GoalState.CANCELED,
            GoalState.SKIPPED,
        )


@dataclass(frozen=True)
class GoalKey:
    """Reference to another goal, used for preconditions."""
    environment: str
    unique_name: str
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "environment": self.environment,
            "uniqueName": self.unique_name,
            "name": self.name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GoalKey":
        return cls(
            environment=data["environment"],
            unique_name=data["uniqueName"],
            name=data["name"],
        )


@dataclass(frozen=True)
class RepoRef:
    """Repository the goal's commit belongs to."""
    name: str
    owner: str
    provider_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "owner": self.owner,
            "providerId": self.provider_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RepoRef":
        return cls(
            name=data["name"],
            owner=data["owner"],
            provider_id=data.get("providerId"),
        )


@dataclass(frozen=True)
class Provenance:
    """
    One entry of the append-only provenance log.

    Attributes:
        registration: Name of the dispatching process that touched the goal
        version: Version of that process
        name: Processing stage (e.g. "FulfillGoalOnRequested")
        correlation_id: Correlation id of the triggering event
        ts: Milliseconds since the epoch
        user_id: Chat user that triggered the change, if any
        channel_id: Chat channel that triggered the change, if any
    """
    registration: str
    version: str
    name: str
    correlation_id: str
    ts: int
    user_id: Optional[str] = None
    channel_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "registration": self.registration,
            "version": self.version,
            "name": self.name,
            "correlationId": self.correlation_id,
            "ts": self.ts,
            "userId": self.user_id,
            "channelId": self.channel_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Provenance":
        return cls(
            registration=data["registration"],
            version=data["version"],
            name=data["name"],
            correlation_id=data["correlationId"],
            ts=data["ts"],
            user_id=data.get("userId"),
            channel_id=data.get("channelId"),
        )


@dataclass(frozen=True)
class Fulfillment:
    """How, and by which registration, a goal gets fulfilled."""
    method: str
    name: str
    registration: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method,
            "name": self.name,
            "registration": self.registration,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Fulfillment":
        return cls(
            method=data["method"],
            name=data["name"],
            registration=data.get("registration"),
        )


@dataclass(frozen=True)
class ExternalUrl:
    """Link recorded against a goal (build log, deployed endpoint)."""
    url: str
    label: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "url": self.url}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExternalUrl":
        return cls(url=data["url"], label=data.get("label"))


# Wire keys of GoalMessage. Anything else lands in extras.
_KNOWN_KEYS = frozenset({
    "uniqueName", "environment", "name", "sha", "branch", "state",
    "preConditions", "version", "provenance", "goalSetId", "goalSet",
    "repo", "id", "fulfillment", "description", "url", "externalUrls",
    "phase", "externalKey", "ts", "retryFeasible", "error", "approval",
    "approvalRequired", "preApproval", "preApprovalRequired", "data",
})


@dataclass(frozen=True)
class GoalMessage:
    """
    Canonical state of one goal instance.

    A goal is mutated by exactly one stage at a time. Every persisted
    mutation goes through advance(), which bumps the version and appends
    provenance; instances themselves are immutable.

    Attributes:
        unique_name: Unique name of the goal within its goal set
        environment: Environment segment (e.g. "0-code", "1-staging")
        name: Display name
        sha: Commit sha
        branch: Branch the commit was pushed to
        state: Lifecycle state
        goal_set_id: Id grouping all goals planned for the same push
        version: Counter, strictly increasing per goal instance
        pre_conditions: Goals that must complete first
        provenance: Append-only log of processing stages
        repo: Repository reference
        goal_set: Display name of the goal set
        id: Goal identifier assigned by the event store
        extras: Unknown wire keys added after signing (e.g. "push")
    """
    unique_name: str
    environment: str
    name: str
    sha: str
    branch: str
    state: GoalState
    goal_set_id: str
    version: int = 1
    pre_conditions: tuple[GoalKey, ...] = field(default_factory=tuple)
    provenance: tuple[Provenance, ...] = field(default_factory=tuple)
    repo: Optional[RepoRef] = None
    goal_set: Optional[str] = None
    id: Optional[str] = None
    fulfillment: Optional[Fulfillment] = None
    description: Optional[str] = None
    url: Optional[str] = None
    external_urls: tuple[ExternalUrl, ...] = field(default_factory=tuple)
    phase: Optional[str] = None
    external_key: Optional[str] = None
    ts: Optional[int] = None
    retry_feasible: Optional[bool] = None
    error: Optional[str] = None
    approval: Optional[dict[str, Any]] = None
    approval_required: Optional[bool] = None
    pre_approval: Optional[dict[str, Any]] = None
    pre_approval_required: Optional[bool] = None
    data: Optional[str] = None
    extras: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.version < 0:
            raise ValueError(f"Goal '{self.unique_name}': version must be >= 0, got {self.version}")
        if not isinstance(self.state, GoalState):
            object.__setattr__(self, "state", GoalState(self.state))

    def advance(
        self,
        state: Optional[GoalState] = None,
        *,
        description: Optional[str] = None,
        provenance: Optional[Provenance] = None,
        **changes: Any,
    ) -> "GoalMessage":
        """
        Return the next version of this goal.

        Args:
            state: New lifecycle state (unchanged if omitted)
            description: New description (unchanged if omitted)
            provenance: Entry appended to the provenance log
            **changes: Any other field to replace

        Returns:
            A new GoalMessage with version + 1
        """
        if "version" in changes:
            raise ValueError("version is managed by advance()")
        if state is not None:
            changes["state"] = state
        if description is not None:
            changes["description"] = description
        log = self.provenance + (provenance,) if provenance is not None else self.provenance
        return replace(self, version=self.version + 1, provenance=log, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase wire form."""
        result: dict[str, Any] = {
            "uniqueName": self.unique_name,
            "environment": self.environment,
            "name": self.name,
            "sha": self.sha,
            "branch": self.branch,
            "state": self.state.value,
            "goalSetId": self.goal_set_id,
            "goalSet": self.goal_set,
            "version": self.version,
            "preConditions": [p.to_dict() for p in self.pre_conditions],
            "provenance": [p.to_dict() for p in self.provenance],
            "repo": self.repo.to_dict() if self.repo else None,
            "fulfillment": self.fulfillment.to_dict() if self.fulfillment else None,
            "description": self.description,
            "url": self.url,
            "externalUrls": [u.to_dict() for u in self.external_urls],
            "phase": self.phase,
            "externalKey": self.external_key,
            "ts": self.ts,
            "retryFeasible": self.retry_feasible,
            "error": self.error,
            "approval": self.approval,
            "approvalRequired": self.approval_required,
            "preApproval": self.pre_approval,
            "preApprovalRequired": self.pre_approval_required,
            "data": self.data,
        }
        if self.id is not None:
            result["id"] = self.id
        for key, value in self.extras.items():
            result.setdefault(key, value)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GoalMessage":
        """
        Deserialize from the wire form.

        Signature envelope keys are ignored here; use SignedGoalMessage.from_dict
        to keep them.
        """
        repo = data.get("repo")
        fulfillment = data.get("fulfillment")
        extras = {
            k: v for k, v in data.items()
            if k not in _KNOWN_KEYS and k not in SignedGoalMessage.ENVELOPE_KEYS
        }
        return cls(
            unique_name=data["uniqueName"],
            environment=data["environment"],
            name=data["name"],
            sha=data["sha"],
            branch=data["branch"],
            state=GoalState(data["state"]),
            goal_set_id=data["goalSetId"],
            goal_set=data.get("goalSet"),
            version=data.get("version", 1),
            pre_conditions=tuple(GoalKey.from_dict(p) for p in data.get("preConditions") or []),
            provenance=tuple(Provenance.from_dict(p) for p in data.get("provenance") or []),
            repo=RepoRef.from_dict(repo) if repo else None,
            id=data.get("id"),
            fulfillment=Fulfillment.from_dict(fulfillment) if fulfillment else None,
            description=data.get("description"),
            url=data.get("url"),
            external_urls=tuple(ExternalUrl.from_dict(u) for u in data.get("externalUrls") or []),
            phase=data.get("phase"),
            external_key=data.get("externalKey"),
            ts=data.get("ts"),
            retry_feasible=data.get("retryFeasible"),
            error=data.get("error"),
            approval=data.get("approval"),
            approval_required=data.get("approvalRequired"),
            pre_approval=data.get("preApproval"),
            pre_approval_required=data.get("preApprovalRequired"),
            data=data.get("data"),
            extras=extras,
        )


@dataclass(frozen=True)
class SignedGoalMessage:
    """
    A GoalMessage plus its detached signature envelope.

    Constructed only by goaldispatch.signing.sign_goal; consumed by
    goaldispatch.signing.verify_goal before anything else reads it.

    Attributes:
        message: The signed goal
        signature: Base64 encoded signature bytes
        signer_name: Name of the key that produced the signature
    """
    message: GoalMessage
    signature: Optional[str] = None
    signer_name: Optional[str] = None

    ENVELOPE_KEYS = ("signature", "signerName")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire form {...goalFields, signature, signerName}."""
        result = self.message.to_dict()
        result["signature"] = self.signature
        result["signerName"] = self.signer_name
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SignedGoalMessage":
        return cls(
            message=GoalMessage.from_dict(data),
            signature=data.get("signature"),
            signer_name=data.get("signerName"),
        )
