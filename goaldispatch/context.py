"""
Invocation context passed through dispatch, caching and scheduling.

Process-wide facts (who is dispatching, which workspace, which project
checkout) are explicit values here rather than globals, so every operation
is a function of its arguments and tests can substitute fixtures.

Host-provided predicates and listeners are tagged values with a uniform
invocation contract:
- PushTest: name + predicate(invocation, project) -> bool
- GoalProjectListener: push_test + phases + action(project, invocation, phase)
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional, Union

from goaldispatch.messaging import MessageClient, NoOpMessageClient
from goaldispatch.schemas import GoalMessage

if TYPE_CHECKING:
    from goaldispatch.config import DispatchConfig


@dataclass(frozen=True)
class DispatcherIdentity:
    """
    Identity of the running dispatcher process.

    Attributes:
        name: Registration name (e.g. "@acme/delivery")
        version: Version of the running dispatcher
    """
    name: str
    version: str = "0.0.0"


@dataclass(frozen=True)
class ExecutionContext:
    """
    Context of the event that triggered a goal execution.

    Attributes:
        workspace_id: Workspace (team) the goal belongs to
        workspace_name: Human readable workspace name
        correlation_id: Correlation id for tracing across processes
        message_client: Messaging collaborator for publishing goal updates
    """
    workspace_id: str
    correlation_id: str
    workspace_name: Optional[str] = None
    message_client: MessageClient = field(default_factory=NoOpMessageClient)


@dataclass(frozen=True)
class Project:
    """A checked out project the goal operates on."""
    base_dir: Path

    def __post_init__(self):
        object.__setattr__(self, "base_dir", Path(self.base_dir))

    def glob(self, patterns: Union[str, Iterable[str]]) -> list[str]:
        """
        Resolve glob patterns to project-relative file paths.

        Directories are not returned; "**" matches recursively.

        Args:
            patterns: One glob or several

        Returns:
            Sorted, de-duplicated POSIX paths relative to base_dir
        """
        if isinstance(patterns, str):
            patterns = [patterns]
        found: set[str] = set()
        for pattern in patterns:
            for path in self.base_dir.glob(pattern):
                if path.is_file():
                    found.add(path.relative_to(self.base_dir).as_posix())
        return sorted(found)


@dataclass(frozen=True)
class GoalInvocation:
    """
    Everything needed to execute one goal.

    Attributes:
        goal_event: The (verified) goal being executed
        context: Triggering event context
        identity: The dispatching process
        configuration: Dispatcher configuration
    """
    goal_event: GoalMessage
    context: ExecutionContext
    identity: DispatcherIdentity
    configuration: "DispatchConfig"

    @property
    def cache_scope(self) -> str:
        """Cache scope: goal sets are the unit of artifact sharing."""
        return self.goal_event.goal_set_id


class GoalLifecyclePhase(str, Enum):
    """When a project listener runs relative to goal execution."""
    BEFORE = "before"
    AFTER = "after"


ALL_PHASES = (GoalLifecyclePhase.BEFORE, GoalLifecyclePhase.AFTER)


@dataclass(frozen=True)
class PushTest:
    """
    Named predicate deciding whether something applies to a push.

    Attributes:
        name: Name for logging
        predicate: Called with (invocation, project)
    """
    name: str
    predicate: Callable[[GoalInvocation, Optional[Project]], bool]

    def __call__(self, invocation: GoalInvocation, project: Optional[Project] = None) -> bool:
        return bool(self.predicate(invocation, project))


AnyPush = PushTest(name="AnyPush", predicate=lambda invocation, project: True)


def push_test(name: str, predicate: Callable[[GoalInvocation, Optional[Project]], bool]) -> PushTest:
    """Create a PushTest from a plain predicate."""
    return PushTest(name=name, predicate=predicate)


ListenerAction = Callable[[Optional[Project], GoalInvocation, GoalLifecyclePhase], Any]


@dataclass(frozen=True)
class GoalProjectListener:
    """
    Listener invoked around goal execution.

    Attributes:
        push_test: Predicate that must pass for the listener to run
        phases: Lifecycle phases the listener is registered for
        action: Called with (project, invocation, phase)
    """
    push_test: PushTest
    phases: tuple[GoalLifecyclePhase, ...]
    action: ListenerAction

    def applies(
        self,
        invocation: GoalInvocation,
        project: Optional[Project],
        phase: GoalLifecyclePhase,
    ) -> bool:
        """True if registered for phase and the push test passes."""
        return phase in self.phases and self.push_test(invocation, project)


def _no_op(project, invocation, phase) -> None:
    return None


NO_OP_LISTENER = GoalProjectListener(push_test=AnyPush, phases=ALL_PHASES, action=_no_op)
