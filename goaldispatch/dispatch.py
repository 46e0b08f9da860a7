"""
GoalDispatcher - move a requested goal to executed.

Flow for one goal:
1. Verify the signature (rejected goals never reach a listener)
2. Skip goals that are not requested or belong to another registration
3. If a scheduler supports the goal: submit the Job, publish in_process
4. Otherwise: publish in_process, run BEFORE listeners (cache restore),
   the executor, AFTER listeners (cache put/remove), publish success/failure

Every published state bumps the goal version and appends a provenance
entry; the publisher signs it when signing is enabled.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Union

from goaldispatch.cache import GoalCache
from goaldispatch.config import DispatchConfig
from goaldispatch.context import (
    DispatcherIdentity,
    ExecutionContext,
    GoalInvocation,
    GoalLifecyclePhase,
    GoalProjectListener,
    Project,
)
from goaldispatch.publisher import GoalPublisher
from goaldispatch.schemas import GoalMessage, GoalState, Provenance, SignedGoalMessage
from goaldispatch.scheduling import KubernetesGoalScheduler, ScheduleResult, is_goal_relevant
from goaldispatch.signing import verify_goal

logger = logging.getLogger(__name__)

GoalExecutor = Callable[[GoalInvocation, Optional[Project]], Any]


@dataclass(frozen=True)
class DispatchResult:
    """
    Outcome of dispatching a goal.

    Attributes:
        goal: Last goal state published
        scheduled: Job details if the goal was scheduled in isolation
    """
    goal: GoalMessage
    scheduled: Optional[ScheduleResult] = None


class GoalDispatcher:
    """
    Coordinates verification, scheduling, caching and execution of goals.

    Usage:
        dispatcher = GoalDispatcher(config, identity, cache=cache, scheduler=scheduler)
        result = dispatcher.dispatch(payload, context, project, executor=run_build)
    """

    def __init__(
        self,
        config: DispatchConfig,
        identity: DispatcherIdentity,
        cache: Optional[GoalCache] = None,
        scheduler: Optional[KubernetesGoalScheduler] = None,
        publisher: Optional[GoalPublisher] = None,
        listeners: Sequence[GoalProjectListener] = (),
    ):
        self.config = config
        self.identity = identity
        self.cache = cache
        self.scheduler = scheduler
        self.publisher = publisher
        self.listeners = tuple(listeners)

    def _provenance(self, context: ExecutionContext) -> Provenance:
        return Provenance(
            registration=self.identity.name,
            version=self.identity.version,
            name=type(self).__name__,
            correlation_id=context.correlation_id,
            ts=int(time.time() * 1000),
        )

    def _publish(
        self,
        publisher: GoalPublisher,
        goal: GoalMessage,
        state: GoalState,
        context: ExecutionContext,
        description: str,
        **changes: Any,
    ) -> GoalMessage:
        updated = goal.advance(state, description=description, provenance=self._provenance(context), **changes)
        publisher.publish(updated)
        return updated

    def _run_listeners(
        self,
        invocation: GoalInvocation,
        project: Optional[Project],
        phase: GoalLifecyclePhase,
    ) -> None:
        if self.cache is not None and project is not None:
            if phase == GoalLifecyclePhase.BEFORE:
                # no entries restores the "default" classifier
                classifiers = [e.classifier for e in self.cache.options.entries]
                if self.cache.options.push_test(invocation, project):
                    self.cache.retrieve(invocation, project, *classifiers, phase=phase)
            else:
                self.cache.put(invocation, project)

        for listener in self.listeners:
            if listener.applies(invocation, project, phase):
                listener.action(project, invocation, phase)

    def dispatch(
        self,
        goal: Union[GoalMessage, SignedGoalMessage],
        context: ExecutionContext,
        project: Optional[Project] = None,
        executor: Optional[GoalExecutor] = None,
    ) -> Optional[DispatchResult]:
        """
        Dispatch one goal.

        Args:
            goal: Goal as received; unsigned goals fail verification when
                signing is enabled
            context: Context of the triggering event
            project: Checked out project for local execution
            executor: Runs the goal locally; required unless scheduled

        Returns:
            DispatchResult, or None if the goal was not for this dispatcher

        Raises:
            SignatureInvalidError: If the goal signature is invalid
            SchedulingError: If the Job cannot be submitted
            Exception: Whatever the executor raised, after publishing failure
        """
        signed = goal if isinstance(goal, SignedGoalMessage) else SignedGoalMessage(message=goal)
        message = verify_goal(signed, self.config.signing, context, self.identity)

        if message.state != GoalState.REQUESTED:
            logger.debug(f"Ignoring goal {message.unique_name} in state {message.state.value}")
            return None
        if message.fulfillment is not None and not is_goal_relevant(message, self.identity.name):
            logger.debug(f"Goal {message.unique_name} is fulfilled by another registration")
            return None

        invocation = GoalInvocation(
            goal_event=message,
            context=context,
            identity=self.identity,
            configuration=self.config,
        )
        publisher = self.publisher or GoalPublisher(self.config.signing, context.message_client)

        if self.scheduler is not None and self.scheduler.supports(invocation):
            scheduled = self.scheduler.schedule(invocation)
            updated = self._publish(publisher, message, GoalState.IN_PROCESS, context, scheduled.description)
            return DispatchResult(goal=updated, scheduled=scheduled)

        if executor is None:
            raise ValueError(f"No executor given for goal {message.unique_name}")

        current = self._publish(publisher, message, GoalState.IN_PROCESS, context, f"Working: {message.name}")
        invocation = GoalInvocation(
            goal_event=current,
            context=context,
            identity=self.identity,
            configuration=self.config,
        )
        try:
            self._run_listeners(invocation, project, GoalLifecyclePhase.BEFORE)
            executor(invocation, project)
            self._run_listeners(invocation, project, GoalLifecyclePhase.AFTER)
        except Exception as e:
            logger.error(f"Goal {message.unique_name} failed: {e}")
            try:
                self._publish(
                    publisher, current, GoalState.FAILURE, context, f"Failed: {message.name}", error=str(e),
                )
            except Exception as publish_error:
                logger.error(f"Failed to publish failure of goal {message.unique_name}: {publish_error}")
            raise

        updated = self._publish(publisher, current, GoalState.SUCCESS, context, f"Completed: {message.name}")
        logger.info(f"Goal {message.unique_name} completed (version {updated.version})")
        return DispatchResult(goal=updated)
