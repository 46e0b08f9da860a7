"""
goaldispatch.schemas - Goal message data model.

GoalMessage -> SignedGoalMessage

Lifecycle:
1. GoalMessage: State of a goal instance, advanced one version at a time
2. SignedGoalMessage: GoalMessage plus signature envelope, as published on the bus
"""

from .goal import (
    GoalState,
    GoalKey,
    RepoRef,
    Provenance,
    Fulfillment,
    ExternalUrl,
    GoalMessage,
    SignedGoalMessage,
)

__all__ = [
    "GoalState",
    "GoalKey",
    "RepoRef",
    "Provenance",
    "Fulfillment",
    "ExternalUrl",
    "GoalMessage",
    "SignedGoalMessage",
]
