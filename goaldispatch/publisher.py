"""
GoalPublisher - sign then send goal updates.

Every goal update leaving this process goes through publish(), so the
signature envelope is always computed over the exact state being sent.
"""

import logging
from typing import Any

from goaldispatch.config import GoalSigningConfig
from goaldispatch.messaging import MessageClient
from goaldispatch.schemas import GoalMessage
from goaldispatch.signing import sign_goal

logger = logging.getLogger(__name__)


class GoalPublisher:
    """
    Publishes goal messages, signed when signing is enabled.

    Usage:
        publisher = GoalPublisher(config.signing, message_client)
        publisher.publish(goal.advance(GoalState.SUCCESS, provenance=entry))
    """

    def __init__(self, signing: GoalSigningConfig, message_client: MessageClient):
        self._signing = signing
        self._client = message_client

    def publish(self, message: GoalMessage) -> dict[str, Any]:
        """
        Sign (if enabled) and send a goal message.

        Args:
            message: Goal state to publish

        Returns:
            The wire payload that was sent

        Raises:
            SigningError: If signing is enabled but no usable key is configured
        """
        if self._signing.enabled:
            payload = sign_goal(message, self._signing).to_dict()
        else:
            payload = message.to_dict()
        logger.info(
            f"Publishing goal {message.unique_name} state={message.state.value} version={message.version}"
        )
        self._client.send(payload)
        return payload
