"""
Goal signing and verification - the trust boundary for goal state.

Goal messages are published by several cooperating producers onto a shared
bus with at-least-once delivery. Only holders of the private signing key may
legitimately advance goal state; verification on receipt is what stops a
forged "success" from triggering a deployment.

Signature input is a canonical serialization of the goal:
- Only the signed field subset of the wire form (SIGNED_FIELDS)
- The signature envelope (signature, signerName) is never included
- Enrichment attached after signing (id, push and other extras) is excluded
- None values are dropped at every depth
- Compact JSON with sorted keys, UTF-8 encoded

Supported key types: RSA (PKCS#1 v1.5, SHA-512), EC (ECDSA, SHA-512), Ed25519.

Usage:
    from goaldispatch.signing import sign_goal, verify_goal

    signed = sign_goal(goal, config.signing)
    bus.send(signed.to_dict())

    # on receipt
    goal = verify_goal(SignedGoalMessage.from_dict(payload), config.signing, ctx)
"""

import base64
import binascii
import json
import logging
import time
from typing import Any, Optional, Union

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa

from goaldispatch.config import GoalSigningConfig, GoalSigningKey, GoalVerificationKey
from goaldispatch.context import DispatcherIdentity, ExecutionContext
from goaldispatch.errors import SignatureInvalidError, SigningError
from goaldispatch.schemas import GoalMessage, GoalState, Provenance, SignedGoalMessage

logger = logging.getLogger(__name__)

# Wire keys covered by the signature.
SIGNED_FIELDS = (
    "uniqueName",
    "environment",
    "name",
    "sha",
    "branch",
    "fulfillment",
    "description",
    "url",
    "externalUrls",
    "state",
    "phase",
    "externalKey",
    "goalSet",
    "goalSetId",
    "ts",
    "error",
    "retryFeasible",
    "preConditions",
    "approval",
    "approvalRequired",
    "preApproval",
    "preApprovalRequired",
    "provenance",
    "data",
    "version",
    "repo",
)

INVALID_SIGNATURE_MESSAGE = "Goal signature invalid. Rejecting goal!"


def _drop_none(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _drop_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_drop_none(v) for v in value]
    return value


def canonical_goal_bytes(message: Union[GoalMessage, SignedGoalMessage]) -> bytes:
    """
    Canonical byte form of a goal, used as signature input.

    Args:
        message: Goal to serialize; the envelope of a SignedGoalMessage is ignored

    Returns:
        UTF-8 encoded compact JSON of the signed fields
    """
    if isinstance(message, SignedGoalMessage):
        message = message.message
    wire = message.to_dict()
    normalized = _drop_none({k: wire.get(k) for k in SIGNED_FIELDS})
    return json.dumps(
        normalized, sort_keys=True, separators=(",", ":"), ensure_ascii=False,
    ).encode("utf-8")


def load_private_key(key: GoalSigningKey):
    """
    Load a PEM private key, decrypting it with the passphrase if given.

    Raises:
        SigningError: If the key cannot be loaded or the passphrase is wrong
    """
    password = key.passphrase.encode("utf-8") if key.passphrase else None
    try:
        return serialization.load_pem_private_key(key.private_key.encode("utf-8"), password=password)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise SigningError(f"Unable to load signing key '{key.name}': {e}") from e


def load_public_key(key: GoalVerificationKey):
    """
    Load a PEM public key.

    Raises:
        SigningError: If the key cannot be loaded
    """
    try:
        return serialization.load_pem_public_key(key.public_key.encode("utf-8"))
    except (ValueError, UnsupportedAlgorithm) as e:
        raise SigningError(f"Unable to load verification key '{key.name}': {e}") from e


def _sign_bytes(private_key, data: bytes) -> bytes:
    if isinstance(private_key, rsa.RSAPrivateKey):
        return private_key.sign(data, padding.PKCS1v15(), hashes.SHA512())
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        return private_key.sign(data, ec.ECDSA(hashes.SHA512()))
    if isinstance(private_key, ed25519.Ed25519PrivateKey):
        return private_key.sign(data)
    raise SigningError(f"Unsupported signing key type: {type(private_key).__name__}")


def _verify_bytes(public_key, signature: bytes, data: bytes) -> bool:
    try:
        if isinstance(public_key, rsa.RSAPublicKey):
            public_key.verify(signature, data, padding.PKCS1v15(), hashes.SHA512())
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(signature, data, ec.ECDSA(hashes.SHA512()))
        elif isinstance(public_key, ed25519.Ed25519PublicKey):
            public_key.verify(signature, data)
        else:
            logger.warning(f"Unsupported verification key type: {type(public_key).__name__}")
            return False
    except InvalidSignature:
        return False
    return True


def sign_goal(
    message: Union[GoalMessage, SignedGoalMessage],
    config: GoalSigningConfig,
) -> SignedGoalMessage:
    """
    Sign a goal message.

    Args:
        message: Goal to sign; an existing signature envelope is replaced
        config: Signing configuration holding the private key

    Returns:
        New SignedGoalMessage; the input is not modified

    Raises:
        SigningError: If no signing key is configured or it cannot be used
    """
    if isinstance(message, SignedGoalMessage):
        message = message.message
    if config.signing_key is None:
        raise SigningError("No signing key configured")

    private_key = load_private_key(config.signing_key)
    signature = _sign_bytes(private_key, canonical_goal_bytes(message))
    return SignedGoalMessage(
        message=message,
        signature=base64.b64encode(signature).decode("ascii"),
        signer_name=config.signing_key.name,
    )


def _signature_validates(signed: SignedGoalMessage, config: GoalSigningConfig) -> bool:
    if not signed.signature or not isinstance(signed.signature, str):
        return False
    try:
        signature = base64.b64decode(signed.signature, validate=True)
    except (binascii.Error, ValueError):
        return False

    data = canonical_goal_bytes(signed.message)
    for key in config.verification_keys:
        try:
            public_key = load_public_key(key)
        except SigningError as e:
            logger.warning(str(e))
            continue
        if _verify_bytes(public_key, signature, data):
            logger.debug(f"Goal {signed.message.unique_name} verified with key '{key.name}'")
            return True
    return False


def _rejection(
    message: GoalMessage,
    context: ExecutionContext,
    identity: Optional[DispatcherIdentity],
) -> GoalMessage:
    provenance = None
    if identity is not None:
        provenance = Provenance(
            registration=identity.name,
            version=identity.version,
            name="VerifyGoalSignature",
            correlation_id=context.correlation_id,
            ts=int(time.time() * 1000),
        )
    return message.advance(
        GoalState.FAILURE,
        description=f"Rejected {message.name} because signature was invalid",
        provenance=provenance,
        extras={},
    )


def verify_goal(
    signed: SignedGoalMessage,
    config: GoalSigningConfig,
    context: ExecutionContext,
    identity: Optional[DispatcherIdentity] = None,
) -> GoalMessage:
    """
    Verify a signed goal before anything acts on it.

    Every trusted verification key is tried until one validates. When none
    does, the goal is set to failure, the rejection is published through
    context.message_client and SignatureInvalidError is raised.

    Args:
        signed: Goal as received from the bus
        config: Signing configuration holding the trusted keys
        context: Context of the receiving event
        identity: Dispatcher recorded in the rejection's provenance

    Returns:
        The verified GoalMessage (unchanged when signing is disabled)

    Raises:
        SignatureInvalidError: If the signature is missing or invalid
    """
    if not config.enabled:
        return signed.message

    if _signature_validates(signed, config):
        return signed.message

    message = signed.message
    logger.error(
        f"Signature of goal {message.unique_name} (goal set {message.goal_set_id}, "
        f"signer '{signed.signer_name}') is invalid. Rejecting goal"
    )
    rejection = _rejection(message, context, identity)
    payload = rejection.to_dict()
    if config.signing_key is not None:
        try:
            payload = sign_goal(rejection, config).to_dict()
        except SigningError as e:
            logger.warning(f"Publishing unsigned rejection of goal {message.unique_name}: {e}")
    context.message_client.send(payload)
    raise SignatureInvalidError(INVALID_SIGNATURE_MESSAGE)
