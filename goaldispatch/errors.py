"""
Error classes for goal dispatch.

These error types separate failures that must stop a goal from failures
that are absorbed locally:
- CacheError: Absorbed. Cache infrastructure never blocks a goal.
- SchedulingError: Surfaced. The execution environment is not functional.
- SignatureInvalidError: Surfaced. Goal state integrity was violated.

Propagation contract:
- Cache operations log and swallow CacheError (best effort)
- Scheduler and verifier raise to the caller
- Errors are exceptions, not values
"""


class GoalDispatchError(Exception):
    """Base exception for goaldispatch."""
    pass


class ConfigError(GoalDispatchError):
    """Configuration is missing required values or is malformed."""
    pass


class CacheError(GoalDispatchError):
    """
    Cache backend failure.

    Examples:
    - Archive could not be written
    - Storage location not reachable

    Goal cache operations catch this and continue without the cache.
    """
    pass


class CacheMissError(CacheError):
    """No cache entry exists for the requested scope and classifier."""
    pass


class SchedulingError(GoalDispatchError):
    """
    Isolated goal scheduling failure.

    Examples:
    - Running pod spec cannot be read
    - Job submission rejected by the orchestrator

    The goal fails; there is nothing to fall back to.
    """
    pass


class JobConflictError(SchedulingError):
    """A Job with the same name already exists in the namespace."""
    pass


class SigningError(GoalDispatchError):
    """Goal signing failed (unreadable key, wrong passphrase)."""
    pass


class SignatureInvalidError(SigningError):
    """
    Goal signature could not be verified with any trusted key.

    Raised after the goal has been marked failed and the rejection has
    been published, so no listener acts on the unverified goal.
    """
    pass
