"""
GoalCache - classifier keyed artifact caching around goal execution.

Before a goal runs, cached entries are restored into the project; on a miss
the configured cache-miss fallbacks run instead (e.g. a full dependency
install). After the goal runs, files matching the configured glob patterns
are stored, and entries may be removed once no longer needed.

Cache infrastructure never fails a goal: backend errors are logged and the
goal continues as if the cache was empty.

Usage:
    options = GoalCacheOptions(
        entries=(CacheEntry("dependencies", "node_modules/**"),),
        on_cache_miss=(install_listener,),
    )
    listeners = [cache_restore(options, "dependencies"), cache_put(options)]
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Union

from goaldispatch.cache.backend import GoalCacheBackend, NoOpGoalCache
from goaldispatch.context import (
    ALL_PHASES,
    NO_OP_LISTENER,
    AnyPush,
    GoalInvocation,
    GoalLifecyclePhase,
    GoalProjectListener,
    Project,
    PushTest,
)
from goaldispatch.errors import CacheMissError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """
    One cacheable artifact category.

    Attributes:
        classifier: Name of the category (e.g. "dependencies", "scripts")
        pattern: Glob, or several globs, relative to the project root
    """
    classifier: str
    pattern: Union[str, tuple[str, ...]]

    @property
    def patterns(self) -> tuple[str, ...]:
        if isinstance(self.pattern, str):
            return (self.pattern,)
        return tuple(self.pattern)


@dataclass(frozen=True)
class GoalCacheOptions:
    """
    Options for goal caching.

    Attributes:
        entries: Classifiers and the globs selecting their files
        push_test: When caching applies at all
        on_cache_miss: Fallback listeners run when an entry cannot be restored
    """
    entries: tuple[CacheEntry, ...] = field(default_factory=tuple)
    push_test: PushTest = AnyPush
    on_cache_miss: tuple[GoalProjectListener, ...] = field(default_factory=tuple)

    @property
    def fallbacks(self) -> tuple[GoalProjectListener, ...]:
        """Configured fallbacks, or the no-op fallback when there are none."""
        return self.on_cache_miss or (NO_OP_LISTENER,)


def is_cache_enabled(invocation: GoalInvocation) -> bool:
    """Global cache switch from the dispatcher configuration."""
    return bool(invocation.configuration.cache.enabled)


class GoalCache:
    """
    Goal-facing cache operations on top of a GoalCacheBackend.

    Entries are scoped to the invocation's goal set; the backend decides
    how they are stored.
    """

    def __init__(self, options: GoalCacheOptions, backend: Optional[GoalCacheBackend] = None):
        self.options = options
        self.backend = backend or NoOpGoalCache()

    def put(self, invocation: GoalInvocation, project: Project, classifier: Optional[str] = None) -> None:
        """
        Cache files produced by a goal.

        Args:
            invocation: The goal invocation
            project: Project the files are collected from
            classifier: Only cache this classifier; all configured ones if omitted
        """
        if not is_cache_enabled(invocation):
            return
        if not self.options.push_test(invocation, project):
            logger.debug(f"Push test {self.options.push_test.name} failed; not caching")
            return

        entries = self.options.entries
        if classifier is not None:
            entries = tuple(e for e in entries if e.classifier == classifier)

        scope = invocation.cache_scope
        for entry in entries:
            files = project.glob(entry.patterns)
            if not files:
                logger.debug(f"No files match {list(entry.patterns)} for classifier '{entry.classifier}'")
                continue
            try:
                self.backend.put(scope, entry.classifier, project, files)
                logger.info(f"Cached {len(files)} file(s) for classifier '{entry.classifier}' (scope {scope})")
            except Exception as e:
                logger.warning(f"Failed to cache classifier '{entry.classifier}' (scope {scope}): {e}")

    def retrieve(
        self,
        invocation: GoalInvocation,
        project: Project,
        classifier: str = "default",
        *classifiers: str,
        phase: GoalLifecyclePhase = GoalLifecyclePhase.BEFORE,
    ) -> None:
        """
        Restore cached entries into a project.

        Each classifier that cannot be restored triggers the cache-miss
        fallbacks registered for phase whose push test passes. With caching
        disabled the fallbacks run once and the backend is not touched.

        Args:
            invocation: The goal invocation
            project: Project the files are restored into
            classifier: First classifier to restore
            *classifiers: Further classifiers to restore
            phase: Lifecycle phase the restore runs in
        """
        if not is_cache_enabled(invocation):
            self._invoke_fallbacks(invocation, project, phase)
            return

        scope = invocation.cache_scope
        for c in (classifier, *classifiers):
            try:
                restored = self.backend.retrieve(scope, c, project)
                logger.info(f"Restored {len(restored)} file(s) for classifier '{c}' (scope {scope})")
            except CacheMissError as e:
                logger.info(f"Cache miss for classifier '{c}': {e}")
                self._invoke_fallbacks(invocation, project, phase)
            except Exception as e:
                logger.warning(f"Failed to restore classifier '{c}' (scope {scope}): {e}")
                self._invoke_fallbacks(invocation, project, phase)

    def remove(self, invocation: GoalInvocation, classifier: Optional[str] = None) -> None:
        """
        Remove cached entries after goal completion.

        Args:
            invocation: The goal invocation
            classifier: Entry to remove; the whole scope if omitted
        """
        if not is_cache_enabled(invocation):
            return
        if not self.options.push_test(invocation, None):
            return

        scope = invocation.cache_scope
        try:
            self.backend.remove(scope, classifier)
            logger.debug(f"Removed cache entry '{classifier or '*'}' (scope {scope})")
        except Exception as e:
            logger.warning(f"Failed to remove cache entry '{classifier or '*'}' (scope {scope}): {e}")

    def _invoke_fallbacks(
        self,
        invocation: GoalInvocation,
        project: Project,
        phase: GoalLifecyclePhase,
    ) -> None:
        for fallback in self.options.fallbacks:
            if fallback.applies(invocation, project, phase):
                fallback.action(project, invocation, phase)


def cache_put(
    options: GoalCacheOptions,
    classifier: Optional[str] = None,
    backend: Optional[GoalCacheBackend] = None,
) -> GoalProjectListener:
    """
    Listener that caches files after a goal has run.

    Args:
        options: Caching options
        classifier: Only cache this classifier; all if omitted
        backend: Cache storage (no-op if omitted)
    """
    cache = GoalCache(options, backend)

    def action(project, invocation, phase):
        cache.put(invocation, project, classifier)

    return GoalProjectListener(
        push_test=options.push_test,
        phases=(GoalLifecyclePhase.AFTER,),
        action=action,
    )


def cache_restore(
    options: GoalCacheOptions,
    classifier: str = "default",
    *classifiers: str,
    backend: Optional[GoalCacheBackend] = None,
) -> GoalProjectListener:
    """
    Listener that restores cached files before a goal runs.

    Args:
        options: Caching options
        classifier: First classifier to restore
        *classifiers: Further classifiers to restore
        backend: Cache storage (no-op if omitted)
    """
    cache = GoalCache(options, backend)

    def action(project, invocation, phase):
        cache.retrieve(invocation, project, classifier, *classifiers, phase=phase)

    return GoalProjectListener(
        push_test=options.push_test,
        phases=(GoalLifecyclePhase.BEFORE,),
        action=action,
    )


def cache_remove(
    options: GoalCacheOptions,
    classifier: Optional[str] = None,
    backend: Optional[GoalCacheBackend] = None,
) -> GoalProjectListener:
    """
    Listener that removes cached entries after a goal has run.

    Args:
        options: Caching options
        classifier: Entry to remove; the whole scope if omitted
        backend: Cache storage (no-op if omitted)
    """
    cache = GoalCache(options, backend)

    def action(project, invocation, phase):
        cache.remove(invocation, classifier)

    return GoalProjectListener(
        push_test=options.push_test,
        phases=(GoalLifecyclePhase.AFTER,),
        action=action,
    )


def fallback(action, push_test: PushTest = AnyPush, phases=ALL_PHASES) -> GoalProjectListener:
    """Build a cache-miss fallback listener."""
    return GoalProjectListener(push_test=push_test, phases=tuple(phases), action=action)
