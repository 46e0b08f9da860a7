"""
Goal cache backends - storage for artifacts shared between goal executions.

Entries are keyed by (scope, classifier). The scope is the goal set id, so
goals of unrelated pushes never see each other's entries.

Storage backends:
- NoOpGoalCache: default when nothing is configured; every retrieve misses
- InMemoryGoalCache: for testing and single-process local runs
- FileSystemGoalCache: gzip'd tar archive per entry under a root directory

Backends must be safe for concurrent access on distinct keys. Callers
serialize repeated operations on the same key.
"""

import logging
import os
import re
import shutil
import tarfile
import tempfile
import threading
import zlib
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from goaldispatch.config import CacheConfig
from goaldispatch.context import Project
from goaldispatch.errors import CacheError, CacheMissError

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".tar.gz"


class GoalCacheBackend(ABC):
    """
    Abstract base class for goal cache storage.

    Implementations must provide methods to:
    - Store a set of project files under (scope, classifier)
    - Restore an entry into a project
    - Remove one entry or a whole scope
    """

    @abstractmethod
    def put(self, scope: str, classifier: str, project: Project, files: list[str]) -> None:
        """
        Store project files.

        Args:
            scope: Execution scope (goal set id)
            classifier: Artifact category (e.g. "dependencies")
            project: Project the files are read from
            files: Project-relative POSIX paths

        Raises:
            CacheError: If the entry cannot be written
        """
        pass

    @abstractmethod
    def retrieve(self, scope: str, classifier: str, project: Project) -> list[str]:
        """
        Restore an entry into a project.

        Args:
            scope: Execution scope (goal set id)
            classifier: Artifact category
            project: Project the files are written into

        Returns:
            Project-relative paths that were restored

        Raises:
            CacheMissError: If no entry exists
            CacheError: If the entry cannot be read
        """
        pass

    @abstractmethod
    def remove(self, scope: str, classifier: Optional[str] = None) -> None:
        """
        Remove an entry, or every entry of the scope when classifier is None.

        Removing something that does not exist is not an error.
        """
        pass


class NoOpGoalCache(GoalCacheBackend):
    """
    Inert backend used when no cache is configured.

    Stores nothing; every retrieve is a miss so cache-miss fallbacks run.
    """

    def put(self, scope: str, classifier: str, project: Project, files: list[str]) -> None:
        logger.debug(f"No-op goal cache in use; not caching {len(files)} file(s) for '{classifier}'")

    def retrieve(self, scope: str, classifier: str, project: Project) -> list[str]:
        raise CacheMissError(f"No-op goal cache in use; no entry for '{classifier}' in scope {scope}")

    def remove(self, scope: str, classifier: Optional[str] = None) -> None:
        pass


class InMemoryGoalCache(GoalCacheBackend):
    """
    In-memory implementation of GoalCacheBackend.

    All data is lost when the instance is garbage collected.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[tuple[str, str], dict[str, bytes]] = {}

    def put(self, scope: str, classifier: str, project: Project, files: list[str]) -> None:
        try:
            contents = {f: (project.base_dir / f).read_bytes() for f in files}
        except OSError as e:
            raise CacheError(f"Unable to read files for '{classifier}': {e}") from e
        with self._lock:
            self._entries[(scope, classifier)] = contents

    def retrieve(self, scope: str, classifier: str, project: Project) -> list[str]:
        with self._lock:
            contents = self._entries.get((scope, classifier))
        if contents is None:
            raise CacheMissError(f"No cache entry for '{classifier}' in scope {scope}")
        try:
            for rel, data in contents.items():
                target = _safe_target(project, rel)
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)
        except OSError as e:
            raise CacheError(f"Unable to restore '{classifier}': {e}") from e
        return sorted(contents)

    def remove(self, scope: str, classifier: Optional[str] = None) -> None:
        with self._lock:
            if classifier is not None:
                self._entries.pop((scope, classifier), None)
            else:
                for key in [k for k in self._entries if k[0] == scope]:
                    del self._entries[key]

    def has(self, scope: str, classifier: str) -> bool:
        """Check if an entry exists."""
        with self._lock:
            return (scope, classifier) in self._entries


def _safe_name(name: str) -> str:
    """Map a scope or classifier to a single path segment."""
    safe = re.sub(r"[^A-Za-z0-9._-]", "_", name)
    if safe in ("", ".", ".."):
        safe = safe.replace(".", "_") or "_"
    return safe


def _safe_target(project: Project, rel: str) -> Path:
    """Resolve rel inside the project; refuse paths escaping it."""
    base = project.base_dir.resolve()
    target = (base / rel).resolve()
    if target != base and base not in target.parents:
        raise CacheError(f"Refusing to restore '{rel}' outside of project {base}")
    return target


class FileSystemGoalCache(GoalCacheBackend):
    """
    File-system implementation of GoalCacheBackend.

    Layout:
        <path>/<scope>/<classifier>.tar.gz

    Archives are written to a temporary file next to the target and renamed
    into place, so readers never see a partial entry.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _scope_dir(self, scope: str) -> Path:
        return self.path / _safe_name(scope)

    def _archive(self, scope: str, classifier: str) -> Path:
        return self._scope_dir(scope) / f"{_safe_name(classifier)}{ARCHIVE_SUFFIX}"

    def put(self, scope: str, classifier: str, project: Project, files: list[str]) -> None:
        archive = self._archive(scope, classifier)
        tmp_name = None
        try:
            archive.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=archive.parent, suffix=".tmp")
            with os.fdopen(fd, "wb") as fh, tarfile.open(fileobj=fh, mode="w:gz") as tar:
                for rel in files:
                    tar.add(str(project.base_dir / rel), arcname=rel, recursive=False)
            os.replace(tmp_name, archive)
            tmp_name = None
        except (OSError, tarfile.TarError) as e:
            raise CacheError(f"Unable to write cache archive {archive}: {e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
        logger.debug(f"Cached {len(files)} file(s) for '{classifier}' at {archive}")

    def retrieve(self, scope: str, classifier: str, project: Project) -> list[str]:
        archive = self._archive(scope, classifier)
        if not archive.exists():
            raise CacheMissError(f"No cache archive at {archive}")

        restored = []
        try:
            with tarfile.open(archive, mode="r:gz") as tar:
                for member in tar.getmembers():
                    if not member.isfile():
                        continue
                    target = _safe_target(project, member.name)
                    source = tar.extractfile(member)
                    if source is None:
                        continue
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with source, open(target, "wb") as out:
                        shutil.copyfileobj(source, out)
                    os.chmod(target, member.mode & 0o777 or 0o644)
                    restored.append(member.name)
        except (OSError, EOFError, tarfile.TarError, zlib.error) as e:
            raise CacheError(f"Unable to read cache archive {archive}: {e}") from e
        logger.debug(f"Restored {len(restored)} file(s) for '{classifier}' from {archive}")
        return sorted(restored)

    def remove(self, scope: str, classifier: Optional[str] = None) -> None:
        try:
            if classifier is None:
                shutil.rmtree(self._scope_dir(scope), ignore_errors=False)
            else:
                self._archive(scope, classifier).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise CacheError(f"Unable to remove cache entry for scope {scope}: {e}") from e


def backend_from_config(config: CacheConfig) -> GoalCacheBackend:
    """File-system backend when a cache path is configured, otherwise no-op."""
    if config.path:
        return FileSystemGoalCache(Path(config.path).expanduser())
    return NoOpGoalCache()
