"""
Cache cleanup - prune stale entries from the file-system goal cache.

Entries are only useful while the goal set that produced them is still
running, so anything older than max_age (two hours by default) is removed.
Run periodically, e.g. from `goaldispatch cache prune` in a CronJob.
"""

import logging
import time
from datetime import timedelta
from pathlib import Path
from typing import Optional

from goaldispatch.cache.backend import ARCHIVE_SUFFIX

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = timedelta(hours=2)


def prune_cache(
    path: str | Path,
    max_age: timedelta = DEFAULT_MAX_AGE,
    now: Optional[float] = None,
) -> list[Path]:
    """
    Delete cache archives older than max_age.

    Scope directories left empty are removed as well. Files that vanish or
    cannot be removed while pruning are logged and skipped.

    Args:
        path: Root directory of the file-system cache
        max_age: Maximum age, measured from last modification
        now: Reference time (epoch seconds); defaults to the current time

    Returns:
        Paths of the removed archives
    """
    root = Path(path)
    if not root.is_dir():
        logger.info(f"Cache directory {root} does not exist; nothing to prune")
        return []

    cutoff = (now if now is not None else time.time()) - max_age.total_seconds()
    removed: list[Path] = []

    for archive in sorted(root.glob(f"*/*{ARCHIVE_SUFFIX}")):
        try:
            if archive.stat().st_mtime >= cutoff:
                continue
            archive.unlink()
            removed.append(archive)
            logger.debug(f"Pruned cache archive {archive}")
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning(f"Failed to prune cache archive {archive}: {e}")

    for scope_dir in sorted(p for p in root.iterdir() if p.is_dir()):
        try:
            next(scope_dir.iterdir())
        except StopIteration:
            try:
                scope_dir.rmdir()
            except OSError as e:
                logger.warning(f"Failed to remove empty cache scope {scope_dir}: {e}")

    logger.info(f"Pruned {len(removed)} cache archive(s) older than {max_age} from {root}")
    return removed
