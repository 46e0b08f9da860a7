"""
Scheduler selection from the process environment.

Deployments opt in to isolated goal execution by setting one of the selector
variables. Values may be a bare token ("kubernetes"), a JSON string
("\"kubernetes\"") or a JSON array of strings ('["kubernetes-all", "docker"]').

Functions take an explicit environment snapshot instead of reading
os.environ, so callers (and tests) decide what the process sees.
"""

import json
import logging
from typing import Mapping

logger = logging.getLogger(__name__)

SELECTOR_VARIABLES = ("GOALDISPATCH_GOAL_SCHEDULER", "GOALDISPATCH_GOAL_LAUNCHER")
ISOLATED_GOAL_VARIABLE = "GOALDISPATCH_ISOLATED_GOAL"


def _parse_selector(raw: str) -> set[str]:
    """Tokens named by one selector value; malformed JSON counts as a bare token."""
    try:
        value = json.loads(raw)
    except ValueError:
        return {raw}
    if isinstance(value, str):
        return {value}
    if isinstance(value, list):
        return {str(v) for v in value}
    return {raw}


def configured_selectors(env: Mapping[str, str]) -> set[str]:
    """Union of the tokens named by every selector variable present in env."""
    tokens: set[str] = set()
    for variable in SELECTOR_VARIABLES:
        raw = env.get(variable)
        if raw:
            tokens |= _parse_selector(raw)
    return tokens


def is_configured_in_env(env: Mapping[str, str], *candidates: str) -> bool:
    """
    Check whether any candidate scheduler is selected in env.

    Args:
        env: Environment snapshot (e.g. dict(os.environ))
        *candidates: Scheduler names to look for

    Returns:
        True iff at least one candidate appears in a selector variable
    """
    selected = configured_selectors(env)
    match = any(c in selected for c in candidates)
    logger.debug(f"Selectors {sorted(selected)} match {list(candidates)}: {match}")
    return match


def is_isolated_goal(env: Mapping[str, str]) -> bool:
    """True when the current process is itself an isolated goal job."""
    return env.get(ISOLATED_GOAL_VARIABLE) == "true"
