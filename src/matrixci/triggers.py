# triggers.py
from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable, List, Optional, Tuple

from .model import Event, EventKind, Job, PathFilter, Pipeline, TriggerRule
from .ui.console import get_console


# ----------------------------------------------------------------------
# Path globs
# ----------------------------------------------------------------------
#   *   any run of characters except '/'
#   **  any run of characters, '/' included
#   ?   one character except '/'
#   []  character class
#   !   (leading) negation; the last matching pattern decides

@lru_cache(maxsize=512)
def glob_to_regex(pattern: str) -> re.Pattern:
    i, n = 0, len(pattern)
    out: List[str] = []
    while i < n:
        c = pattern[i]
        if c == "*":
            if i + 1 < n and pattern[i + 1] == "*":
                i += 2
                # '**/' also matches zero directories
                if i < n and pattern[i] == "/":
                    i += 1
                    out.append("(?:.*/)?")
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            j = pattern.find("]", i + 1)
            if j == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1:j]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = j
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("".join(out) + r"\Z")


def path_matches(path: str, pattern: str) -> bool:
    return glob_to_regex(pattern).match(path) is not None


def filter_matches(path: str, flt: PathFilter) -> bool:
    """True if the last pattern matching `path` is a positive one."""
    matched = False
    for pattern in flt.patterns:
        negated = pattern.startswith("!")
        if path_matches(path, pattern[1:] if negated else pattern):
            matched = not negated
    return matched


# ----------------------------------------------------------------------
# Event filtering
# ----------------------------------------------------------------------

def branch_allowed(branch: Optional[str], rule: TriggerRule) -> bool:
    # exact names only, no glob semantics for branches
    if rule.branches is not None and branch not in rule.branches:
        return False
    if rule.branches_ignore is not None and branch in rule.branches_ignore:
        return False
    return True


def paths_allowed(changed: Iterable[str], rule: TriggerRule) -> bool:
    changed = list(changed)
    if not changed:
        # e.g. a freshly created branch: never suppressed by path filters
        return True
    if rule.paths_ignore:
        if all(filter_matches(p, rule.paths_ignore) for p in changed):
            return False
    if rule.paths:
        if not any(filter_matches(p, rule.paths) for p in changed):
            return False
    return True


def explain(event: Event, pipeline: Pipeline) -> Tuple[bool, str]:
    """Decide whether `event` triggers `pipeline`, with a human readable reason."""
    rule = pipeline.triggers.get(event.kind)
    if rule is None:
        return False, f"event '{event.kind.value}' is not a configured trigger"

    if event.kind == EventKind.MANUAL_DISPATCH:
        return True, "manual dispatch (filters bypassed)"

    if not branch_allowed(event.branch, rule):
        return False, f"branch '{event.branch}' does not match the branch filter"

    if not paths_allowed(event.changed_paths, rule):
        return False, "every changed path is filtered out"

    if not event.changed_paths:
        return True, "no changed paths"
    return True, f"{len(event.changed_paths)} changed path(s) pass the path filter"


def evaluate(event: Event, pipeline: Pipeline) -> List[Job]:
    """
    Jobs eligible to run for `event`, in declaration order.

    An empty list means the run is a no-op, not an error.
    """
    triggered, reason = explain(event, pipeline)
    get_console().print_debug(f"trigger: {reason}")
    if not triggered:
        return []
    return list(pipeline.jobs)
