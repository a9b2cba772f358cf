# events.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, Optional

from .git_facts.git import changed_paths as git_changed_paths
from .git_facts.git import current_branch
from .model import Event, EventKind, normalize_branch


def load_event(path: str | Path) -> Event:
    """
    Read an event descriptor from a JSON file:
        {"kind": "push", "branch": "master", "changed_paths": ["src/main.rs"]}
    """
    p = Path(path)
    data = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(data, dict) or "kind" not in data:
        raise ValueError(f"{p}: event must be a JSON object with at least a 'kind'")
    return Event.from_dict(data)


def build_event(
    kind: str,
    *,
    branch: Optional[str] = None,
    changed: Iterable[str] = (),
    from_git: bool = False,
    compare_ref: str = "origin/master",
    cwd: Optional[str | Path] = None,
) -> Event:
    """
    Event from CLI-style inputs. With `from_git`, missing branch / paths are
    taken from the repository at `cwd`.
    """
    event_kind = EventKind.parse(kind)
    paths = list(changed)

    if from_git and event_kind != EventKind.MANUAL_DISPATCH:
        if branch is None:
            branch = current_branch(cwd)
        if not paths:
            paths = git_changed_paths(compare_ref, cwd)

    return Event(
        kind=event_kind,
        branch=normalize_branch(branch) if branch else None,
        changed_paths=tuple(paths),
    )
