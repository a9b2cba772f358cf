# git.py
# Small, focused wrapper around the Git CLI.
# Everything else asks this module for branch names and changed paths
# instead of calling subprocess("git ...") itself.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError on a non-zero exit
        FileNotFoundError if git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def _lines(out: str) -> List[str]:
    return out.splitlines() if out else []


def current_branch(cwd: Optional[str | Path] = None) -> Optional[str]:
    """Name of the checked-out branch, or None on a detached HEAD."""
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd)
    return None if name == "HEAD" else name


def is_dirty(cwd: Optional[str | Path] = None) -> bool:
    """True if there are modified, staged or untracked files."""
    return _git(["status", "--porcelain"], cwd) != ""


def merge_base(with_ref: str = "origin/master", cwd: Optional[str | Path] = None) -> str:
    """Commit SHA of the common ancestor of HEAD and `with_ref`."""
    return _git(["merge-base", "HEAD", with_ref], cwd)


def changed_files(base: str, head: str = "HEAD", cwd: Optional[str | Path] = None) -> List[str]:
    """Paths (relative to the repo root) changed between two refs."""
    return _lines(_git(["diff", "--name-only", f"{base}..{head}"], cwd))


def working_tree_changes(cwd: Optional[str | Path] = None) -> List[str]:
    """Unstaged + staged + untracked paths, sorted."""
    files = set()
    files.update(_lines(_git(["diff", "--name-only"], cwd)))
    files.update(_lines(_git(["diff", "--name-only", "--cached"], cwd)))
    files.update(_lines(_git(["ls-files", "--others", "--exclude-standard"], cwd)))
    return sorted(files)


def changed_paths(compare_ref: str = "origin/master", cwd: Optional[str | Path] = None) -> List[str]:
    """
    Paths a push of the current state would touch.

    - dirty tree: the working tree changes
    - clean tree: HEAD against its merge-base with `compare_ref`,
      falling back to HEAD~1 when `compare_ref` is unknown
    """
    if is_dirty(cwd):
        return working_tree_changes(cwd)
    try:
        base = merge_base(compare_ref, cwd)
    except subprocess.CalledProcessError:
        base = "HEAD~1"
    try:
        return changed_files(base, "HEAD", cwd)
    except subprocess.CalledProcessError:
        # first commit: everything tracked is new
        return _lines(_git(["ls-files"], cwd))
