from __future__ import annotations

import shutil
import subprocess

import pytest

from matrixci.git_facts.git import changed_paths, current_branch, is_dirty

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def git(repo, *args):
    subprocess.run(
        ["git", "-c", "user.name=ci", "-c", "user.email=ci@example.com", "-c", "commit.gpgsign=false", *args],
        cwd=repo,
        check=True,
        capture_output=True,
    )


@pytest.fixture
def repo(tmp_path):
    git(tmp_path, "init", "-q")
    git(tmp_path, "checkout", "-q", "-b", "main")
    (tmp_path / "a.txt").write_text("a")
    git(tmp_path, "add", "a.txt")
    git(tmp_path, "commit", "-q", "-m", "first")
    return tmp_path


def test_branch_and_first_commit(repo):
    assert current_branch(repo) == "main"
    assert not is_dirty(repo)
    # no compare ref and no parent commit: everything tracked counts
    assert changed_paths("origin/master", repo) == ["a.txt"]


def test_last_commit_when_compare_ref_is_unknown(repo):
    (repo / "src").mkdir()
    (repo / "src" / "b.rs").write_text("b")
    git(repo, "add", ".")
    git(repo, "commit", "-q", "-m", "second")
    assert changed_paths("origin/master", repo) == ["src/b.rs"]


def test_dirty_tree_reports_working_changes(repo):
    (repo / "a.txt").write_text("changed")
    (repo / "new.md").write_text("new")
    assert is_dirty(repo)
    assert changed_paths("origin/master", repo) == ["a.txt", "new.md"]


def test_detached_head(repo):
    git(repo, "checkout", "-q", "--detach")
    assert current_branch(repo) is None
