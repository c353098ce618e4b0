# git.py
# Small, focused wrapper around the Git CLI.
# Used only to fill in the execution context (branch + commit) when the
# caller does not pass one explicitly.

from __future__ import annotations

import subprocess
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    This is the single low-level entry point for all Git operations in this
    file.

    Args:
        args: List of git arguments (e.g. ["rev-parse", "HEAD"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero (e.g. not a repo)
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str] = None) -> str:
    """
    Return the full SHA hash of the current HEAD commit.

    This becomes the commit reference of the execution context.
    """
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str] = None) -> Optional[str]:
    """
    Return the checked out branch name, or None on a detached HEAD.

    `git rev-parse --abbrev-ref HEAD` prints the literal "HEAD" when detached,
    which is never a meaningful branch for filter matching.
    """
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if name == "HEAD":
        return None
    return name
