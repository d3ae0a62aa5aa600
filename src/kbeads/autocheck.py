"""kbeads soft auto-checks -- advisory warnings that never block a session."""

import logging
import subprocess

logger = logging.getLogger("kbeads.autocheck")

UNCOMMITTED_WARNING = "you have uncommitted changes - run git add/commit/push"


def check_commit_push(cwd: str) -> str:
    """Warn if ``cwd`` is a git work tree with uncommitted changes.

    Returns an empty string when clean, not a repo, or git is unavailable.
    """
    if not cwd:
        return ""
    try:
        result = subprocess.run(
            ["git", "-C", cwd, "status", "--porcelain"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (subprocess.TimeoutExpired, FileNotFoundError, OSError) as e:
        logger.debug("autocheck: git status failed in %s: %s", cwd, e)
        return ""
    if result.returncode != 0:
        return ""
    if result.stdout.strip():
        return UNCOMMITTED_WARNING
    return ""
