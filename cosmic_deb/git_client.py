"""Git client -- thin wrapper around the process runner for git operations.

Handles remote queries (default branch, release tags) and shallow
clones of upstream components.  No build logic, no filesystem layout
decisions.
"""

from __future__ import annotations

import logging
from pathlib import Path

from cosmic_deb.runner import Runner, run

logger = logging.getLogger(__name__)

FALLBACK_BRANCH = "main"
EPOCH_PREFIX = "epoch-"


def clone_url(url: str) -> str:
    """Return *url* with a ``.git`` suffix, as git remotes expect."""
    url = url.rstrip("/")
    return url if url.endswith(".git") else url + ".git"


async def _run_git(
    args: list[str],
    *,
    cwd: str | Path | None = None,
    runner: Runner = run,
    capture: bool = True,
) -> str:
    """Run a git command and return stdout. Raises on non-zero exit."""
    result = await runner("git", args, cwd=cwd, capture=capture)
    if not result.ok:
        err = (result.stderr or "").strip()
        logger.error("git %s failed (rc=%d): %s", " ".join(args), result.exit_code, err)
        raise RuntimeError(f"git {args[0]} failed: {err or result.exit_code}")
    return (result.stdout or "").strip()


def parse_symref_head(output: str) -> str | None:
    """Extract the branch name from ``git ls-remote --symref <url> HEAD``.

    The interesting line looks like ``ref: refs/heads/master\\tHEAD``.
    """
    for line in output.splitlines():
        if line.startswith("ref: refs/heads/"):
            ref = line.split()[1]
            return ref.removeprefix("refs/heads/")
    return None


def parse_tag_refs(output: str) -> list[str]:
    """Tag names from ``git ls-remote --tags`` output, peeled refs skipped."""
    tags: list[str] = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) != 2:
            continue
        ref = parts[1]
        if ref.endswith("^{}") or not ref.startswith("refs/tags/"):
            continue
        tags.append(ref.removeprefix("refs/tags/"))
    return tags


async def default_branch(url: str, *, runner: Runner = run) -> str:
    """Resolve the upstream default branch, falling back to ``main``."""
    try:
        out = await _run_git(["ls-remote", "--symref", clone_url(url), "HEAD"], runner=runner)
    except RuntimeError:
        logger.warning("Could not query default branch of %s; assuming '%s'", url, FALLBACK_BRANCH)
        return FALLBACK_BRANCH
    return parse_symref_head(out) or FALLBACK_BRANCH


async def list_tags(url: str, *, runner: Runner = run) -> list[str]:
    """List remote tags, newest version first."""
    out = await _run_git(
        ["ls-remote", "--tags", "--sort=-version:refname", clone_url(url)],
        runner=runner,
    )
    return parse_tag_refs(out)


async def latest_epoch_tag(url: str, *, runner: Runner = run) -> str | None:
    """Return the newest ``epoch-*`` tag of *url*, or ``None``."""
    try:
        tags = await list_tags(url, runner=runner)
    except RuntimeError:
        return None
    for tag in tags:
        if tag.startswith(EPOCH_PREFIX):
            return tag
    return None


async def clone_repo(
    url: str,
    dest: str | Path,
    *,
    ref: str | None = None,
    shallow: bool = True,
    runner: Runner = run,
) -> str:
    """Clone *url* into *dest* (optionally at *ref*). Returns the dest path."""
    args = ["clone"]
    if shallow:
        args.extend(["--depth", "1"])
    if ref:
        args.extend(["--branch", ref])
    args.extend([clone_url(url), str(dest)])

    parent = Path(dest).parent
    parent.mkdir(parents=True, exist_ok=True)
    await _run_git(args, cwd=parent, runner=runner, capture=False)
    return str(dest)
