"""Stager -- install a built component into an isolated filesystem root."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from cosmic_deb.dispatcher import BuildContext, BuildStrategy
from cosmic_deb.errors import EmptyStageError, StagingFailed, WorkspaceError
from cosmic_deb.runner import Runner, run

logger = logging.getLogger(__name__)

CONTROL_DIR = "DEBIAN"


def stage_dir_for(work_dir: str | Path, component: str) -> Path:
    return Path(work_dir) / f"{component}-stage"


def staging_has_content(stage_dir: str | Path) -> bool:
    """True when *stage_dir* holds anything besides ``DEBIAN/``."""
    try:
        return any(entry.name != CONTROL_DIR for entry in Path(stage_dir).iterdir())
    except OSError:
        return False


def create_stage_dir(stage_dir: Path) -> Path:
    """Create a fresh *stage_dir* with its ``DEBIAN/`` subdirectory.

    Leftovers from an interrupted run are removed first.  Raises
    ``WorkspaceError`` (fatal) when the directory cannot be created.
    """
    shutil.rmtree(stage_dir, ignore_errors=True)
    try:
        (stage_dir / CONTROL_DIR).mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise WorkspaceError(stage_dir, str(exc)) from exc
    return stage_dir


async def stage(
    ctx: BuildContext,
    strategy: BuildStrategy,
    stage_dir: Path,
    *,
    runner: Runner = run,
) -> Path:
    """Run *strategy*'s install target into *stage_dir* and verify the result.

    Raises
    ------
    WorkspaceError
        *stage_dir* could not be created.
    StagingFailed
        The strategy has no install target, or installation failed.
    EmptyStageError
        Installation succeeded but produced nothing to package.
    """
    create_stage_dir(stage_dir)
    logger.info("Staging %s into %s", ctx.component, stage_dir)

    result = await strategy.install(ctx, stage_dir, runner)
    if result is None:
        raise StagingFailed(ctx.component, f"{strategy.name} build system has no install target")
    if not result.ok:
        raise StagingFailed(ctx.component, result.describe_failure())

    if not staging_has_content(stage_dir):
        logger.warning("Empty stage for %s: nothing installed beyond %s/", ctx.component, CONTROL_DIR)
        raise EmptyStageError(ctx.component, stage_dir)
    return stage_dir
