"""Build dispatcher -- detect a component's build system and compile it.

Strategies are tried in a fixed order:

1. ``NativePackaging``: ``debian/`` present, so build *and* package via
   ``dpkg-buildpackage``; on failure fall through to the next strategy.
2. ``TaskRunner``: ``justfile`` / ``Justfile``.
3. ``Makefile``: traditional ``Makefile``.
4. ``CargoManifest``: bare ``Cargo.toml``.

Strategies 2-4 are terminal: once one is detected its result stands.
Every failure is raised as a ``ComponentError`` subclass; nothing here
aborts the run.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import stat
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field

from cosmic_deb.errors import BuildFailed, OutputValidationFailed
from cosmic_deb.runner import Runner, RunResult, run

logger = logging.getLogger(__name__)

JUSTFILE_NAMES: tuple[str, ...] = ("justfile", "Justfile")
VENDOR_BUNDLE = "vendor.tar"
NATIVE_PACKAGING_DIR = "debian"
NATIVE_METADATA_GLOBS = ("*.buildinfo", "*.changes")
RELEASE_OUTPUT_DIR = Path("target") / "release"
GENERIC_OUTPUT_DIR = "build"

_FAT_LTO = re.compile(r'^(?P<key>\s*lto\s*=\s*)(?:"fat"|true)\s*$', re.MULTILINE)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class BuildContext(BaseModel):
    """Everything a strategy needs to build one component."""

    model_config = ConfigDict(frozen=True)

    component: str
    source_dir: Path
    out_dir: Path
    jobs: int = Field(default=1, ge=1)
    env: dict[str, str] = Field(default_factory=dict)
    vendor: bool = True


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def find_justfile(source_dir: Path) -> Path | None:
    for name in JUSTFILE_NAMES:
        candidate = source_dir / name
        if candidate.is_file():
            return candidate
    return None


def relax_lto(source_dir: Path) -> bool:
    """Rewrite full LTO to thin LTO in ``Cargo.toml``. Returns True if changed."""
    manifest = source_dir / "Cargo.toml"
    if not manifest.is_file():
        return False
    text = manifest.read_text(encoding="utf-8")
    relaxed, count = _FAT_LTO.subn(r'\g<key>"thin"', text)
    if count:
        manifest.write_text(relaxed, encoding="utf-8")
        logger.info("Relaxed %d full-LTO profile(s) to thin in %s", count, manifest)
    return bool(count)


def validate_build_output(source_dir: Path) -> bool:
    """Confirm a plausible artifact exists after a zero-exit build.

    Strong signal: an executable regular file in ``target/release``.
    Weak signal: a ``build/`` directory exists at all.
    """
    release = source_dir / RELEASE_OUTPUT_DIR
    if release.is_dir():
        for entry in release.iterdir():
            try:
                mode = entry.stat().st_mode
            except OSError:
                continue
            if stat.S_ISREG(mode) and mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH):
                return True
    return (source_dir / GENERIC_OUTPUT_DIR).is_dir()


async def run_vendor(ctx: BuildContext, runner: Runner) -> None:
    """Best-effort ``just vendor``; failures are only logged."""
    if not ctx.vendor or find_justfile(ctx.source_dir) is None:
        return
    if (ctx.source_dir / VENDOR_BUNDLE).exists():
        return
    logger.info("Running 'just vendor' for %s", ctx.component)
    result = await runner("just", ["vendor"], cwd=ctx.source_dir, env=ctx.env)
    if not result.ok:
        logger.warning("Vendoring failed for %s (%s); continuing", ctx.component, result.describe_failure())


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class BuildStrategy:
    """Uniform interface for one build system."""

    name: ClassVar[str] = ""
    terminal: ClassVar[bool] = True
    packages_natively: ClassVar[bool] = False

    def detect(self, source_dir: Path) -> bool:
        raise NotImplementedError

    async def build(self, ctx: BuildContext, runner: Runner) -> RunResult:
        raise NotImplementedError

    async def install(self, ctx: BuildContext, stage_dir: Path, runner: Runner) -> RunResult | None:
        """Install into *stage_dir*; ``None`` means there is no install target."""
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"


class NativePackaging(BuildStrategy):
    """Upstream ships ``debian/``: let ``dpkg-buildpackage`` do everything."""

    name = "native-packaging"
    terminal = False
    packages_natively = True

    def detect(self, source_dir: Path) -> bool:
        return (source_dir / NATIVE_PACKAGING_DIR).is_dir()

    async def build(self, ctx: BuildContext, runner: Runner) -> RunResult:
        logger.info("Using debian/ directory for %s", ctx.component)
        await run_vendor(ctx, runner)
        return await runner(
            "dpkg-buildpackage", ["-us", "-uc", "-b"], cwd=ctx.source_dir, env=ctx.env,
        )

    @staticmethod
    def snapshot(ctx: BuildContext) -> frozenset[str]:
        """Names of packaging files already beside the source tree."""
        parent = ctx.source_dir.parent
        patterns = ("*.deb", *NATIVE_METADATA_GLOBS)
        return frozenset(p.name for pattern in patterns for p in parent.glob(pattern))

    @staticmethod
    def discard_metadata(ctx: BuildContext, preexisting: frozenset[str] = frozenset()) -> None:
        """Remove the ``.buildinfo``/``.changes`` files this build wrote."""
        parent = ctx.source_dir.parent
        for pattern in NATIVE_METADATA_GLOBS:
            for path in parent.glob(pattern):
                if path.name not in preexisting:
                    path.unlink(missing_ok=True)

    @staticmethod
    def collect_packages(ctx: BuildContext, preexisting: frozenset[str] = frozenset()) -> list[str]:
        """Move the ``.deb`` files this dpkg-buildpackage run left beside the source tree.

        Files named in *preexisting* belong to an earlier build and are
        left where they are.
        """
        NativePackaging.discard_metadata(ctx, preexisting)
        moved: list[str] = []
        for deb in sorted(ctx.source_dir.parent.glob("*.deb")):
            if deb.name in preexisting:
                logger.debug("Ignoring stale package %s", deb.name)
                continue
            target = ctx.out_dir / deb.name
            try:
                shutil.move(str(deb), str(target))
            except OSError as exc:
                logger.warning("Failed to move %s to output directory: %s", deb.name, exc)
                continue
            moved.append(deb.name)
        return moved


class TaskRunner(BuildStrategy):
    """``just``-driven builds (the common case upstream)."""

    name = "just"

    def detect(self, source_dir: Path) -> bool:
        return find_justfile(source_dir) is not None

    async def build(self, ctx: BuildContext, runner: Runner) -> RunResult:
        await run_vendor(ctx, runner)
        if (ctx.source_dir / VENDOR_BUNDLE).exists():
            return await runner("just", ["build-vendored"], cwd=ctx.source_dir, env=ctx.env)

        locked = await runner(
            "just", ["build-release", "--frozen"], cwd=ctx.source_dir, env=ctx.env,
        )
        if locked.ok:
            return locked
        logger.warning(
            "Frozen build failed for %s (%s); retrying without --frozen",
            ctx.component, locked.describe_failure(),
        )
        return await runner("just", ["build-release"], cwd=ctx.source_dir, env=ctx.env)

    async def install(self, ctx: BuildContext, stage_dir: Path, runner: Runner) -> RunResult | None:
        return await runner(
            "just",
            [f"rootdir={stage_dir}", f"DESTDIR={stage_dir}", "install"],
            cwd=ctx.source_dir,
            env=ctx.env,
        )


class Makefile(BuildStrategy):
    name = "make"

    def detect(self, source_dir: Path) -> bool:
        return (source_dir / "Makefile").is_file()

    async def build(self, ctx: BuildContext, runner: Runner) -> RunResult:
        return await runner(
            "make", [f"-j{ctx.jobs}", "ARGS=--frozen --release"],
            cwd=ctx.source_dir, env=ctx.env,
        )

    async def install(self, ctx: BuildContext, stage_dir: Path, runner: Runner) -> RunResult | None:
        return await runner(
            "make",
            ["prefix=/usr", "libexecdir=/usr/lib", f"DESTDIR={stage_dir}", "install"],
            cwd=ctx.source_dir,
            env=ctx.env,
        )


class CargoManifest(BuildStrategy):
    name = "cargo"

    def detect(self, source_dir: Path) -> bool:
        return (source_dir / "Cargo.toml").is_file()

    async def build(self, ctx: BuildContext, runner: Runner) -> RunResult:
        return await runner(
            "cargo", ["build", "--release", "--frozen", f"--jobs={ctx.jobs}"],
            cwd=ctx.source_dir, env=ctx.env,
        )


DEFAULT_STRATEGIES: tuple[BuildStrategy, ...] = (
    NativePackaging(),
    TaskRunner(),
    Makefile(),
    CargoManifest(),
)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class DispatchResult(BaseModel):
    """Which strategy built the component and what it produced."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    strategy: BuildStrategy
    packaged: bool = Field(
        default=False,
        description="True when the strategy also produced the .deb archives",
    )
    packages: list[str] = Field(default_factory=list)


class Dispatcher:
    """Try each applicable strategy in order, stopping at the first success."""

    __slots__ = ("_strategies", "_runner")

    def __init__(
        self,
        strategies: tuple[BuildStrategy, ...] = DEFAULT_STRATEGIES,
        *,
        runner: Runner = run,
    ) -> None:
        self._strategies = strategies
        self._runner = runner

    @property
    def strategies(self) -> tuple[BuildStrategy, ...]:
        return self._strategies

    def detect(self, source_dir: Path) -> list[BuildStrategy]:
        return [s for s in self._strategies if s.detect(source_dir)]

    async def dispatch(self, ctx: BuildContext) -> DispatchResult:
        """Build ``ctx.source_dir``.

        Raises
        ------
        BuildFailed
            No build system recognised, or the selected one failed.
        OutputValidationFailed
            The build exited zero but left no detectable artifact.
        """
        logger.info("Compiling component: %s", ctx.component)
        relax_lto(ctx.source_dir)

        applicable = self.detect(ctx.source_dir)
        if not applicable:
            raise BuildFailed(ctx.component, f"no recognized build system in {ctx.source_dir}")

        cause = ""
        for strategy in applicable:
            preexisting = NativePackaging.snapshot(ctx) if strategy.packages_natively else frozenset()
            result = await strategy.build(ctx, self._runner)
            if result.ok:
                return self._finish(ctx, strategy, preexisting)

            if strategy.packages_natively:
                NativePackaging.discard_metadata(ctx, preexisting)
            cause = result.describe_failure()
            if strategy.terminal:
                raise BuildFailed(ctx.component, cause)
            logger.warning(
                "%s build failed for %s (%s); falling back to the next build system",
                strategy.name, ctx.component, cause,
            )

        raise BuildFailed(ctx.component, cause)

    def _finish(
        self, ctx: BuildContext, strategy: BuildStrategy, preexisting: frozenset[str] = frozenset(),
    ) -> DispatchResult:
        if strategy.packages_natively:
            packages = NativePackaging.collect_packages(ctx, preexisting)
            if not packages:
                raise BuildFailed(ctx.component, "dpkg-buildpackage produced no .deb files")
            return DispatchResult(strategy=strategy, packaged=True, packages=packages)

        if not validate_build_output(ctx.source_dir):
            raise OutputValidationFailed(
                ctx.component,
                f"{strategy.name} exited 0 but no artifact was found under "
                f"{RELEASE_OUTPUT_DIR} or {GENERIC_OUTPUT_DIR}{os.sep}",
            )
        return DispatchResult(strategy=strategy)
