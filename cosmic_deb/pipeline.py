"""Pipeline orchestrator -- sequence every component through the build stages.

Per component::

    acquire → resolve version → dispatch build ─┬─ native packaging → done
                                                └─ validate → stage → package

Components run strictly one after another; the thermal governor is
consulted between them.  ``ComponentError`` is contained here and turned
into a failed ``BuildOutcome``; ``FatalError`` propagates to the CLI.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Mapping, Sequence
from pathlib import Path

import httpx

from cosmic_deb import source
from cosmic_deb.components import effective_reference
from cosmic_deb.config import Settings
from cosmic_deb.contracts import BuildOutcome, Component, HostDistro, RunSummary
from cosmic_deb.dispatcher import BuildContext, Dispatcher
from cosmic_deb.errors import ComponentError, CosmicDebError, WorkspaceError
from cosmic_deb.metadata import ComponentMetadata, load_metadata_table, lookup, meta_version, resolve_version
from cosmic_deb.packager import build_meta_package, host_arch, package_component
from cosmic_deb.runner import Runner, run
from cosmic_deb.stager import stage, stage_dir_for
from cosmic_deb.thermal import ThermalGovernor, adjust_jobs
from cosmic_deb.toolchain import build_env

logger = logging.getLogger(__name__)


class Pipeline:
    """Runs the per-component build pipeline and the meta package step."""

    def __init__(
        self,
        settings: Settings,
        *,
        distro: HostDistro,
        governor: ThermalGovernor,
        epoch_latest: str = "",
        metadata: Mapping[str, ComponentMetadata] | None = None,
        runner: Runner = run,
        client: httpx.AsyncClient | None = None,
        dispatcher: Dispatcher | None = None,
        arch: str | None = None,
    ) -> None:
        self.settings = settings
        self.distro = distro
        self.governor = governor
        self.epoch_latest = epoch_latest
        self.metadata = metadata if metadata is not None else load_metadata_table(settings.METADATA_FILE)
        self.runner = runner
        self.client = client
        self.dispatcher = dispatcher or Dispatcher(runner=runner)
        self.arch = arch or settings.ARCH or host_arch()

        self.work_dir = Path(settings.WORK_DIR).resolve()
        self.out_dir = Path(settings.OUT_DIR).resolve()
        self.jobs = adjust_jobs(governor.profile, settings.JOBS)
        self.env = build_env(jobs=self.jobs, linker_flags=settings.LINKER_FLAGS)

    # -- workspace ---------------------------------------------------------

    def prepare_workspace(self) -> None:
        for path in (self.work_dir, self.out_dir):
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise WorkspaceError(path, str(exc)) from exc

    # -- per component -----------------------------------------------------

    async def process_component(self, component: Component) -> BuildOutcome:
        """Acquire, build, stage and package one component.

        Source acquisition failures are fatal and propagate; every
        later failure is returned as a failed outcome.  Source and stage
        directories are removed on every path.
        """
        tag = effective_reference(component, self.settings.GLOBAL_TAG, use_branch=self.settings.USE_BRANCH)
        source_dir = await source.acquire_source(
            component, tag, self.work_dir, runner=self.runner, client=self.client,
        )
        stage_dir = stage_dir_for(self.work_dir, component.name)
        try:
            version = resolve_version(source_dir, tag)
            logger.info("Version for %s: %s", component.name, version)
            ctx = BuildContext(
                component=component.name,
                source_dir=source_dir,
                out_dir=self.out_dir,
                jobs=self.jobs,
                env=self.env,
                vendor=self.settings.VENDOR_BEFORE_BUILD,
            )
            result = await self.dispatcher.dispatch(ctx)
            if result.packaged:
                logger.info(
                    "%s packaged natively: %s", component.name, ", ".join(result.packages),
                )
                return BuildOutcome.ok(component.name)

            await stage(ctx, result.strategy, stage_dir, runner=self.runner)
            deb = await package_component(
                component.name,
                version,
                stage_dir,
                self.out_dir,
                codename=self.distro.codename,
                arch=self.arch,
                maintainer=self.settings.maintainer,
                metadata=lookup(self.metadata, component.name),
                runner=self.runner,
            )
            logger.info("Built %s", deb.name)
            return BuildOutcome.ok(component.name)
        except ComponentError as exc:
            logger.error("Failed to build %s at %s stage: %s", component.name, exc.stage, exc.cause)
            return BuildOutcome.fail(component.name, exc.stage, exc.cause)
        finally:
            shutil.rmtree(source_dir, ignore_errors=True)
            shutil.rmtree(stage_dir, ignore_errors=True)

    # -- meta package ------------------------------------------------------

    async def build_meta(self, packaged: list[str]) -> str | None:
        """Synthesize the umbrella package. Failures are logged, not raised."""
        version = meta_version(
            self.settings.GLOBAL_TAG, self.epoch_latest, use_branch=self.settings.USE_BRANCH,
        )
        try:
            deb = await build_meta_package(
                self.settings.META_PACKAGE_NAME,
                version,
                packaged,
                work_dir=self.work_dir,
                out_dir=self.out_dir,
                codename=self.distro.codename,
                arch=self.arch,
                maintainer=self.settings.maintainer,
                runner=self.runner,
            )
        except CosmicDebError as exc:
            logger.error("Failed to build meta package %s: %s", self.settings.META_PACKAGE_NAME, exc)
            return None
        logger.info("Built meta package %s", deb.name)
        return self.settings.META_PACKAGE_NAME

    # -- whole run ---------------------------------------------------------

    async def run(self, components: Sequence[Component]) -> RunSummary:
        """Process *components* in order and return the end-of-run summary."""
        self.prepare_workspace()
        logger.info("Building %d component(s) with %d job(s)", len(components), self.jobs)

        outcomes: list[BuildOutcome] = []
        packaged: list[str] = []
        total = len(components)
        try:
            for index, component in enumerate(components, start=1):
                logger.info("[%d/%d] Processing %s", index, total, component.name)
                outcome = await self.process_component(component)
                outcomes.append(outcome)
                if outcome.success and outcome.package_name:
                    packaged.append(outcome.package_name)
                await self.governor.wait_between(index, total)
        finally:
            if self.client is None:
                await source.close_client()

        meta = None
        if packaged and not self.settings.ONLY:
            meta = await self.build_meta(packaged)

        summary = RunSummary(
            attempted=len(outcomes),
            packaged=packaged,
            outcomes=outcomes,
            meta_package=meta,
        )
        log_summary(summary, self.out_dir)
        return summary


def log_summary(summary: RunSummary, out_dir: Path) -> None:
    logger.info(
        "Packaged %d of %d component(s) into %s",
        len(summary.packaged), summary.attempted, out_dir,
    )
    for outcome in summary.failed:
        logger.warning("  %-32s failed at %s: %s", outcome.component, outcome.failing_stage.value, outcome.cause)
    if summary.meta_package:
        logger.info("Meta package: %s", summary.meta_package)
