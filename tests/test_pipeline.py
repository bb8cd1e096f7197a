"""Tests for cosmic_deb.pipeline: end-to-end runs against a fake runner.

Sources are pre-created in the work directory so acquisition reuses
them; every external tool call goes through ``FakeRunner``.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, call, patch

import pytest

from cosmic_deb.config import Settings
from cosmic_deb.contracts import BuildStage, Component, HostDistro, ThermalProfile
from cosmic_deb.errors import SourceAcquisitionError, WorkspaceError
from cosmic_deb.metadata import load_metadata_table
from cosmic_deb.pipeline import Pipeline
from cosmic_deb.thermal import ThermalGovernor


BOOKWORM = HostDistro(id="debian", codename="bookworm")
HIGH_END = ThermalProfile(
    physical_cores=4, logical_threads=8, is_low_end=False, max_concurrent_jobs=8,
)
LOW_END = ThermalProfile(
    physical_cores=2, logical_threads=2, is_low_end=True,
    max_concurrent_jobs=1, base_cooldown_s=900,
)
CARGO_1_2_3 = '[package]\nname = "cosmic-full"\nversion = "1.2.3"\n'


def _component(name: str, tag: str | None = "epoch-1.0.7") -> Component:
    return Component(name=name, url=f"https://github.com/pop-os/{name}", tag=tag)


def _settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "WORK_DIR": str(tmp_path / "work"),
        "OUT_DIR": str(tmp_path / "out"),
        "JOBS": 4,
        "GLOBAL_TAG": "epoch-1.0.7",
        "MAINTAINER_NAME": "Jane Doe",
        "MAINTAINER_EMAIL": "jane@example.com",
    }
    values.update(overrides)
    return Settings(**values)


def _pipeline(tmp_path, runner, *, profile=HIGH_END, **overrides) -> Pipeline:
    return Pipeline(
        _settings(tmp_path, **overrides),
        distro=BOOKWORM,
        governor=ThermalGovernor(profile, sampler=lambda: None),
        metadata=load_metadata_table(),
        runner=runner,
        arch="amd64",
    )


def _install_for(*names: str):
    """``just ... install`` effect that stages a file only for *names*."""

    def effect(c):
        if c.args[-1] != "install":
            return
        destdir = Path(next(a.split("=", 1)[1] for a in c.args if a.startswith("DESTDIR=")))
        component = destdir.name.removesuffix("-stage")
        if component in names:
            target = destdir / "usr" / "bin" / component
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text("#!/bin/sh\n")

    return effect


def _dpkg_deb(captured: dict[str, str]):
    """``fakeroot dpkg-deb --build`` effect: remember the control file, create the target."""

    def effect(c):
        stage_dir, target = Path(c.args[2]), Path(c.args[3])
        captured[target.name] = (stage_dir / "DEBIAN" / "control").read_text()
        target.write_bytes(b"!<arch>\n")

    return effect


# ═══════════════════════════════════════════════════════════════════════════
# Full runs
# ═══════════════════════════════════════════════════════════════════════════


class TestRun:
    @pytest.mark.asyncio
    async def test_empty_stage_is_contained_and_meta_lists_only_built(
        self, tmp_path, fake_runner, make_source, caplog,
    ):
        make_source("cosmic-empty")
        make_source("cosmic-full", cargo=CARGO_1_2_3)
        controls: dict[str, str] = {}
        fake_runner.on("just", effect=_install_for("cosmic-full"))
        fake_runner.on("fakeroot", effect=_dpkg_deb(controls))

        pipeline = _pipeline(tmp_path, fake_runner)
        with caplog.at_level("WARNING", logger="cosmic_deb.stager"):
            summary = await pipeline.run([_component("cosmic-empty"), _component("cosmic-full")])

        assert summary.attempted == 2
        assert summary.packaged == ["cosmic-full"]
        [failed] = summary.failed
        assert failed.component == "cosmic-empty"
        assert failed.failing_stage is BuildStage.STAGE
        assert "Empty stage for cosmic-empty" in caplog.text

        out = tmp_path / "out"
        assert sorted(p.name for p in out.iterdir()) == [
            "cosmic-desktop_1.0.7~bookworm_amd64.deb",
            "cosmic-full_1.2.3~bookworm_amd64.deb",
        ]
        assert not any(name.startswith("cosmic-empty") for name in controls)
        meta = controls["cosmic-desktop_1.0.7~bookworm_amd64.deb"]
        assert "Depends: cosmic-full\n" in meta
        assert summary.meta_package == "cosmic-desktop"

        component_control = controls["cosmic-full_1.2.3~bookworm_amd64.deb"]
        assert "Maintainer: Jane Doe <jane@example.com>\n" in component_control

    @pytest.mark.asyncio
    async def test_source_and_stage_dirs_removed(self, tmp_path, fake_runner, make_source):
        make_source("cosmic-empty")
        make_source("cosmic-full", cargo=CARGO_1_2_3)
        fake_runner.on("just", effect=_install_for("cosmic-full"))
        fake_runner.on("fakeroot", effect=_dpkg_deb({}))

        await _pipeline(tmp_path, fake_runner).run([_component("cosmic-empty"), _component("cosmic-full")])

        assert list((tmp_path / "work").iterdir()) == []

    @pytest.mark.asyncio
    async def test_only_skips_meta(self, tmp_path, fake_runner, make_source):
        make_source("cosmic-full", cargo=CARGO_1_2_3)
        fake_runner.on("just", effect=_install_for("cosmic-full"))
        fake_runner.on("fakeroot", effect=_dpkg_deb({}))

        pipeline = _pipeline(tmp_path, fake_runner, ONLY="cosmic-full")
        summary = await pipeline.run([_component("cosmic-full")])

        assert summary.packaged == ["cosmic-full"]
        assert summary.meta_package is None
        assert len(fake_runner.calls_to("fakeroot")) == 1

    @pytest.mark.asyncio
    async def test_nothing_packaged_means_no_meta(self, tmp_path, fake_runner, make_source):
        make_source("cosmic-plain", justfile=False, binary=False)
        summary = await _pipeline(tmp_path, fake_runner).run([_component("cosmic-plain")])

        [failed] = summary.failed
        assert failed.failing_stage is BuildStage.BUILD
        assert "no recognized build system" in failed.cause
        assert summary.packaged == []
        assert fake_runner.calls_to("fakeroot") == []

    @pytest.mark.asyncio
    async def test_build_failure_does_not_stop_later_components(
        self, tmp_path, fake_runner, make_source,
    ):
        make_source("cosmic-broken", binary=False)
        make_source("cosmic-full", cargo=CARGO_1_2_3)
        # the first component hits both build attempts; later calls succeed
        fake_runner.on("just", "build-release", "--frozen", exit_code=101, stderr="error[E0433]", times=1)
        fake_runner.on("just", "build-release", exit_code=101, stderr="error[E0433]", times=1)
        fake_runner.on("just", effect=_install_for("cosmic-full"))
        fake_runner.on("fakeroot", effect=_dpkg_deb({}))

        summary = await _pipeline(tmp_path, fake_runner).run(
            [_component("cosmic-broken"), _component("cosmic-full")],
        )

        assert [o.success for o in summary.outcomes] == [False, True]
        assert summary.outcomes[0].failing_stage is BuildStage.BUILD
        assert "E0433" in summary.outcomes[0].cause
        assert summary.packaged == ["cosmic-full"]

    @pytest.mark.asyncio
    async def test_native_packaging(self, tmp_path, fake_runner, make_source):
        make_source(
            "cosmic-native",
            changelog="cosmic-native (2.0.0-1) unstable; urgency=medium\n",
            binary=False,
        )

        def leave_deb(c):
            (Path(c.cwd).parent / "cosmic-native_2.0.0-1_amd64.deb").write_bytes(b"!<arch>\n")

        fake_runner.on("dpkg-buildpackage", effect=leave_deb)
        fake_runner.on("fakeroot", effect=_dpkg_deb({}))

        summary = await _pipeline(tmp_path, fake_runner).run([_component("cosmic-native")])

        assert summary.packaged == ["cosmic-native"]
        assert (tmp_path / "out" / "cosmic-native_2.0.0-1_amd64.deb").is_file()
        # only the meta package goes through dpkg-deb
        [meta] = fake_runner.calls_to("fakeroot")
        assert Path(meta.args[3]).name.startswith("cosmic-desktop_")

    @pytest.mark.asyncio
    async def test_branch_mode_meta_version(self, tmp_path, fake_runner, make_source):
        make_source("cosmic-full", cargo=CARGO_1_2_3)
        fake_runner.on("just", effect=_install_for("cosmic-full"))
        fake_runner.on("fakeroot", effect=_dpkg_deb({}))

        pipeline = _pipeline(tmp_path, fake_runner, GLOBAL_TAG="", USE_BRANCH=True)
        await pipeline.run([_component("cosmic-full", tag=None)])

        assert (tmp_path / "out" / "cosmic-desktop_0.0.0+main~bookworm_amd64.deb").is_file()


# ═══════════════════════════════════════════════════════════════════════════
# Fatal paths and wiring
# ═══════════════════════════════════════════════════════════════════════════


class TestFatalAndWiring:
    @pytest.mark.asyncio
    async def test_acquisition_failure_propagates(self, tmp_path, fake_runner):
        err = SourceAcquisitionError("cosmic-bg", "epoch-1.0.7", "git clone failed")
        with patch("cosmic_deb.source.acquire_source", new=AsyncMock(side_effect=err)):
            with pytest.raises(SourceAcquisitionError):
                await _pipeline(tmp_path, fake_runner).run([_component("cosmic-bg")])

    def test_workspace_failure(self, tmp_path, fake_runner):
        blocker = tmp_path / "file"
        blocker.write_text("")
        pipeline = _pipeline(tmp_path, fake_runner, WORK_DIR=str(blocker / "work"))
        with pytest.raises(WorkspaceError):
            pipeline.prepare_workspace()

    @pytest.mark.asyncio
    async def test_governor_consulted_after_each_component(self, tmp_path, fake_runner, make_source):
        make_source("a", justfile=False, binary=False)
        make_source("b", justfile=False, binary=False)
        pipeline = _pipeline(tmp_path, fake_runner)
        with patch.object(pipeline.governor, "wait_between", new=AsyncMock(return_value=0.0)) as wait:
            await pipeline.run([_component("a"), _component("b")])
        assert wait.await_args_list == [call(1, 2), call(2, 2)]

    def test_low_end_host_caps_jobs(self, tmp_path, fake_runner):
        pipeline = _pipeline(tmp_path, fake_runner, profile=LOW_END, JOBS=8)
        assert pipeline.jobs == 1
        assert pipeline.env["CARGO_BUILD_JOBS"] == "1"

    def test_high_end_host_keeps_jobs(self, tmp_path, fake_runner):
        pipeline = _pipeline(tmp_path, fake_runner, JOBS=6)
        assert pipeline.jobs == 6
