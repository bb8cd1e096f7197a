"""Tests for cosmic_deb.toolchain: build deps, environment, Rust setup."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from cosmic_deb import toolchain
from cosmic_deb.errors import ToolchainError


class TestBuildDeps:
    def test_global_first_then_component_extras(self):
        deps = toolchain.collect_build_deps(["cosmic-settings-daemon"])
        assert deps[: len(toolchain.GLOBAL_BUILD_DEPS)] == list(toolchain.GLOBAL_BUILD_DEPS)
        assert "pulseaudio-utils" in deps
        assert len(deps) == len(set(deps))

    def test_unknown_component_adds_nothing(self):
        assert toolchain.collect_build_deps(["not-a-component"]) == list(toolchain.GLOBAL_BUILD_DEPS)

    def test_all_components(self):
        assert "libgstreamer1.0-dev" in toolchain.collect_build_deps()


class TestBuildEnv:
    def test_env_overrides(self):
        environ = {"PATH": "/usr/bin:/bin", "HOME": "/home/b", "RUSTFLAGS": "-C opt-level=3"}
        env = toolchain.build_env(jobs=3, linker_flags="-C link-arg=-fuse-ld=lld", environ=environ)
        assert env["RUSTFLAGS"] == "-C opt-level=3 -C link-arg=-fuse-ld=lld"
        assert env["PATH"] == f"/home/b/.cargo/bin{os.pathsep}/usr/bin:/bin"
        assert env["CARGO_BUILD_JOBS"] == "3"

    def test_cargo_home_respected(self):
        env = toolchain.build_env(jobs=1, linker_flags="", environ={"CARGO_HOME": "/opt/cargo", "PATH": "/bin"})
        assert env["PATH"].split(os.pathsep)[0] == "/opt/cargo/bin"
        assert env["RUSTFLAGS"] == ""

    def test_idempotent(self):
        environ = {"PATH": "/c/bin:/bin", "CARGO_HOME": "/c", "RUSTFLAGS": "-C link-arg=-fuse-ld=lld"}
        env = toolchain.build_env(jobs=2, linker_flags="-C link-arg=-fuse-ld=lld", environ=environ)
        assert env["PATH"] == "/c/bin:/bin"
        assert env["RUSTFLAGS"] == "-C link-arg=-fuse-ld=lld"

    def test_does_not_touch_os_environ(self, monkeypatch):
        monkeypatch.setenv("RUSTFLAGS", "")
        toolchain.build_env(jobs=2, linker_flags="-C x")
        assert os.environ["RUSTFLAGS"] == ""


class TestInstall:
    @pytest.mark.asyncio
    async def test_missing_packages(self, fake_runner):
        fake_runner.on("dpkg-query", "-W", "-f=${Status}", "git", stdout="install ok installed")
        fake_runner.on("dpkg-query", "-W", "-f=${Status}", "just", exit_code=1)
        missing = await toolchain.missing_packages(["git", "just"], runner=fake_runner)
        assert missing == ["just"]

    @pytest.mark.asyncio
    async def test_nothing_to_install(self, fake_runner):
        fake_runner.on("dpkg-query", stdout="install ok installed")
        await toolchain.install_build_deps(["git"], runner=fake_runner)
        assert fake_runner.calls_to("apt-get") == []
        assert fake_runner.calls_to("sudo") == []

    @pytest.mark.asyncio
    async def test_installs_via_sudo_when_not_root(self, fake_runner):
        fake_runner.on("dpkg-query", exit_code=1)
        with patch("cosmic_deb.toolchain.os.geteuid", return_value=1000):
            await toolchain.install_build_deps(["git", "just"], runner=fake_runner)
        call = fake_runner.calls_to("sudo")[0]
        assert call.args == ["apt-get", "install", "-y", "--no-install-recommends", "git", "just"]

    @pytest.mark.asyncio
    async def test_installs_directly_as_root(self, fake_runner):
        fake_runner.on("dpkg-query", exit_code=1)
        with patch("cosmic_deb.toolchain.os.geteuid", return_value=0):
            await toolchain.install_build_deps(["git"], runner=fake_runner)
        assert fake_runner.calls_to("apt-get", "install")

    @pytest.mark.asyncio
    async def test_apt_failure_is_fatal(self, fake_runner):
        fake_runner.on("dpkg-query", exit_code=1)
        fake_runner.on("apt-get", exit_code=100, stderr="E: Unable to locate package")
        with patch("cosmic_deb.toolchain.os.geteuid", return_value=0):
            with pytest.raises(ToolchainError, match="apt-get install"):
                await toolchain.install_build_deps(["nope"], runner=fake_runner)


class TestRust:
    @pytest.mark.asyncio
    async def test_rustup_present(self, fake_runner):
        await toolchain.ensure_rust_toolchain({}, runner=fake_runner)
        assert fake_runner.commands == ["rustup --version", "rustup default stable"]

    @pytest.mark.asyncio
    async def test_rustup_installed_when_missing(self, fake_runner):
        fake_runner.on("rustup", "--version", exit_code=127)
        await toolchain.ensure_rust_toolchain({}, runner=fake_runner)
        assert fake_runner.calls[1].program == "sh"
        assert "sh.rustup.rs" in fake_runner.calls[1].args[1]
        assert fake_runner.commands[-1] == "rustup default stable"

    @pytest.mark.asyncio
    async def test_rustup_default_failure(self, fake_runner):
        fake_runner.on("rustup", "default", exit_code=1)
        with pytest.raises(ToolchainError):
            await toolchain.ensure_rust_toolchain({}, runner=fake_runner)

    @pytest.mark.asyncio
    async def test_just_installed_when_missing(self, fake_runner):
        fake_runner.on("just", "--version", exit_code=127)
        await toolchain.ensure_just({"PATH": "/x"}, runner=fake_runner)
        assert fake_runner.commands[-1] == "cargo install just"
        assert fake_runner.calls[-1].env == {"PATH": "/x"}

    @pytest.mark.asyncio
    async def test_just_present(self, fake_runner):
        await toolchain.ensure_just({}, runner=fake_runner)
        assert fake_runner.commands == ["just --version"]
