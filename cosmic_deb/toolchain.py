"""Host toolchain -- build-dependency tables, apt installation, Rust setup.

Also owns ``build_env()``: the explicit per-invocation environment every
compile receives (cargo bin on ``PATH``, fast linker in ``RUSTFLAGS``,
bounded ``CARGO_BUILD_JOBS``).  Nothing here mutates ``os.environ``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from pathlib import Path

from cosmic_deb.errors import ToolchainError
from cosmic_deb.runner import Runner, run

logger = logging.getLogger(__name__)

RUSTUP_INSTALL_SCRIPT = "curl --proto '=https' --tlsv1.2 -sSf https://sh.rustup.rs | sh -s -- -y"

# ---------------------------------------------------------------------------
# Build dependency tables
# ---------------------------------------------------------------------------

GLOBAL_BUILD_DEPS: tuple[str, ...] = (
    "build-essential", "cargo", "clang", "cmake", "curl", "debhelper",
    "desktop-file-utils", "devscripts", "git", "imagemagick", "intltool",
    "iso-codes", "libclang-dev", "libdbus-1-dev", "libdisplay-info-dev",
    "libegl-dev", "libegl1-mesa-dev", "libexpat1-dev", "libflatpak-dev",
    "libfontconfig-dev", "libfreetype-dev", "libgbm-dev", "libglib2.0-dev",
    "libgstreamer-plugins-base1.0-dev", "libgstreamer1.0-dev", "libinput-dev",
    "libnm-dev", "libpam-dev", "libpipewire-0.3-dev", "libpixman-1-dev",
    "libpulse-dev", "libseat-dev", "libssl-dev", "libsystemd-dev",
    "libudev-dev", "libwayland-dev", "libxcb-render0-dev", "libxcb-shape0-dev",
    "libxcb-xfixes0-dev", "libxcb1-dev", "libxkbcommon-dev", "lld", "mold",
    "nasm", "pkg-config", "rustc", "fakeroot", "dh-cargo", "ninja-build",
    "meson", "sassc", "quilt", "libfile-fcntllock-perl", "dh-make",
    "dpkg-dev", "libglib2.0-dev-bin", "libwayland-bin", "libxml2-utils",
    "libglib2.0-bin", "gettext", "itstool", "wayland-protocols",
    "libgdk-pixbuf2.0-dev", "dh-exec", "just", "rust-all",
)

COMPONENT_BUILD_DEPS: Mapping[str, tuple[str, ...]] = {
    "cosmic-comp": (
        "cargo", "cmake", "debhelper", "libegl1-mesa-dev", "libfontconfig-dev",
        "libgbm-dev", "libinput-dev", "libpixman-1-dev", "libseat-dev",
        "libsystemd-dev", "libudev-dev", "libwayland-dev", "libxcb1-dev",
        "libxkbcommon-dev", "libdisplay-info-dev", "rustc",
    ),
    "cosmic-session": ("debhelper", "cargo", "just"),
    "cosmic-files": (
        "debhelper", "git", "just", "libclang-dev", "libglib2.0-dev",
        "libxkbcommon-dev", "pkg-config",
    ),
    "cosmic-applets": (
        "debhelper", "rustc", "cargo", "libclang-dev", "libdbus-1-dev",
        "libegl-dev", "libpulse-dev", "libpipewire-0.3-dev", "libudev-dev",
        "libxkbcommon-dev", "libwayland-dev", "libinput-dev", "just", "pkg-config",
    ),
    "cosmic-edit": ("debhelper", "git", "just", "pkg-config", "libglib2.0-dev", "libxkbcommon-dev"),
    "cosmic-store": (
        "debhelper", "git", "just", "libflatpak-dev", "libssl-dev",
        "libxkbcommon-dev", "pkg-config",
    ),
    "cosmic-bg": ("debhelper", "just", "libwayland-dev", "libxkbcommon-dev", "mold", "nasm", "pkg-config"),
    "cosmic-greeter": (
        "debhelper", "git", "just", "libclang-dev", "libinput-dev", "libpam-dev",
        "libwayland-dev", "libxkbcommon-dev", "pkg-config",
    ),
    "cosmic-settings": (
        "debhelper", "cmake", "just", "libclang-dev", "libexpat1-dev",
        "libfontconfig-dev", "libfreetype-dev", "libinput-dev",
        "libpipewire-0.3-dev", "libudev-dev", "libwayland-dev",
        "libxkbcommon-dev", "mold", "pkg-config",
    ),
    "cosmic-settings-daemon": (
        "debhelper", "cargo", "libudev-dev", "libinput-dev", "libssl-dev",
        "libxkbcommon-dev", "pulseaudio-utils", "pkg-config",
    ),
    "xdg-desktop-portal-cosmic": (
        "debhelper", "cargo", "libclang-dev", "libglib2.0-dev", "libegl-dev",
        "libgbm-dev", "libpipewire-0.3-dev", "libwayland-dev",
        "libxkbcommon-dev", "pkg-config",
    ),
    "cosmic-app-library": ("debhelper", "just", "pkg-config", "libxkbcommon-dev", "libwayland-dev"),
    "cosmic-icons": ("debhelper", "just"),
    "cosmic-panel": (
        "debhelper", "just", "cargo", "libwayland-dev", "libxkbcommon-dev",
        "pkg-config", "desktop-file-utils",
    ),
    "cosmic-notifications": (
        "debhelper", "rustc", "cargo", "just", "intltool", "libxkbcommon-dev",
        "libwayland-dev", "pkg-config",
    ),
    "cosmic-osd": (
        "debhelper", "cargo", "just", "libclang-dev", "libinput-dev",
        "libpulse-dev", "libudev-dev", "libpipewire-0.3-dev",
        "libxkbcommon-dev", "libwayland-dev", "pkg-config",
    ),
    "cosmic-launcher": (
        "debhelper", "rustc", "cargo", "just", "intltool", "libxkbcommon-dev",
        "libwayland-dev", "pkg-config",
    ),
    "cosmic-screenshot": ("debhelper", "just"),
    "cosmic-idle": ("debhelper", "cargo", "just", "libxkbcommon-dev", "libwayland-dev", "pkg-config"),
    "cosmic-randr": ("cargo", "debhelper", "just", "libwayland-dev", "pkg-config", "rustc"),
    "cosmic-wallpapers": ("debhelper", "imagemagick"),
    "cosmic-workspaces": (
        "debhelper", "cargo", "libegl1-mesa-dev", "libgbm-dev", "libinput-dev",
        "libudev-dev", "libxkbcommon-dev", "libwayland-dev", "pkg-config",
    ),
    "cosmic-initial-setup": (
        "debhelper", "git", "just", "libflatpak-dev", "libinput-dev",
        "libssl-dev", "libudev-dev", "libxkbcommon-dev", "pkg-config",
    ),
    "pop-launcher": ("cargo", "debhelper", "just", "pkg-config", "rustc", "libxkbcommon-dev", "libegl-dev"),
    "cosmic-term": ("debhelper", "git", "just", "pkg-config", "libxkbcommon-dev"),
    "cosmic-player": (
        "clang", "debhelper", "just", "libgstreamer1.0-dev",
        "libgstreamer-plugins-base1.0-dev", "libxkbcommon-dev", "pkg-config",
    ),
}


def collect_build_deps(components: Iterable[str] | None = None) -> list[str]:
    """Global deps plus the per-component ones, de-duplicated in order.

    *components* limits the per-component tables; ``None`` means all.
    """
    names = list(COMPONENT_BUILD_DEPS) if components is None else list(components)
    seen: dict[str, None] = dict.fromkeys(GLOBAL_BUILD_DEPS)
    for name in names:
        for dep in COMPONENT_BUILD_DEPS.get(name, ()):
            seen.setdefault(dep, None)
    return list(seen)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


def cargo_bin_dir(environ: Mapping[str, str] | None = None) -> Path:
    environ = os.environ if environ is None else environ
    cargo_home = environ.get("CARGO_HOME")
    if not cargo_home:
        home = environ.get("HOME") or str(Path.home())
        cargo_home = str(Path(home) / ".cargo")
    return Path(cargo_home) / "bin"


def build_env(
    *,
    jobs: int,
    linker_flags: str,
    environ: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Per-invocation overrides for every build tool call."""
    environ = os.environ if environ is None else environ

    rustflags = environ.get("RUSTFLAGS", "").strip()
    if linker_flags and linker_flags not in rustflags:
        rustflags = f"{rustflags} {linker_flags}".strip()

    bin_dir = str(cargo_bin_dir(environ))
    path = environ.get("PATH", "")
    if bin_dir not in path.split(os.pathsep):
        path = f"{bin_dir}{os.pathsep}{path}" if path else bin_dir

    return {
        "RUSTFLAGS": rustflags,
        "PATH": path,
        "CARGO_BUILD_JOBS": str(jobs),
    }


# ---------------------------------------------------------------------------
# Installation
# ---------------------------------------------------------------------------


async def missing_packages(packages: Iterable[str], *, runner: Runner = run) -> list[str]:
    """Packages whose ``dpkg-query`` status is not "install ok installed"."""
    missing: list[str] = []
    for pkg in packages:
        result = await runner("dpkg-query", ["-W", "-f=${Status}", pkg], capture=True)
        if not result.ok or "installed" not in result.stdout.split():
            missing.append(pkg)
    return missing


async def install_build_deps(
    packages: list[str],
    *,
    runner: Runner = run,
) -> None:
    """``apt-get install`` whatever is missing (via sudo when not root)."""
    missing = await missing_packages(packages, runner=runner)
    if not missing:
        logger.info("All %d build dependencies already installed", len(packages))
        return

    logger.info("Installing %d build dependencies (may require sudo password)", len(missing))
    args = ["install", "-y", "--no-install-recommends", *missing]
    if os.geteuid() == 0:
        result = await runner("apt-get", args)
    else:
        result = await runner("sudo", ["apt-get", *args])
    if not result.ok:
        raise ToolchainError("apt-get install", result.describe_failure())


async def ensure_rust_toolchain(env: Mapping[str, str], *, runner: Runner = run) -> None:
    """Install rustup if absent and select the stable toolchain."""
    version = await runner("rustup", ["--version"], env=env, capture=True)
    if not version.ok:
        logger.info("rustup not found in PATH; installing via sh.rustup.rs")
        result = await runner("sh", ["-c", RUSTUP_INSTALL_SCRIPT], env=env)
        if not result.ok:
            raise ToolchainError("rustup install", result.describe_failure())

    logger.info("Configuring Rust stable toolchain via rustup")
    result = await runner("rustup", ["default", "stable"], env=env)
    if not result.ok:
        raise ToolchainError("rustup default stable", result.describe_failure())


async def ensure_just(env: Mapping[str, str], *, runner: Runner = run) -> None:
    """Install ``just`` through cargo when it is not on PATH."""
    version = await runner("just", ["--version"], env=env, capture=True)
    if version.ok:
        return
    logger.info("'just' not found in PATH; installing via cargo")
    result = await runner("cargo", ["install", "just"], env=env)
    if not result.ok:
        raise ToolchainError("cargo install just", result.describe_failure())


async def prepare_toolchain(
    components: Iterable[str],
    env: Mapping[str, str],
    *,
    runner: Runner = run,
) -> None:
    """Full host preparation: apt build deps, rustup stable, just."""
    await install_build_deps(collect_build_deps(components), runner=runner)
    await ensure_rust_toolchain(env, runner=runner)
    await ensure_just(env, runner=runner)
