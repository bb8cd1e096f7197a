"""Package assembler -- control-file synthesis and ``dpkg-deb`` invocation.

Also hosts the meta-package synthesizer, which is the same assembly
path with an empty payload and a dependency list instead of files.
"""

from __future__ import annotations

import logging
import os
import platform
import shutil
import tempfile
from collections.abc import Iterable, Mapping
from pathlib import Path

from cosmic_deb.contracts import PackageSection, PackageSpec
from cosmic_deb.errors import MetadataError, PackagingFailed
from cosmic_deb.metadata import ComponentMetadata
from cosmic_deb.runner import Runner, run
from cosmic_deb.stager import CONTROL_DIR, create_stage_dir, stage_dir_for

logger = logging.getLogger(__name__)

ELF_MAGIC = b"\x7fELF"
SHLIBS_PREFIX = "shlibs:Depends="

_DEBIAN_ARCH: Mapping[str, str] = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "armhf",
    "armv6l": "armhf",
    "armhf": "armhf",
    "i386": "i386",
    "i586": "i386",
    "i686": "i386",
    "ppc64le": "ppc64el",
    "riscv64": "riscv64",
    "s390x": "s390x",
}

# dpkg-shlibdeps refuses to run without a source control file
_STUB_CONTROL = "Source: cosmic-deb-shlibs\n\nPackage: cosmic-deb-shlibs\nArchitecture: any\n"


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------


def host_arch(machine: str | None = None) -> str:
    """Map ``platform.machine()`` to the Debian architecture name."""
    machine = (machine or platform.machine()).lower()
    return _DEBIAN_ARCH.get(machine, machine)


def file_version(version: str, codename: str) -> str:
    """``1.2.3`` + ``bookworm`` → ``1.2.3~bookworm``; no suffix without a codename."""
    return f"{version}~{codename}" if codename else version


def component_description(name: str) -> str:
    return (
        f"COSMIC Desktop Environment component: {name}\n"
        "Built from upstream source via the cosmic-deb build tool."
    )


META_DESCRIPTION = (
    "COSMIC Desktop Environment meta package\n"
    "This meta package installs the complete COSMIC Desktop Environment\n"
    "by declaring dependencies on all COSMIC component packages built\n"
    "by the cosmic-deb build tool."
)


# ---------------------------------------------------------------------------
# Shared-library dependencies
# ---------------------------------------------------------------------------


def find_elf_files(stage_dir: Path) -> list[Path]:
    """Regular files under *stage_dir* (outside ``DEBIAN/``) with an ELF header."""
    found: list[Path] = []
    for root, dirs, files in os.walk(stage_dir):
        if Path(root) == stage_dir and CONTROL_DIR in dirs:
            dirs.remove(CONTROL_DIR)
        for name in sorted(files):
            path = Path(root) / name
            if path.is_symlink() or not path.is_file():
                continue
            try:
                with open(path, "rb") as fh:
                    if fh.read(4) == ELF_MAGIC:
                        found.append(path)
            except OSError:
                continue
    return found


def parse_shlibs_output(output: str) -> list[str]:
    """Dependencies from ``dpkg-shlibdeps -O`` (``shlibs:Depends=a, b (>= 1)``)."""
    for line in output.splitlines():
        if line.startswith(SHLIBS_PREFIX):
            value = line.removeprefix(SHLIBS_PREFIX)
            return [dep.strip() for dep in value.split(",") if dep.strip()]
    return []


async def resolve_shlibs(stage_dir: Path, *, runner: Runner = run) -> list[str]:
    """Resolve shared-library dependencies of the staged binaries.

    Advisory: any failure is logged and yields an empty list.
    """
    binaries = find_elf_files(stage_dir)
    if not binaries:
        return []

    with tempfile.TemporaryDirectory(prefix="cosmic-deb-shlibs-") as scratch:
        debian = Path(scratch) / "debian"
        debian.mkdir()
        (debian / "control").write_text(_STUB_CONTROL, encoding="utf-8")
        result = await runner(
            "dpkg-shlibdeps",
            ["-O", "--ignore-missing-info", f"-S{stage_dir}", *(str(b) for b in binaries)],
            cwd=scratch,
            capture=True,
        )

    if not result.ok:
        logger.warning(
            "Could not resolve shared-library dependencies for %s (%s); omitting them",
            stage_dir.name, result.describe_failure(),
        )
        return []
    return parse_shlibs_output(result.stdout)


# ---------------------------------------------------------------------------
# Control file
# ---------------------------------------------------------------------------


def _merge(*groups: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for group in groups:
        for item in group:
            seen.setdefault(item, None)
    return tuple(seen)


def build_package_spec(
    name: str,
    version: str,
    *,
    codename: str,
    arch: str,
    maintainer: str,
    metadata: ComponentMetadata,
    shlibs: Iterable[str] = (),
) -> PackageSpec:
    """Shared-library deps first, then the table-driven extras."""
    return PackageSpec(
        name=name,
        version=file_version(version, codename),
        arch=arch,
        section=metadata.section,
        depends=_merge(shlibs, metadata.depends),
        recommends=metadata.recommends,
        maintainer=maintainer,
        description=component_description(name),
    )


def write_control(spec: PackageSpec, stage_dir: Path) -> Path:
    """Write ``DEBIAN/control``. Raises ``MetadataError`` (fatal) on I/O failure."""
    control = stage_dir / CONTROL_DIR / "control"
    try:
        control.parent.mkdir(parents=True, exist_ok=True)
        control.write_text(spec.to_control(), encoding="utf-8")
        control.chmod(0o644)
    except OSError as exc:
        raise MetadataError(spec.name, control, str(exc)) from exc
    return control


async def assemble_package(
    spec: PackageSpec,
    stage_dir: Path,
    out_dir: Path,
    *,
    runner: Runner = run,
) -> Path:
    """``fakeroot dpkg-deb --build`` the staged root into *out_dir*."""
    write_control(spec, stage_dir)
    target = out_dir / spec.filename
    logger.info("Building Debian package: %s", spec.filename)
    result = await runner("fakeroot", ["dpkg-deb", "--build", str(stage_dir), str(target)])
    if not result.ok:
        raise PackagingFailed(spec.name, result.describe_failure())
    return target


async def package_component(
    name: str,
    version: str,
    stage_dir: Path,
    out_dir: Path,
    *,
    codename: str,
    arch: str,
    maintainer: str,
    metadata: ComponentMetadata,
    runner: Runner = run,
) -> Path:
    """Resolve shlibs, synthesise the control file and build the ``.deb``."""
    shlibs = await resolve_shlibs(stage_dir, runner=runner)
    spec = build_package_spec(
        name, version,
        codename=codename, arch=arch, maintainer=maintainer,
        metadata=metadata, shlibs=shlibs,
    )
    return await assemble_package(spec, stage_dir, out_dir, runner=runner)


# ---------------------------------------------------------------------------
# Meta package
# ---------------------------------------------------------------------------


async def build_meta_package(
    name: str,
    version: str,
    depends: list[str],
    *,
    work_dir: Path,
    out_dir: Path,
    codename: str,
    arch: str,
    maintainer: str,
    runner: Runner = run,
) -> Path:
    """Build the file-less umbrella package depending on every built component."""
    logger.info("Building meta package %s (%d dependencies)", name, len(depends))
    spec = PackageSpec(
        name=name,
        version=file_version(version, codename),
        arch=arch,
        section=PackageSection.X11,
        depends=tuple(depends),
        maintainer=maintainer,
        description=META_DESCRIPTION,
    )
    stage_dir = create_stage_dir(stage_dir_for(work_dir, name))
    try:
        return await assemble_package(spec, stage_dir, out_dir, runner=runner)
    finally:
        shutil.rmtree(stage_dir, ignore_errors=True)
