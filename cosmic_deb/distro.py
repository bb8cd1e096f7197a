"""Host distribution identification from ``/etc/os-release``."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from cosmic_deb.contracts import HostDistro
from cosmic_deb.errors import ConfigError

logger = logging.getLogger(__name__)

OS_RELEASE = Path("/etc/os-release")

SUPPORTED_RELEASES: dict[str, frozenset[str]] = {
    "debian": frozenset({"bookworm", "trixie", "forky", "sid", "unstable", "testing"}),
    "ubuntu": frozenset({"jammy", "noble", "plucky", "devel"}),
}


def parse_os_release(text: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip("\"'")
    return values


def is_apt_based() -> bool:
    """``apt`` (or ``apt-get``) and ``dpkg`` are both on PATH."""
    has_apt = shutil.which("apt") is not None or shutil.which("apt-get") is not None
    return has_apt and shutil.which("dpkg") is not None


def detect(path: str | Path = OS_RELEASE) -> HostDistro:
    """Identify the host.

    The codename falls back to ``VERSION_ID``; Debian and Ubuntu hosts
    with neither are treated as ``sid``.
    """
    try:
        values = parse_os_release(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        logger.warning("Cannot read %s: %s", path, exc)
        values = {}

    distro_id = values.get("ID", "").lower()
    if not distro_id and is_apt_based():
        distro_id = "debian"
    codename = values.get("VERSION_CODENAME") or values.get("VERSION_ID", "")
    if not codename and distro_id in SUPPORTED_RELEASES:
        codename = "sid"
    return HostDistro(id=distro_id or "unknown", codename=codename)


def check_supported(distro: HostDistro) -> None:
    """Raise ``ConfigError`` unless the host can build and install ``.deb`` packages.

    Any host with ``apt`` and ``dpkg`` on PATH passes, as does any Debian
    or Ubuntu release.  Hosts outside ``SUPPORTED_RELEASES`` only earn a
    warning.
    """
    releases = SUPPORTED_RELEASES.get(distro.id)
    if releases is None:
        if not is_apt_based():
            raise ConfigError(
                f"Distribution '{distro.id}' is not supported. "
                "This tool requires an APT-based system with 'dpkg' (Debian/Ubuntu style)",
                detail={"id": distro.id, "codename": distro.codename},
            )
        logger.warning(
            "Untested distribution %s (%s); continuing on an APT-based host",
            distro.id, distro.codename or "unknown",
        )
        return
    if distro.codename not in releases:
        logger.warning(
            "Untested %s release '%s' (tested: %s); continuing",
            distro.id, distro.codename, ", ".join(sorted(releases)),
        )
        return
    logger.info("Detected distribution: %s (%s)", distro.id, distro.codename)
