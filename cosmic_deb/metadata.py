"""Package metadata -- per-component tables and version resolution.

The per-component table is built once per run and exposed as a
read-only ``MappingProxyType``.  It can be replaced wholesale by a JSON
file (``COSMIC_DEB_METADATA_FILE``) of the form::

    {"cosmic-comp": {"depends": ["libegl1"], "recommends": [], "section": "x11"}}
"""

from __future__ import annotations

import json
import logging
import re
import tomllib
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, ValidationError

from cosmic_deb.contracts import PackageSection
from cosmic_deb.errors import ConfigError

logger = logging.getLogger(__name__)

FALLBACK_VERSION = "0.1.0"
BRANCH_META_VERSION = "0.0.0+main"

_CHANGELOG_HEAD = re.compile(r"^\S+\s+\(([^)]+)\)")


class ComponentMetadata(BaseModel):
    """Runtime relationships and archive section for one component."""

    model_config = ConfigDict(frozen=True)

    depends: tuple[str, ...] = ()
    recommends: tuple[str, ...] = ()
    section: PackageSection = PackageSection.X11


DEFAULT_METADATA = ComponentMetadata()


# ---------------------------------------------------------------------------
# Embedded tables
# ---------------------------------------------------------------------------

RUNTIME_DEPS: dict[str, tuple[str, ...]] = {
    "cosmic-comp": ("libegl1", "libwayland-server0"),
    "cosmic-session": (
        "cosmic-app-library", "cosmic-applets", "cosmic-bg", "cosmic-comp",
        "cosmic-files", "cosmic-greeter", "cosmic-icons", "cosmic-idle",
        "cosmic-launcher", "cosmic-notifications", "cosmic-osd", "cosmic-panel",
        "cosmic-randr", "cosmic-screenshot", "cosmic-settings",
        "cosmic-settings-daemon", "cosmic-workspaces", "fonts-open-sans",
        "gnome-keyring", "libsecret-1-0", "switcheroo-control",
        "xdg-desktop-portal-cosmic", "xwayland",
    ),
    "cosmic-files": ("xdg-utils",),
    "cosmic-applets": ("cosmic-icons",),
    "cosmic-greeter": ("adduser", "cosmic-comp", "cosmic-greeter-daemon", "cosmic-randr", "dbus"),
    "cosmic-settings": (
        "accountsservice", "cosmic-randr", "gettext", "iso-codes",
        "network-manager-gnome", "network-manager-openvpn",
        "network-manager-openvpn-gnome", "xkb-data",
    ),
    "cosmic-settings-daemon": ("acpid",),
    "cosmic-osd": ("pulseaudio-utils",),
    "cosmic-launcher": ("pop-launcher",),
    "cosmic-icons": ("pop-icon-theme",),
    "cosmic-initial-setup": ("cosmic-icons",),
    "cosmic-store": ("cosmic-icons",),
    "cosmic-player": ("gstreamer1.0-plugins-base", "gstreamer1.0-plugins-good"),
    "pop-launcher": ("qalc", "fd-find"),
}

RECOMMENDS: dict[str, tuple[str, ...]] = {
    "cosmic-comp": ("cosmic-session", "libgl1-mesa-dri"),
    "cosmic-session": (
        "cosmic-edit", "cosmic-player", "cosmic-store", "cosmic-term",
        "cosmic-wallpapers", "orca", "system-config-printer",
    ),
    "cosmic-applets": ("pipewire-pulse",),
    "cosmic-settings": ("adw-gtk3",),
    "cosmic-settings-daemon": ("playerctl",),
    "cosmic-greeter": ("xinit",),
}

ADMIN_SECTION: frozenset[str] = frozenset({
    "cosmic-session", "cosmic-files", "cosmic-applets", "cosmic-edit",
    "cosmic-store", "cosmic-bg", "cosmic-greeter", "cosmic-icons",
    "cosmic-osd", "cosmic-notifications", "cosmic-panel", "cosmic-launcher",
    "cosmic-screenshot", "cosmic-idle", "cosmic-workspaces",
    "cosmic-initial-setup", "cosmic-term", "cosmic-player",
    "cosmic-app-library", "cosmic-settings-daemon",
    "xdg-desktop-portal-cosmic", "pop-launcher",
})

UTILS_SECTION: frozenset[str] = frozenset({"cosmic-settings", "cosmic-randr", "pop-launcher"})


def section_for(name: str) -> PackageSection:
    """``utils`` wins over ``admin``; everything else is ``x11``."""
    if name in UTILS_SECTION:
        return PackageSection.UTILS
    if name in ADMIN_SECTION:
        return PackageSection.ADMIN
    return PackageSection.X11


def embedded_table() -> dict[str, ComponentMetadata]:
    names = set(RUNTIME_DEPS) | set(RECOMMENDS) | ADMIN_SECTION | UTILS_SECTION
    return {
        name: ComponentMetadata(
            depends=RUNTIME_DEPS.get(name, ()),
            recommends=RECOMMENDS.get(name, ()),
            section=section_for(name),
        )
        for name in sorted(names)
    }


def load_metadata_table(path: str | Path | None = None) -> Mapping[str, ComponentMetadata]:
    """Build the immutable per-component table.

    Parameters
    ----------
    path:
        Optional JSON file replacing the embedded table.  Blank or
        ``None`` → embedded table.

    Raises
    ------
    ConfigError
        When the override file is unreadable or malformed.
    """
    if not path:
        return MappingProxyType(embedded_table())

    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Failed to read metadata table '{path}': {exc}", detail={"path": str(path)}) from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Metadata table '{path}' must be a JSON object", detail={"path": str(path)})

    table: dict[str, ComponentMetadata] = {}
    for name, entry in raw.items():
        try:
            table[name] = ComponentMetadata.model_validate(entry)
        except ValidationError as exc:
            raise ConfigError(
                f"Invalid metadata for '{name}' in '{path}': {exc.errors()[0]['msg']}",
                detail={"path": str(path), "component": name},
            ) from exc
    logger.info("Loaded metadata for %d components from %s", len(table), path)
    return MappingProxyType(table)


def lookup(table: Mapping[str, ComponentMetadata], name: str) -> ComponentMetadata:
    return table.get(name, DEFAULT_METADATA)


# ---------------------------------------------------------------------------
# Version resolution
# ---------------------------------------------------------------------------


def strip_tag_prefix(tag: str) -> str:
    """``epoch-1.0.7`` → ``1.0.7``; ``v2.1`` → ``2.1``."""
    return tag.removeprefix("epoch-").removeprefix("v")


def version_from_changelog(source_dir: Path) -> str | None:
    """Upstream part of the top ``debian/changelog`` entry."""
    changelog = source_dir / "debian" / "changelog"
    try:
        with open(changelog, encoding="utf-8", errors="replace") as fh:
            first = fh.readline()
    except OSError:
        return None
    match = _CHANGELOG_HEAD.match(first)
    if not match:
        return None
    version = match.group(1).strip()
    # Debian revision
    cut = version.find("-")
    if cut > 0:
        version = version[:cut]
    return version or None


def version_from_cargo_toml(source_dir: Path) -> str | None:
    """``[package].version``, else ``[workspace.package].version``."""
    manifest = source_dir / "Cargo.toml"
    try:
        with open(manifest, "rb") as fh:
            data = tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError):
        return None

    candidates = (
        data.get("package", {}).get("version"),
        data.get("workspace", {}).get("package", {}).get("version"),
    )
    for value in candidates:
        # `version.workspace = true` parses to a table
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def resolve_version(source_dir: str | Path, tag: str | None = None) -> str:
    """Changelog → Cargo manifest → tag (prefix-stripped) → ``0.1.0``."""
    source_dir = Path(source_dir)
    version = version_from_changelog(source_dir) or version_from_cargo_toml(source_dir)
    if version:
        return version
    if tag:
        stripped = strip_tag_prefix(tag)
        if stripped:
            return stripped
    logger.warning("No version found for %s; using %s", source_dir.name, FALLBACK_VERSION)
    return FALLBACK_VERSION


def meta_version(global_tag: str = "", epoch_latest: str = "", *, use_branch: bool = False) -> str:
    """Version of the umbrella package."""
    if use_branch:
        return BRANCH_META_VERSION
    tag = global_tag or epoch_latest
    if tag:
        return strip_tag_prefix(tag) or FALLBACK_VERSION
    return FALLBACK_VERSION
