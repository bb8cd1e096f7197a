"""Component list -- the embedded upstream list, repos.json loading and refresh.

The list is loaded once at startup and never mutated; ``refresh`` builds
a new ``ComponentList`` from upstream tags rather than editing in place.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import date
from pathlib import Path

from pydantic import ValidationError

from cosmic_deb import git_client
from cosmic_deb.contracts import Component, ComponentList
from cosmic_deb.errors import ConfigError
from cosmic_deb.runner import Runner, run

logger = logging.getLogger(__name__)

BUILT_IN = "built-in"
DEFAULT_OUTPUT_NAME = "repos.json"
SHARE_DIR = Path("/usr/share/cosmic-deb")

_POP_OS = "https://github.com/pop-os"
_EPOCH = "epoch-1.0.7"

# (component name, upstream repository)
_BUILT_IN_REPOS: tuple[tuple[str, str], ...] = (
    ("cosmic-app-library", "cosmic-applibrary"),
    ("cosmic-applets", "cosmic-applets"),
    ("cosmic-bg", "cosmic-bg"),
    ("cosmic-comp", "cosmic-comp"),
    ("cosmic-edit", "cosmic-edit"),
    ("cosmic-files", "cosmic-files"),
    ("cosmic-greeter", "cosmic-greeter"),
    ("cosmic-icons", "cosmic-icons"),
    ("cosmic-idle", "cosmic-idle"),
    ("cosmic-initial-setup", "cosmic-initial-setup"),
    ("cosmic-launcher", "cosmic-launcher"),
    ("cosmic-notifications", "cosmic-notifications"),
    ("cosmic-osd", "cosmic-osd"),
    ("cosmic-panel", "cosmic-panel"),
    ("cosmic-player", "cosmic-player"),
    ("cosmic-randr", "cosmic-randr"),
    ("cosmic-screenshot", "cosmic-screenshot"),
    ("cosmic-session", "cosmic-session"),
    ("cosmic-settings", "cosmic-settings"),
    ("cosmic-settings-daemon", "cosmic-settings-daemon"),
    ("cosmic-store", "cosmic-store"),
    ("cosmic-term", "cosmic-term"),
    ("cosmic-wallpapers", "cosmic-wallpapers"),
    ("cosmic-workspaces", "cosmic-workspaces-epoch"),
    ("pop-launcher", "launcher"),
    ("xdg-desktop-portal-cosmic", "xdg-desktop-portal-cosmic"),
)


def built_in() -> ComponentList:
    """The embedded component list, pinned to the current epoch release."""
    return ComponentList(
        generated_at="2026-02-22",
        epoch_latest=_EPOCH,
        repos=[
            Component(name=name, url=f"{_POP_OS}/{repo}", tag=_EPOCH)
            for name, repo in _BUILT_IN_REPOS
        ],
    )


# ---------------------------------------------------------------------------
# Loading / writing
# ---------------------------------------------------------------------------


def _candidate_paths(path: str) -> list[Path]:
    candidates = [Path(path)]
    if not Path(path).is_absolute():
        candidates.append(Path(sys.argv[0]).resolve().parent / path)
        candidates.append(SHARE_DIR / path)
    return candidates


def load_component_list(path: str = BUILT_IN) -> tuple[ComponentList, str]:
    """Load the component list and return it with the path it came from.

    Relative paths are searched in the working directory, beside the
    executable, then under ``/usr/share/cosmic-deb``.

    Raises
    ------
    ConfigError
        When no candidate is readable or the JSON is invalid / empty.
    """
    if path == BUILT_IN:
        return built_in(), BUILT_IN

    candidates = _candidate_paths(path)
    for candidate in candidates:
        try:
            raw = candidate.read_text(encoding="utf-8")
        except OSError:
            continue
        try:
            return ComponentList.model_validate_json(raw), str(candidate)
        except ValidationError as exc:
            raise ConfigError(
                f"Failed to parse component list '{candidate}': {exc.errors()[0]['msg']}",
                detail={"path": str(candidate)},
            ) from exc

    searched = ", ".join(str(c) for c in candidates)
    raise ConfigError(
        f"Failed to read component list '{path}' (searched: {searched}). "
        "Run with --update-repos to generate it.",
        detail={"path": path},
    )


def dump_component_list(components: ComponentList) -> str:
    payload = {
        "generated_at": components.generated_at,
        "epoch_latest": components.epoch_latest,
        "repos": [c.to_dict() for c in components.repos],
    }
    return json.dumps(payload, indent=2) + "\n"


def write_component_list(components: ComponentList, path: str) -> Path:
    """Serialise *components* to *path* (``built-in`` → ``repos.json``)."""
    target = Path(DEFAULT_OUTPUT_NAME if path == BUILT_IN else path)
    try:
        target.write_text(dump_component_list(components), encoding="utf-8")
    except OSError as exc:
        raise ConfigError(
            f"Failed to write component list to '{target}': {exc}",
            detail={"path": str(target)},
        ) from exc
    logger.info("Component list written to %s (epoch_latest: %s)", target, components.epoch_latest)
    return target


# ---------------------------------------------------------------------------
# Selection helpers
# ---------------------------------------------------------------------------


def epoch_tags(components: ComponentList) -> list[str]:
    """Distinct tags in first-seen order."""
    seen: dict[str, None] = {}
    for component in components.repos:
        if component.tag:
            seen.setdefault(component.tag, None)
    return list(seen)


def effective_reference(
    component: Component,
    global_tag: str = "",
    *,
    use_branch: bool = False,
) -> str | None:
    """The tag to build from, or ``None`` to build from a branch."""
    if use_branch:
        return None
    return global_tag or component.tag or None


def select_components(components: ComponentList, only: str = "") -> list[Component]:
    """All components, or just the one named by *only*."""
    if not only:
        return list(components.repos)
    for component in components.repos:
        if component.name == only:
            return [component]
    raise ConfigError(
        f"Component '{only}' not found in component list",
        detail={"only": only, "available": components.names},
    )


async def refresh_component_list(
    components: ComponentList,
    *,
    runner: Runner = run,
) -> ComponentList:
    """Query upstream for each component's newest epoch tag.

    Components without an epoch tag keep building from their branch when
    one is set, otherwise keep their previous tag.
    """
    logger.info("Fetching latest epoch tags from upstream repositories...")
    repos: list[Component] = []
    latest_epoch = ""
    for component in components.repos:
        tag = await git_client.latest_epoch_tag(component.url, runner=runner)
        if tag:
            latest_epoch = latest_epoch or tag
            logger.info("  %-40s %s", component.name, tag)
            repos.append(component.model_copy(update={"tag": tag}))
        elif component.branch:
            logger.info("  %-40s (no epoch tag; using branch: %s)", component.name, component.branch)
            repos.append(component.model_copy(update={"tag": None}))
        else:
            logger.info("  %-40s (unchanged: %s)", component.name, component.tag or "-")
            repos.append(component)

    return ComponentList(
        generated_at=date.today().isoformat(),
        epoch_latest=latest_epoch or components.epoch_latest,
        repos=repos,
    )
