"""
cli.py -- command-line entry point for cosmic-deb.

Usage:
    cosmic-deb [--tag TAG] [--repos FILE] [--only NAME] [--jobs N] ...

Examples:
    # Build every component at the tags pinned in the built-in list
    cosmic-deb

    # Build only the compositor from branch HEAD, skipping apt
    cosmic-deb --only cosmic-comp --use-branch --skip-deps

    # Refresh repos.json with the newest upstream epoch tags
    cosmic-deb --repos repos.json --update-repos

Every flag can also be set as ``COSMIC_DEB_<NAME>`` in the environment
or a ``.env`` file; flags win.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from cosmic_deb import components as component_list
from cosmic_deb import distro
from cosmic_deb.config import VERSION, Settings, settings as default_settings
from cosmic_deb.errors import FatalError
from cosmic_deb.log import configure_logging
from cosmic_deb.pipeline import Pipeline
from cosmic_deb.runner import Runner, run
from cosmic_deb.thermal import ThermalGovernor, detect_profile
from cosmic_deb.toolchain import build_env, prepare_toolchain

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_INTERRUPTED = 130

# argparse dest -> Settings field
_FLAG_FIELDS: dict[str, str] = {
    "tag": "GLOBAL_TAG",
    "repos": "REPOS_FILE",
    "workdir": "WORK_DIR",
    "outdir": "OUT_DIR",
    "jobs": "JOBS",
    "skip_deps": "SKIP_DEPS",
    "only": "ONLY",
    "use_branch": "USE_BRANCH",
    "maintainer_name": "MAINTAINER_NAME",
    "maintainer_email": "MAINTAINER_EMAIL",
    "log_level": "LOG_LEVEL",
}


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from exc
    if number < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cosmic-deb",
        description="Build the COSMIC desktop from upstream source into Debian packages",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("--tag", default=None, help="Override the tag for every component")
    parser.add_argument(
        "--repos", default=None,
        help="Component list JSON file, or 'built-in' (default)",
    )
    parser.add_argument(
        "--update-repos", action="store_true",
        help="Fetch the latest epoch tags, rewrite the component list and exit",
    )
    parser.add_argument(
        "--gen-config", action="store_true",
        help="Write the loaded component list to repos.json (or --repos) and exit",
    )
    parser.add_argument("--workdir", default=None, help="Working directory for sources and staging")
    parser.add_argument("--outdir", default=None, help="Output directory for .deb files")
    parser.add_argument("--jobs", type=_positive_int, default=None, help="Parallel compile jobs")
    parser.add_argument(
        "--skip-deps", action="store_true", default=None,
        help="Skip build-dependency and toolchain installation",
    )
    parser.add_argument("--only", default=None, help="Build a single component")
    parser.add_argument(
        "--use-branch", action="store_true", default=None,
        help="Build from branch HEAD instead of release tags",
    )
    parser.add_argument("--maintainer-name", default=None, help="Maintainer name for control files")
    parser.add_argument("--maintainer-email", default=None, help="Maintainer email for control files")
    parser.add_argument(
        "--log-level", default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )
    return parser


def apply_overrides(base: Settings, args: argparse.Namespace) -> Settings:
    """Layer explicitly given flags over the environment-derived settings."""
    update = {
        field: getattr(args, dest)
        for dest, field in _FLAG_FIELDS.items()
        if getattr(args, dest, None) is not None
    }
    if update.get("USE_BRANCH"):
        update["GLOBAL_TAG"] = ""
    return base.model_copy(update=update)


async def _run(cfg: Settings, args: argparse.Namespace, runner: Runner) -> int:
    host = distro.detect()
    distro.check_supported(host)

    components, source_path = component_list.load_component_list(cfg.REPOS_FILE)

    if args.update_repos:
        refreshed = await component_list.refresh_component_list(components, runner=runner)
        component_list.write_component_list(refreshed, source_path)
        return EXIT_OK
    if args.gen_config:
        component_list.write_component_list(components, source_path)
        return EXIT_OK

    logger.info(
        "Loaded %d components from %s (epoch_latest: %s)",
        len(components.repos), source_path, components.epoch_latest or "-",
    )
    logger.debug("Available release tags: %s", ", ".join(component_list.epoch_tags(components)) or "-")
    selected = component_list.select_components(components, cfg.ONLY)

    profile = detect_profile()
    governor = ThermalGovernor(
        profile,
        sysfs_root=cfg.SYSFS_ROOT,
        poll_interval_s=cfg.THERMAL_POLL_INTERVAL_S,
    )
    governor.summarize()

    if cfg.SKIP_DEPS:
        logger.info("Skipping build-dependency installation (--skip-deps)")
    else:
        env = build_env(jobs=cfg.JOBS, linker_flags=cfg.LINKER_FLAGS)
        await prepare_toolchain([c.name for c in selected], env, runner=runner)

    pipeline = Pipeline(
        cfg,
        distro=host,
        governor=governor,
        epoch_latest=components.epoch_latest,
        runner=runner,
    )
    await pipeline.run(selected)
    return EXIT_OK


def main(argv: Sequence[str] | None = None, *, runner: Runner = run) -> int:
    """Parse *argv*, run, and return the process exit code."""
    args = build_parser().parse_args(argv)
    cfg = apply_overrides(default_settings, args)
    configure_logging(cfg.LOG_LEVEL, cfg.LOG_FILE)

    try:
        return asyncio.run(_run(cfg, args, runner))
    except FatalError as exc:
        logger.error("%s", exc)
        return EXIT_FATAL
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
