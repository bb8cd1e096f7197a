"""Build configuration loaded from environment variables.

Uses ``pydantic-settings`` for automatic env-var loading, type coercion,
and ``.env`` file support.  Every setting can be given as
``COSMIC_DEB_<NAME>`` in the environment; command-line flags override
them via ``Settings.model_copy(update=...)`` in ``cli.py``.
"""

VERSION = "0.4.0"

import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_jobs() -> int:
    return os.cpu_count() or 1


class Settings(BaseSettings):
    """Build settings, sourced from environment / ``.env`` file."""

    model_config = SettingsConfigDict(
        env_prefix="COSMIC_DEB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -- directories --
    WORK_DIR: str = "cosmic-work"
    OUT_DIR: str = "cosmic-packages"

    # -- component selection --
    # "built-in" uses the embedded list; anything else is a repos.json path.
    REPOS_FILE: str = "built-in"
    # Overrides every component's tag (e.g. "epoch-1.0.7").
    GLOBAL_TAG: str = ""
    # Build from branch HEAD instead of release tags.
    USE_BRANCH: bool = False
    # Restrict the run to a single component (meta package is skipped).
    ONLY: str = ""
    SKIP_DEPS: bool = False

    # -- compilation --
    JOBS: int = Field(default_factory=_default_jobs, ge=1)
    # Appended to RUSTFLAGS for every build invocation.
    LINKER_FLAGS: str = "-C link-arg=-fuse-ld=lld"
    # Run "just vendor" before task-runner builds (best effort).
    VENDOR_BEFORE_BUILD: bool = True

    # -- packaging --
    MAINTAINER_NAME: str = "cosmic-deb"
    MAINTAINER_EMAIL: str = "cosmic-deb@example.com"
    META_PACKAGE_NAME: str = "cosmic-desktop"
    # Debian architecture; blank = derive from the host machine.
    ARCH: str = ""
    # Optional JSON file replacing the embedded per-component metadata table.
    METADATA_FILE: str = ""

    # -- thermal governor --
    THERMAL_POLL_INTERVAL_S: float = Field(default=60.0, gt=0)
    SYSFS_ROOT: str = "/sys"

    # -- logging --
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    @property
    def maintainer(self) -> str:
        return f"{self.MAINTAINER_NAME} <{self.MAINTAINER_EMAIL}>"


settings = Settings()
