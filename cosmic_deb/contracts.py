"""Pipeline contracts -- Pydantic models passed between the build stages.

All models are frozen (immutable after creation).  The only mutable
run state is the orchestrator's list of successfully packaged names.
"""

from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class BuildStage(str, enum.Enum):
    """Per-component pipeline stages, in execution order."""

    ACQUIRE = "acquire"
    BUILD = "build"
    VALIDATE = "validate"
    STAGE = "stage"
    PACKAGE = "package"


class PackageSection(str, enum.Enum):
    """Debian archive sections a component package can be filed under."""

    X11 = "x11"
    ADMIN = "admin"
    UTILS = "utils"


# ---------------------------------------------------------------------------
# Component list
# ---------------------------------------------------------------------------


class Component(BaseModel):
    """One upstream source project packaged independently."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1, description="Upstream repository URL (no .git)")
    tag: str | None = Field(default=None, description="Release tag, e.g. epoch-1.0.7")
    branch: str | None = Field(default=None, description="Branch used when no tag applies")

    @field_validator("tag", "branch", mode="before")
    @classmethod
    def _blank_is_absent(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    def to_dict(self) -> dict[str, str]:
        """Serialise in the repos.json shape (``branch`` omitted when unset)."""
        data = {"name": self.name, "url": self.url, "tag": self.tag or ""}
        if self.branch:
            data["branch"] = self.branch
        return data


class ComponentList(BaseModel):
    """The full set of components for a run, plus release bookkeeping."""

    model_config = ConfigDict(frozen=True)

    generated_at: str = ""
    epoch_latest: str = ""
    repos: list[Component]

    @model_validator(mode="after")
    def _check_repos(self) -> ComponentList:
        if not self.repos:
            raise ValueError("component list contains no repositories")
        seen: set[str] = set()
        for component in self.repos:
            if component.name in seen:
                raise ValueError(f"duplicate component name: {component.name}")
            seen.add(component.name)
        return self

    @property
    def names(self) -> list[str]:
        return [c.name for c in self.repos]


# ---------------------------------------------------------------------------
# Host
# ---------------------------------------------------------------------------


class HostDistro(BaseModel):
    """Identity of the build host's distribution."""

    model_config = ConfigDict(frozen=True)

    id: str = "unknown"
    codename: str = ""


class ThermalProfile(BaseModel):
    """Host capability classification, computed once per run."""

    model_config = ConfigDict(frozen=True)

    physical_cores: int = Field(..., ge=1)
    logical_threads: int = Field(..., ge=1)
    is_low_end: bool
    max_concurrent_jobs: int = Field(..., ge=1)
    base_cooldown_s: float = Field(default=0.0, ge=0)


class ThermalSample(BaseModel):
    """A single CPU temperature reading."""

    model_config = ConfigDict(frozen=True)

    temperature_c: float = 0.0
    available: bool = False

    @classmethod
    def unavailable(cls) -> ThermalSample:
        return cls()


# ---------------------------------------------------------------------------
# Packaging
# ---------------------------------------------------------------------------


class PackageSpec(BaseModel):
    """Everything needed to render a ``DEBIAN/control`` file."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    version: str = Field(..., min_length=1, description="Full version incl. ~codename")
    arch: str = Field(..., min_length=1)
    section: PackageSection = PackageSection.X11
    priority: str = "optional"
    depends: tuple[str, ...] = ()
    recommends: tuple[str, ...] = ()
    maintainer: str
    description: str = Field(..., min_length=1, description="Summary line, then body lines")

    def to_control(self) -> str:
        """Render the spec as a Debian binary control file."""
        lines = [
            f"Package: {self.name}",
            f"Version: {self.version}",
            f"Section: {self.section.value}",
            f"Priority: {self.priority}",
            f"Architecture: {self.arch}",
        ]
        if self.depends:
            lines.append(f"Depends: {', '.join(self.depends)}")
        if self.recommends:
            lines.append(f"Recommends: {', '.join(self.recommends)}")
        lines.append(f"Maintainer: {self.maintainer}")

        summary, _, body = self.description.partition("\n")
        lines.append(f"Description: {summary}")
        for line in body.splitlines():
            lines.append(f" {line}" if line.strip() else " .")
        return "\n".join(lines) + "\n"

    @property
    def filename(self) -> str:
        """``<name>_<version>_<arch>.deb``"""
        return f"{self.name}_{self.version}_{self.arch}.deb"


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class BuildOutcome(BaseModel):
    """Result of processing one component.

    Use the ``ok`` / ``fail`` factory class methods for clean construction.
    """

    model_config = ConfigDict(frozen=True)

    component: str
    success: bool
    package_name: str | None = None
    failing_stage: BuildStage | None = None
    cause: str | None = None

    @classmethod
    def ok(cls, component: str, package_name: str | None = None) -> BuildOutcome:
        return cls(component=component, success=True, package_name=package_name or component)

    @classmethod
    def fail(cls, component: str, stage: BuildStage | str, cause: str) -> BuildOutcome:
        return cls(
            component=component,
            success=False,
            failing_stage=BuildStage(stage),
            cause=cause,
        )


class RunSummary(BaseModel):
    """End-of-run report: attempted vs. packaged."""

    model_config = ConfigDict(frozen=True)

    attempted: int = Field(default=0, ge=0)
    packaged: list[str] = Field(default_factory=list)
    outcomes: list[BuildOutcome] = Field(default_factory=list)
    meta_package: str | None = None

    @property
    def failed(self) -> list[BuildOutcome]:
        return [o for o in self.outcomes if not o.success]
