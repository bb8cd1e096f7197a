"""Build pipeline error hierarchy.

Every error carries typed fields (not just a message string),
supports ``to_dict()`` for the end-of-run report, and has a readable
``__str__`` for logging.

Two families matter to the orchestrator:

- ``FatalError``: aborts the whole run.
- ``ComponentError``: contained to one component; the run continues.
"""

from __future__ import annotations

from pathlib import Path


class CosmicDebError(Exception):
    """Base error for all pipeline failures."""

    def __init__(self, message: str, *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": self.message, **self.detail}

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Fatal
# ---------------------------------------------------------------------------


class FatalError(CosmicDebError):
    """An error that aborts the run."""


class ConfigError(FatalError):
    """Component list, host or command-line configuration is unusable."""


class SourceAcquisitionError(FatalError):
    """Both the archive download and the git clone fallback failed."""

    def __init__(self, component: str, ref: str | None, reason: str) -> None:
        self.component = component
        self.ref = ref or ""
        self.reason = reason
        super().__init__(
            f"Failed to acquire source for '{component}' ({ref or 'default branch'}): {reason}",
            detail={"component": component, "ref": self.ref, "reason": reason},
        )


class WorkspaceError(FatalError):
    """A required working directory could not be created."""

    def __init__(self, path: str | Path, reason: str) -> None:
        self.path = str(path)
        self.reason = reason
        super().__init__(
            f"Cannot create directory '{self.path}': {reason}",
            detail={"path": self.path, "reason": reason},
        )


class MetadataError(FatalError):
    """Package metadata could not be serialised to disk."""

    def __init__(self, package: str, path: str | Path, reason: str) -> None:
        self.package = package
        self.path = str(path)
        self.reason = reason
        super().__init__(
            f"Cannot write control file for '{package}' at '{self.path}': {reason}",
            detail={"package": package, "path": self.path, "reason": reason},
        )


class ToolchainError(FatalError):
    """Build dependencies or the compiler toolchain could not be installed."""

    def __init__(self, step: str, reason: str) -> None:
        self.step = step
        self.reason = reason
        super().__init__(
            f"Toolchain setup failed at '{step}': {reason}",
            detail={"step": step, "reason": reason},
        )


# ---------------------------------------------------------------------------
# Component-local
# ---------------------------------------------------------------------------


class ComponentError(CosmicDebError):
    """A failure contained to a single component."""

    stage: str = "build"

    def __init__(self, component: str, cause: str, *, stage: str | None = None) -> None:
        self.component = component
        self.cause = cause
        if stage is not None:
            self.stage = stage
        super().__init__(
            f"[{component}] {self.stage} failed: {cause}",
            detail={"component": component, "stage": self.stage, "cause": cause},
        )


class BuildFailed(ComponentError):
    """The build tool exited non-zero or no build system was recognised."""

    stage = "build"


class OutputValidationFailed(ComponentError):
    """The build reported success but left no detectable artifact."""

    stage = "validate"


class StagingFailed(ComponentError):
    """The install target failed or does not exist."""

    stage = "stage"


class EmptyStageError(StagingFailed):
    """Installation succeeded but staged nothing beyond ``DEBIAN/``."""

    def __init__(self, component: str, stage_dir: str | Path) -> None:
        self.stage_dir = str(stage_dir)
        super().__init__(
            component,
            f"staging directory '{self.stage_dir}' is empty; "
            "compilation or installation produced no artifacts",
        )
        self.detail["stage_dir"] = self.stage_dir


class PackagingFailed(ComponentError):
    """``dpkg-deb`` (or the native packaging backend) failed."""

    stage = "package"
