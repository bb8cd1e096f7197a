"""cosmic-deb -- build the COSMIC desktop from upstream source into .deb packages.

Public API
----------
Contracts (Pydantic models)::

    Component, ComponentList, BuildOutcome, BuildStage,
    PackageSpec, PackageSection, HostDistro,
    ThermalProfile, ThermalSample, RunSummary,

Errors::

    CosmicDebError, FatalError, ComponentError,
    ConfigError, SourceAcquisitionError, WorkspaceError,
    MetadataError, ToolchainError,
    BuildFailed, OutputValidationFailed, StagingFailed,
    EmptyStageError, PackagingFailed,

Runner::

    run, RunResult, Runner

Stages::

    acquire_source, Dispatcher, BuildContext, stage,
    package_component, build_meta_package,

Thermal governor::

    ThermalGovernor, detect_profile, compute_cooldown, read_cpu_temp,

Orchestration::

    Pipeline, Settings, main
"""

from cosmic_deb.cli import main
from cosmic_deb.config import VERSION, Settings
from cosmic_deb.contracts import (
    BuildOutcome,
    BuildStage,
    Component,
    ComponentList,
    HostDistro,
    PackageSection,
    PackageSpec,
    RunSummary,
    ThermalProfile,
    ThermalSample,
)
from cosmic_deb.dispatcher import BuildContext, Dispatcher
from cosmic_deb.errors import (
    BuildFailed,
    ComponentError,
    ConfigError,
    CosmicDebError,
    EmptyStageError,
    FatalError,
    MetadataError,
    OutputValidationFailed,
    PackagingFailed,
    SourceAcquisitionError,
    StagingFailed,
    ToolchainError,
    WorkspaceError,
)
from cosmic_deb.packager import build_meta_package, package_component
from cosmic_deb.pipeline import Pipeline
from cosmic_deb.runner import Runner, RunResult, run
from cosmic_deb.source import acquire_source
from cosmic_deb.stager import stage
from cosmic_deb.thermal import ThermalGovernor, compute_cooldown, detect_profile, read_cpu_temp

__version__ = VERSION

__all__ = [
    # Contracts
    "Component",
    "ComponentList",
    "BuildOutcome",
    "BuildStage",
    "PackageSpec",
    "PackageSection",
    "HostDistro",
    "ThermalProfile",
    "ThermalSample",
    "RunSummary",
    # Errors
    "CosmicDebError",
    "FatalError",
    "ComponentError",
    "ConfigError",
    "SourceAcquisitionError",
    "WorkspaceError",
    "MetadataError",
    "ToolchainError",
    "BuildFailed",
    "OutputValidationFailed",
    "StagingFailed",
    "EmptyStageError",
    "PackagingFailed",
    # Runner
    "run",
    "RunResult",
    "Runner",
    # Stages
    "acquire_source",
    "Dispatcher",
    "BuildContext",
    "stage",
    "package_component",
    "build_meta_package",
    # Thermal governor
    "ThermalGovernor",
    "detect_profile",
    "compute_cooldown",
    "read_cpu_temp",
    # Orchestration
    "Pipeline",
    "Settings",
    "main",
]
