"""Build a vendored LuaJIT into a static library for a downstream linker."""

from .artifacts import Artifacts, collect_artifacts
from .build import Build, BuildConfig
from .errors import (
    ArtifactError,
    ConfigurationError,
    ErrorCode,
    ExternalProcessError,
    FilesystemError,
    LuajitSrcError,
    ToolchainError,
)
from .toolchain import ToolchainPlan, resolve_msvc_toolchain, resolve_toolchain

__all__ = [
    "ArtifactError",
    "Artifacts",
    "Build",
    "BuildConfig",
    "ConfigurationError",
    "ErrorCode",
    "ExternalProcessError",
    "FilesystemError",
    "LuajitSrcError",
    "ToolchainError",
    "ToolchainPlan",
    "collect_artifacts",
    "resolve_msvc_toolchain",
    "resolve_toolchain",
]
