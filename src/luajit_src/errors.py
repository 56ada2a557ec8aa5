"""Typed error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import ClassVar


class ErrorCode(StrEnum):
    """Stable error identifiers, one per failure category."""

    CONFIGURATION = "E_CONFIGURATION"
    FILESYSTEM = "E_FILESYSTEM"
    TOOLCHAIN = "E_TOOLCHAIN"
    EXTERNAL_PROCESS = "E_EXTERNAL_PROCESS"
    ARTIFACT = "E_ARTIFACT"


class LuajitSrcError(Exception):
    """Base error; each subclass pins its ``category`` to one error code."""

    category: ClassVar[ErrorCode]

    code: str
    hint: str | None
    context: Mapping[str, str]

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = self.category.value
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        lines = [super().__str__()]
        if self.hint:
            lines.append(f"Hint: {self.hint}")
        lines.extend(f"  {key}: {value}" for key, value in self.context.items() if value)
        return "\n".join(lines)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": str(self),
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class ConfigurationError(LuajitSrcError):
    """Build settings are missing, contradictory or malformed."""

    category = ErrorCode.CONFIGURATION


class FilesystemError(LuajitSrcError):
    category = ErrorCode.FILESYSTEM


class ToolchainError(LuajitSrcError):
    """No usable compiler, archiver or strip tool for the target."""

    category = ErrorCode.TOOLCHAIN


class ExternalProcessError(LuajitSrcError):
    category = ErrorCode.EXTERNAL_PROCESS


class ArtifactError(LuajitSrcError):
    """The build finished but its headers or library are not where expected."""

    category = ErrorCode.ARTIFACT


__all__ = [
    "ArtifactError",
    "ConfigurationError",
    "ErrorCode",
    "ExternalProcessError",
    "FilesystemError",
    "LuajitSrcError",
    "ToolchainError",
]
