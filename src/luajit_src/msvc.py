"""Locate an MSVC toolchain and the environment ``cl.exe`` needs.

A developer prompt (``VCINSTALLDIR`` set, ``cl.exe`` on ``PATH``) is used as-is.
Otherwise ``vcvarsall.bat`` is located through ``vswhere.exe`` or the well-known
install paths and run once to capture the environment it exports.
"""

from __future__ import annotations

import shutil
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from luajit_src.errors import ToolchainError
from luajit_src.triple import arch

VCVARS_ARCH = {
    "x86_64": "x64",
    "i686": "x86",
    "i586": "x86",
    "aarch64": "arm64",
    "thumbv7a": "arm",
}

_VSWHERE = ("Microsoft Visual Studio", "Installer", "vswhere.exe")
_VCVARSALL = ("VC", "Auxiliary", "Build", "vcvarsall.bat")
_COMMON_INSTALLS = (
    ("Microsoft Visual Studio", "2022", "BuildTools"),
    ("Microsoft Visual Studio", "2022", "Community"),
    ("Microsoft Visual Studio", "2022", "Professional"),
    ("Microsoft Visual Studio", "2022", "Enterprise"),
    ("Microsoft Visual Studio", "2019", "BuildTools"),
    ("Microsoft Visual Studio", "2019", "Community"),
)


@dataclass(frozen=True, slots=True)
class MsvcEnvironment:
    cl: Path
    env: Mapping[str, str] = field(default_factory=dict)


def vcvars_arch(target: str) -> str:
    target_arch = arch(target)
    try:
        return VCVARS_ARCH[target_arch]
    except KeyError:
        raise ToolchainError(
            f"Unsupported MSVC target architecture `{target_arch}`.",
            hint="Use an x86_64, i686 or aarch64 MSVC target.",
            context={"operation": "find_msvc_env", "target": target},
        ) from None


def find_msvc_env(target: str, env: Mapping[str, str]) -> MsvcEnvironment:
    """Return ``cl.exe`` and the environment variables to add for ``target``."""
    if env.get("VCINSTALLDIR"):
        cl = shutil.which("cl.exe", path=env.get("PATH"))
        if cl is not None:
            return MsvcEnvironment(cl=Path(cl))

    vcvarsall = find_vcvarsall(env)
    if vcvarsall is None:
        raise ToolchainError(
            "Cannot find cl.exe: no Visual Studio installation located.",
            hint="Install the Visual Studio C++ build tools or run from a developer prompt.",
            context={"operation": "find_msvc_env", "target": target, "tool": "cl.exe"},
        )

    produced = _run_vcvarsall(vcvarsall, vcvars_arch(target), env)
    cl = shutil.which("cl.exe", path=produced.get("PATH"))
    if cl is None:
        raise ToolchainError(
            "Cannot find cl.exe in the vcvarsall environment.",
            hint="Install the MSVC component for the target architecture.",
            context={
                "operation": "find_msvc_env",
                "target": target,
                "tool": "cl.exe",
                "vcvarsall": str(vcvarsall),
            },
        )

    current = {key.upper(): value for key, value in env.items()}
    delta = {key: value for key, value in produced.items() if current.get(key) != value}
    return MsvcEnvironment(cl=Path(cl), env=delta)


def find_vcvarsall(env: Mapping[str, str]) -> Path | None:
    program_files_x86 = Path(env.get("ProgramFiles(x86)", r"C:\Program Files (x86)"))
    program_files = Path(env.get("ProgramFiles", r"C:\Program Files"))

    candidates: list[Path] = []
    vswhere = program_files_x86.joinpath(*_VSWHERE)
    if vswhere.is_file():
        installation = _vswhere_installation(vswhere, env)
        if installation:
            candidates.append(Path(installation).joinpath(*_VCVARSALL))
    for root in (program_files, program_files_x86):
        candidates.extend(root.joinpath(*install, *_VCVARSALL) for install in _COMMON_INSTALLS)

    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def _vswhere_installation(vswhere: Path, env: Mapping[str, str]) -> str:
    command = [
        str(vswhere),
        "-latest",
        "-products",
        "*",
        "-requires",
        "Microsoft.VisualStudio.Component.VC.Tools.x86.x64",
        "-property",
        "installationPath",
    ]
    try:
        completed = subprocess.run(
            command,
            env=dict(env),
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as exc:
        raise ToolchainError(
            "Cannot run vswhere.exe.",
            hint="Repair the Visual Studio installer or run from a developer prompt.",
            context={"operation": "find_msvc_env", "command": " ".join(command), "error": str(exc)},
        ) from exc
    if completed.returncode != 0:
        return ""
    lines = [line.strip() for line in completed.stdout.splitlines() if line.strip()]
    return lines[0] if lines else ""


def _run_vcvarsall(vcvarsall: Path, vc_arch: str, env: Mapping[str, str]) -> dict[str, str]:
    command = f'call "{vcvarsall}" {vc_arch} >nul 2>&1 && set'
    try:
        completed = subprocess.run(
            command,
            shell=True,
            env=dict(env),
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as exc:
        raise ToolchainError(
            "Cannot run vcvarsall.bat.",
            hint="Run the build from a Visual Studio developer prompt instead.",
            context={"operation": "find_msvc_env", "command": command, "error": str(exc)},
        ) from exc
    if completed.returncode != 0:
        raise ToolchainError(
            "vcvarsall.bat failed.",
            hint="Check that the MSVC component for the target architecture is installed.",
            context={
                "operation": "find_msvc_env",
                "command": command,
                "returncode": str(completed.returncode),
                "stderr": completed.stderr[:2000] if completed.stderr else "",
            },
        )
    return parse_set_output(completed.stdout)


def parse_set_output(output: str) -> dict[str, str]:
    """Parse ``set`` output into upper-cased variable names."""
    parsed: dict[str, str] = {}
    for line in output.splitlines():
        name, sep, value = line.partition("=")
        if not sep or not name:
            continue
        parsed[name.strip().upper()] = value.rstrip("\r")
    return parsed
