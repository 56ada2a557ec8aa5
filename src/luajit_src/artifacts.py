"""Harvesting of headers and the static library from a finished build."""

from __future__ import annotations

import json
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from luajit_src.errors import ArtifactError
from luajit_src.toolchain import OVERRIDE_VARS

PUBLIC_HEADERS = ("lauxlib.h", "lua.h", "luaconf.h", "luajit.h", "lualib.h")

UNIX_LIBRARY = ("luajit", "libluajit.a")
MSVC_LIBRARY = ("lua51", "lua51.lib")


@dataclass(frozen=True, slots=True)
class Artifacts:
    include_dir: Path
    lib_dir: Path
    libs: tuple[str, ...]
    lib_file: Path
    plan_fingerprint: str | None = None

    def cargo_metadata(self) -> list[str]:
        """Linker directives for a Cargo build script."""
        lines = [f"cargo:rerun-if-env-changed={name}" for name in OVERRIDE_VARS]
        lines.append(f"cargo:rustc-link-search=native={self.lib_dir}")
        lines.extend(f"cargo:rustc-link-lib=static={lib}" for lib in self.libs)
        return lines

    def print_cargo_metadata(self, stream: TextIO | None = None) -> None:
        out = stream if stream is not None else sys.stdout
        for line in self.cargo_metadata():
            print(line, file=out)

    def to_dict(self) -> dict[str, object]:
        return {
            "include_dir": str(self.include_dir),
            "lib_dir": str(self.lib_dir),
            "libs": list(self.libs),
            "lib_file": str(self.lib_file),
            "plan_fingerprint": self.plan_fingerprint,
        }

    def write_manifest(self, path: str | Path) -> Path:
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(
            json.dumps(self.to_dict(), indent=2, sort_keys=True) + "\n",
            encoding="utf-8",
        )
        return output_path


def collect_artifacts(
    build_dir: Path,
    include_dir: Path,
    lib_dir: Path,
    *,
    is_msvc: bool,
    plan_fingerprint: str | None = None,
) -> Artifacts:
    """Copy public headers and the static library out of ``<build_dir>/src``."""
    src = build_dir / "src"
    for header in PUBLIC_HEADERS:
        _copy_artifact(src / header, include_dir / header, kind="header")

    lib_name, lib_file = MSVC_LIBRARY if is_msvc else UNIX_LIBRARY
    produced = src / lib_file
    if not produced.is_file():
        raise ArtifactError(
            f"Build reported success but produced no {lib_file}.",
            hint="Check BUILDMODE handling in the LuaJIT makefile or msvcbuild.bat.",
            context={"operation": "collect_artifacts", "path": str(produced)},
        )
    installed = lib_dir / lib_file
    _copy_artifact(produced, installed, kind="library")

    return Artifacts(
        include_dir=include_dir,
        lib_dir=lib_dir,
        libs=(lib_name,),
        lib_file=installed,
        plan_fingerprint=plan_fingerprint,
    )


def _copy_artifact(source: Path, destination: Path, *, kind: str) -> None:
    try:
        shutil.copyfile(source, destination)
    except OSError as exc:
        raise ArtifactError(
            f"Cannot copy {kind} {source.name}.",
            hint="Check that the LuaJIT build completed in the staged tree.",
            context={
                "operation": "collect_artifacts",
                "path": str(source),
                "destination": str(destination),
                "error": str(exc),
            },
        ) from exc
