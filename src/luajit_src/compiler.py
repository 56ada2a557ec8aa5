"""C compiler discovery for a target triple.

Resolution order for the compiler command follows the usual cross-build
conventions: ``CC_<target>``, ``CC_<target_with_underscores>``, ``TARGET_CC``
(or ``HOST_CC`` for native builds), ``CC``, and finally a per-triple default.
Flags come from ``CFLAGS`` in the same order.
"""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
import warnings
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from luajit_src.errors import ToolchainError
from luajit_src.triple import arch, gnu_prefix, is_apple, is_msvc, is_windows, is_x86

CompilerFamily = Literal["gnu", "clang", "msvc"]

COMPILER_WRAPPERS = ("ccache", "sccache", "distcc")


class CompilerProbeWarning(UserWarning):
    """Warning raised when the compiler family cannot be determined by probing."""


@dataclass(frozen=True, slots=True)
class CompilerInfo:
    path: Path
    args: tuple[str, ...]
    family: CompilerFamily
    wrapper: tuple[str, ...] = ()

    def is_like_gnu(self) -> bool:
        return self.family == "gnu"

    def is_like_clang(self) -> bool:
        return self.family == "clang"

    def command_line(self) -> str:
        return " ".join([*self.wrapper, str(self.path), *self.args])


def probe_compiler(
    target: str,
    host: str,
    env: Mapping[str, str],
    *,
    debug: bool = False,
) -> CompilerInfo:
    """Find the C compiler for ``target`` and its default flags.

    A leading ``ccache``/``sccache``/``distcc`` word in the configured command
    is kept as a wrapper; the word after it is the compiler.
    """
    explicit = _target_env(env, "CC", target=target, host=host)
    search_path = env.get("PATH")
    wrapper: tuple[str, ...] = ()

    if explicit is not None:
        program, *extra_args = shlex.split(explicit)
        if extra_args and Path(program).name.removesuffix(".exe") in COMPILER_WRAPPERS:
            wrapper = (program,)
            program, *extra_args = extra_args
        resolved = find_program(program, search_path)
    else:
        program, extra_args = default_compiler(target, host), []
        resolved = find_program(program, search_path)
        if resolved is None and program != "cc" and _is_multilib_pair(target, host):
            # -m32/-m64 retarget the native driver between x86 flavours.
            resolved = find_program("cc", search_path)

    if resolved is None:
        raise ToolchainError(
            f"Cannot find C compiler `{program}`.",
            hint="Install a C compiler for the target or set CC / TARGET_CC.",
            context={"operation": "probe_compiler", "target": target, "compiler": program},
        )

    family = detect_family(resolved, env)
    args = [
        *extra_args,
        *default_flags(target, host, family, env, debug=debug),
        *_env_flags(env, target=target, host=host),
    ]
    return CompilerInfo(path=resolved, args=tuple(args), family=family, wrapper=wrapper)


def default_compiler(target: str, host: str) -> str:
    if is_msvc(target):
        return "cl.exe"
    if target == host:
        return "cc"
    if is_apple(target):
        return "clang"
    prefix = gnu_prefix(target)
    if prefix is None:
        return "cc"
    return f"{prefix}-gcc"


def find_program(program: str, search_path: str | None) -> Path | None:
    found = shutil.which(program, path=search_path)
    if found is None:
        return None
    return Path(found).absolute()


def detect_family(path: Path, env: Mapping[str, str]) -> CompilerFamily:
    name = path.name.lower().removesuffix(".exe")
    if name == "cl" or name == "clang-cl":
        return "msvc"
    if "clang" in name:
        return "clang"
    if "gcc" in name or name.endswith("g++"):
        return "gnu"
    return _probe_family(path, env)


def default_flags(
    target: str,
    host: str,
    family: CompilerFamily,
    env: Mapping[str, str],
    *,
    debug: bool = False,
) -> list[str]:
    if family == "msvc":
        return ["-nologo", "-MD", "-Z7" if debug else "-O2"]

    opt_level = env.get("OPT_LEVEL") or ("0" if debug else "2")
    flags = [f"-O{opt_level}", "-ffunction-sections", "-fdata-sections"]
    if not is_windows(target):
        flags.append("-fPIC")
    if family == "clang" and target != host:
        flags.append(f"--target={target}")
    if not is_apple(target):
        target_arch = arch(target)
        if target_arch == "x86_64":
            flags.append("-m64")
        elif target_arch in ("i686", "i586", "i386"):
            flags.append("-m32")
    return flags


def _probe_family(path: Path, env: Mapping[str, str]) -> CompilerFamily:
    try:
        completed = subprocess.run(
            [str(path), "-dM", "-E", "-x", "c", os.devnull],
            env=dict(env),
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as exc:
        warnings.warn(
            f"Could not run `{path}` to detect its family ({exc}); assuming GNU.",
            CompilerProbeWarning,
            stacklevel=3,
        )
        return "gnu"
    if completed.returncode != 0:
        warnings.warn(
            f"`{path}` rejected the preprocessor probe; assuming GNU.",
            CompilerProbeWarning,
            stacklevel=3,
        )
        return "gnu"
    return "clang" if "__clang__" in (completed.stdout or "") else "gnu"


def _is_multilib_pair(target: str, host: str) -> bool:
    """Same vendor, OS and ABI; both architectures from the x86 family."""
    return (
        is_x86(target)
        and is_x86(host)
        and target.split("-", 1)[1:] == host.split("-", 1)[1:]
    )


def _target_env(env: Mapping[str, str], name: str, *, target: str, host: str) -> str | None:
    kind = "HOST" if target == host else "TARGET"
    for key in (
        f"{name}_{target}",
        f"{name}_{target.replace('-', '_')}",
        f"{kind}_{name}",
        name,
    ):
        value = env.get(key)
        if value:
            return value
    return None


def _env_flags(env: Mapping[str, str], *, target: str, host: str) -> list[str]:
    value = _target_env(env, "CFLAGS", target=target, host=host)
    return shlex.split(value) if value else []
