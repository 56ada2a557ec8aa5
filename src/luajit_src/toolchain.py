"""Toolchain resolution for the LuaJIT makefile and msvcbuild.bat drivers.

The resolver turns a target/host pair into a :class:`ToolchainPlan`: the driver
command to run and the environment variables the LuaJIT build reads
(``STATIC_CC``, ``TARGET_LD``, ``TARGET_AR``, ``TARGET_STRIP``, ``TARGET_SYS``,
``HOST_CC``, ``MACOSX_DEPLOYMENT_TARGET``, ``BUILDMODE`` and ``XCFLAGS``).

Variables already present in the caller's environment are never replaced, and
an override for a tool slot skips discovery for that slot entirely.
"""

from __future__ import annotations

import hashlib
import shutil
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

import cbor2

from luajit_src.compiler import CompilerInfo, probe_compiler
from luajit_src.errors import ConfigurationError, ToolchainError
from luajit_src.msvc import find_msvc_env
from luajit_src.triple import deployment_target, pointer_width, target_sys, uses_gmake

OVERRIDE_VARS = (
    "HOST_CC",
    "STATIC_CC",
    "TARGET_LD",
    "TARGET_AR",
    "TARGET_STRIP",
    "MACOSX_DEPLOYMENT_TARGET",
)

ARCHIVER_FLAGS = "rcus"
CROSS_SUFFIXES = ("-gcc", "-clang")


@dataclass(frozen=True, slots=True)
class ToolchainPlan:
    make_driver: str
    make_args: tuple[str, ...]
    compiler_path: str
    archiver: str | None
    strip: str | None
    env: Mapping[str, str] = field(default_factory=dict)
    xcflags: tuple[str, ...] = ()

    @property
    def argv(self) -> tuple[str, ...]:
        return (self.make_driver, *self.make_args)

    def fingerprint(self) -> str:
        """Digest of the plan; changes whenever a tool, flag or env delta changes."""
        encoded = cbor2.dumps(self._payload(), canonical=True)
        return hashlib.sha256(encoded).hexdigest()

    def _payload(self) -> dict[str, object]:
        return {
            "argv": list(self.argv),
            "compiler": self.compiler_path,
            "archiver": self.archiver,
            "strip": self.strip,
            "env": dict(sorted(self.env.items())),
            "xcflags": list(self.xcflags),
        }


@dataclass(frozen=True, slots=True)
class ToolQuery:
    """One companion-tool lookup: ``tool`` next to ``compiler`` under ``prefix``."""

    tool: str
    prefix: str
    compiler: CompilerInfo
    search_path: str | None

    @property
    def bindir(self) -> Path:
        return self.compiler.path.parent

    @property
    def prefixed(self) -> str:
        return f"{self.prefix}{self.tool}"


ToolStrategy = Callable[[ToolQuery], Path | None]


def _prefixed_beside_compiler(query: ToolQuery) -> Path | None:
    candidate = query.bindir / query.prefixed
    return candidate if candidate.is_file() else None


def _llvm_beside_compiler(query: ToolQuery) -> Path | None:
    if not query.compiler.is_like_clang():
        return None
    candidate = query.bindir / f"llvm-{query.tool}"
    return candidate if candidate.is_file() else None


def _gnu_beside_compiler(query: ToolQuery) -> Path | None:
    if not query.compiler.is_like_gnu():
        return None
    candidate = query.bindir / query.tool
    return candidate if candidate.is_file() else None


def _prefixed_on_path(query: ToolQuery) -> Path | None:
    found = shutil.which(query.prefixed, path=query.search_path)
    return Path(found) if found is not None else None


COMPANION_TOOL_STRATEGIES: tuple[ToolStrategy, ...] = (
    _prefixed_beside_compiler,
    _llvm_beside_compiler,
    _gnu_beside_compiler,
    _prefixed_on_path,
)


def find_companion_tool(
    query: ToolQuery,
    strategies: tuple[ToolStrategy, ...] = COMPANION_TOOL_STRATEGIES,
) -> Path:
    for strategy in strategies:
        found = strategy(query)
        if found is not None:
            return found
    raise ToolchainError(
        f"Cannot find {query.prefixed}.",
        hint=f"Install binutils/LLVM for the target or set TARGET_{query.tool.upper()}.",
        context={
            "operation": "resolve_toolchain",
            "tool": query.prefixed,
            "compiler": str(query.compiler.path),
        },
    )


def cross_prefix(compiler_path: str | Path) -> str:
    """``.../arm-linux-gnueabihf-gcc`` -> ``arm-linux-gnueabihf-``; empty otherwise."""
    name = Path(compiler_path).name.removesuffix(".exe")
    for suffix in CROSS_SUFFIXES:
        if name.endswith(suffix):
            return name[: -len(suffix) + 1]
    return ""


def make_command(host: str | None) -> str:
    if not host:
        raise ConfigurationError(
            "HOST is not set.",
            hint="Call set_host() or export HOST.",
            context={"operation": "make_command"},
        )
    return "gmake" if uses_gmake(host) else "make"


def build_xcflags(*, compat_mode: bool, debug_mode: bool) -> tuple[str, ...]:
    xcflags = ["-fPIC"]
    if compat_mode:
        xcflags.append("-DLUAJIT_ENABLE_LUA52COMPAT")
    if debug_mode:
        xcflags.extend(["-DLUA_USE_ASSERT", "-DLUA_USE_APICHECK", "-g"])
    return tuple(xcflags)


def resolve_toolchain(
    *,
    target: str,
    host: str,
    env: Mapping[str, str],
    compat_mode: bool = False,
    debug_mode: bool = False,
) -> ToolchainPlan:
    """Plan a ``make -e`` build of the LuaJIT ``src`` directory."""
    make = make_command(host)
    compiler = probe_compiler(target, host, env, debug=debug_mode)
    search_path = env.get("PATH")
    delta: dict[str, str] = {}

    def set_default(name: str, value: str) -> None:
        if name not in env:
            delta[name] = value

    pinned = deployment_target(target)
    if pinned is not None:
        set_default("MACOSX_DEPLOYMENT_TARGET", pinned)
    sys_name = target_sys(target)
    if sys_name is not None:
        set_default("TARGET_SYS", sys_name)

    if pointer_width(target, env) == 32 and "HOST_CC" not in env:
        host_cc = probe_compiler(host, host, env)
        delta["HOST_CC"] = f"{host_cc.path} -m32"

    compiler_line = compiler.command_line()
    set_default("STATIC_CC", compiler_line)
    set_default("TARGET_LD", compiler_line)

    prefix = cross_prefix(compiler.path)
    if "TARGET_AR" in env:
        archiver = env["TARGET_AR"]
    else:
        ar = find_companion_tool(
            ToolQuery(tool="ar", prefix=prefix, compiler=compiler, search_path=search_path),
        )
        archiver = f"{ar} {ARCHIVER_FLAGS}"
        delta["TARGET_AR"] = archiver

    if "TARGET_STRIP" in env:
        strip = env["TARGET_STRIP"]
    else:
        strip = str(
            find_companion_tool(
                ToolQuery(tool="strip", prefix=prefix, compiler=compiler, search_path=search_path),
            )
        )
        delta["TARGET_STRIP"] = strip

    xcflags = build_xcflags(compat_mode=compat_mode, debug_mode=debug_mode)
    delta["BUILDMODE"] = "static"
    delta["XCFLAGS"] = " ".join(xcflags)

    return ToolchainPlan(
        make_driver=make,
        make_args=("-e",),
        compiler_path=str(compiler.path),
        archiver=archiver,
        strip=strip,
        env=delta,
        xcflags=xcflags,
    )


def resolve_msvc_toolchain(
    *,
    target: str,
    build_dir: Path,
    env: Mapping[str, str],
    compat_mode: bool = False,
    debug_mode: bool = False,
) -> ToolchainPlan:
    """Plan a ``msvcbuild.bat [debug] [lua52compat] static`` build."""
    msvc = find_msvc_env(target, env)
    args: list[str] = []
    if debug_mode:
        args.append("debug")
    if compat_mode:
        args.append("lua52compat")
    args.append("static")
    return ToolchainPlan(
        make_driver=str(build_dir / "src" / "msvcbuild.bat"),
        make_args=tuple(args),
        compiler_path=str(msvc.cl),
        archiver=None,
        strip=None,
        env=dict(msvc.env),
    )
