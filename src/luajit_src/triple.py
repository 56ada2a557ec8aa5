"""Target/host triple classification."""

from __future__ import annotations

from collections.abc import Mapping

from luajit_src.errors import ConfigurationError

# Substring of the target triple -> LuaJIT TARGET_SYS value.
TARGET_SYS_BY_OS = (
    ("linux", "Linux"),
    ("windows", "Windows"),
)

DEPLOYMENT_TARGETS = {
    "x86_64-apple-darwin": "10.14",
    "aarch64-apple-darwin": "11.0",
}

GMAKE_HOST_OSES = ("freebsd", "dragonfly", "netbsd", "openbsd")

_ARCH_32 = (
    "i386",
    "i586",
    "i686",
    "arm",
    "thumb",
    "mips",
    "mipsel",
    "powerpc",
    "sparc",
    "wasm32",
    "riscv32",
    "hexagon",
    "m68k",
    "csky",
)
_ARCH_64_PREFIXES = ("mips64", "powerpc64", "sparc64", "aarch64", "arm64")
X86_ARCHES = ("i386", "i586", "i686", "x86_64")


def arch(triple: str) -> str:
    return triple.split("-", 1)[0]


def is_x86(triple: str) -> bool:
    return arch(triple) in X86_ARCHES


def is_msvc(target: str) -> bool:
    return "msvc" in target


def is_apple(target: str) -> bool:
    return "-apple-" in target


def is_windows(target: str) -> bool:
    return "windows" in target


def uses_gmake(host: str) -> bool:
    """BSD hosts ship GNU make as ``gmake``."""
    os_part = host.rsplit("-", 1)[-1]
    return any(os_part.startswith(name) for name in GMAKE_HOST_OSES)


def target_sys(target: str) -> str | None:
    for needle, value in TARGET_SYS_BY_OS:
        if needle in target:
            return value
    return None


def deployment_target(target: str) -> str | None:
    return DEPLOYMENT_TARGETS.get(target)


def pointer_width(target: str, env: Mapping[str, str]) -> int:
    """Pointer width from ``CARGO_CFG_TARGET_POINTER_WIDTH``, else from the arch."""
    declared = env.get("CARGO_CFG_TARGET_POINTER_WIDTH")
    if declared:
        try:
            return int(declared)
        except ValueError as exc:
            raise ConfigurationError(
                f"CARGO_CFG_TARGET_POINTER_WIDTH is not a number: {declared!r}.",
                hint="Expected a bit width such as 32 or 64.",
                context={"operation": "pointer_width", "variable": "CARGO_CFG_TARGET_POINTER_WIDTH"},
            ) from exc
    name = arch(target)
    if name.startswith(_ARCH_64_PREFIXES):
        return 64
    if name.startswith(_ARCH_32):
        return 32
    return 64


def gnu_prefix(target: str) -> str | None:
    """Conventional GNU cross-toolchain prefix for a triple, without the trailing dash.

    ``aarch64-unknown-linux-gnu`` -> ``aarch64-linux-gnu``,
    ``armv7-unknown-linux-gnueabihf`` -> ``arm-linux-gnueabihf``,
    ``x86_64-pc-windows-gnu`` -> ``x86_64-w64-mingw32``.
    """
    parts = target.split("-")
    if len(parts) < 3:
        return None
    name = parts[0]
    if name.startswith(("armv", "thumbv")):
        name = "arm"
    elif name.startswith("riscv64"):
        name = "riscv64"
    elif name.startswith("riscv32"):
        name = "riscv32"
    elif name in ("i586", "i386"):
        name = "i686"

    if parts[2:] == ["windows", "gnu"]:
        return f"{name}-w64-mingw32"
    if "linux" in parts[2:]:
        return "-".join([name, *parts[2:]])
    return None
