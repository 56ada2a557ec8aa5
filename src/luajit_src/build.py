"""Build configuration and the staged LuaJIT build pipeline."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Literal, Self

from .artifacts import Artifacts, collect_artifacts
from .errors import ConfigurationError, LuajitSrcError
from .invoke import run_command
from .observability import BuildPhase, LogLevel, StructuredLogger
from .staging import fresh_dir, install_relver, stage
from .toolchain import ToolchainPlan, resolve_msvc_toolchain, resolve_toolchain
from .triple import is_msvc

BuildState = Literal["unconfigured", "configured", "building", "succeeded", "failed"]

PACKAGE_DIR = Path(__file__).resolve().parent
DEFAULT_SOURCE_DIR = PACKAGE_DIR / "luajit2"
DEFAULT_RELVER_FILE = PACKAGE_DIR / "luajit_relver.txt"

BUILD_DIR_NAME = "luajit-build"
LOG_NAME = "luajit-build.log.jsonl"
MANIFEST_NAME = "luajit-artifacts.json"


@dataclass(frozen=True, slots=True)
class BuildConfig:
    out_dir: Path | None = None
    target: str | None = None
    host: str | None = None
    compat_mode: bool = False
    debug_mode: bool = False
    source_dir: Path = DEFAULT_SOURCE_DIR
    relver_file: Path = DEFAULT_RELVER_FILE

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> BuildConfig:
        """Defaults a build script inherits: ``OUT_DIR``, ``TARGET``, ``HOST``, ``DEBUG``.

        ``LUAJIT_SOURCE_DIR`` and ``LUAJIT_RELVER_FILE`` relocate the vendored tree.
        """
        out_dir = env.get("OUT_DIR")
        debug = env.get("DEBUG", "").lower() == "true" or env.get("PROFILE") == "debug"
        source_dir = env.get("LUAJIT_SOURCE_DIR")
        relver_file = env.get("LUAJIT_RELVER_FILE")
        return cls(
            out_dir=Path(out_dir) if out_dir else None,
            target=env.get("TARGET") or None,
            host=env.get("HOST") or None,
            debug_mode=debug,
            source_dir=Path(source_dir) if source_dir else DEFAULT_SOURCE_DIR,
            relver_file=Path(relver_file) if relver_file else DEFAULT_RELVER_FILE,
        )

    def missing(self) -> tuple[str, ...]:
        required = (("OUT_DIR", self.out_dir), ("TARGET", self.target), ("HOST", self.host))
        return tuple(name for name, value in required if not value)


@dataclass(slots=True)
class Build:
    """Configures and runs one LuaJIT build.

    Settings not given through the setters fall back to ``env``, a snapshot of
    the ambient environment (the real process environment by default). The
    snapshot is also the base environment of the external build process;
    ``os.environ`` itself is never modified.
    """

    env: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    _overrides: dict[str, object] = field(init=False, default_factory=dict, repr=False)
    _phase: BuildState | None = field(init=False, default=None, repr=False)

    @property
    def state(self) -> BuildState:
        if self._phase is not None:
            return self._phase
        return "unconfigured" if self.config().missing() else "configured"

    def set_output_directory(self, path: str | Path) -> Self:
        self._overrides["out_dir"] = Path(path)
        return self

    def set_target(self, triple: str) -> Self:
        self._overrides["target"] = triple
        return self

    def set_host(self, triple: str) -> Self:
        self._overrides["host"] = triple
        return self

    def set_compat_mode(self, enabled: bool) -> Self:
        self._overrides["compat_mode"] = enabled
        return self

    def set_debug_mode(self, enabled: bool) -> Self:
        self._overrides["debug_mode"] = enabled
        return self

    def set_source_directory(self, path: str | Path) -> Self:
        self._overrides["source_dir"] = Path(path)
        return self

    def set_relver_file(self, path: str | Path) -> Self:
        self._overrides["relver_file"] = Path(path)
        return self

    def config(self) -> BuildConfig:
        return replace(BuildConfig.from_env(self.env), **self._overrides)

    def build(self) -> Artifacts:
        if self._phase == "failed":
            raise ConfigurationError(
                "This builder already failed; builds are not retried.",
                hint="Create a new Build for another attempt.",
                context={"operation": "build"},
            )
        config = self.config()
        missing = config.missing()
        if missing or config.out_dir is None or config.target is None or config.host is None:
            raise ConfigurationError(
                f"Required build settings are not set: {', '.join(missing)}.",
                hint="Use the set_*() methods or export OUT_DIR, TARGET and HOST.",
                context={"operation": "build", "missing": ",".join(missing)},
            )
        out_dir, target, host = config.out_dir, config.target, config.host
        self._phase = "building"
        self._log("configure", config, "Build configured.", extra=_config_extra(config))
        try:
            if is_msvc(target):
                artifacts = self._build_msvc(config, out_dir, target)
            else:
                artifacts = self._build_unix(config, out_dir, target, host)
        except LuajitSrcError as exc:
            self._phase = "failed"
            self._log("failed", config, str(exc), level="error", extra={"code": exc.code})
            if out_dir.is_dir():
                self.logger.to_json_lines(out_dir / LOG_NAME)
            raise

        self._phase = "succeeded"
        artifacts.write_manifest(out_dir / MANIFEST_NAME)
        self.logger.to_json_lines(out_dir / LOG_NAME)
        return artifacts

    def _build_unix(self, config: BuildConfig, out_dir: Path, target: str, host: str) -> Artifacts:
        build_dir, include_dir, lib_dir = self._prepare(config, out_dir)

        plan = resolve_toolchain(
            target=target,
            host=host,
            env=self.env,
            compat_mode=config.compat_mode,
            debug_mode=config.debug_mode,
        )
        self._run(config, plan, build_dir)
        return self._collect(config, plan, build_dir, include_dir, lib_dir, msvc=False)

    def _build_msvc(self, config: BuildConfig, out_dir: Path, target: str) -> Artifacts:
        build_dir, include_dir, lib_dir = self._prepare(config, out_dir)

        plan = resolve_msvc_toolchain(
            target=target,
            build_dir=build_dir,
            env=self.env,
            compat_mode=config.compat_mode,
            debug_mode=config.debug_mode,
        )
        self._run(config, plan, build_dir)
        return self._collect(config, plan, build_dir, include_dir, lib_dir, msvc=True)

    def _prepare(self, config: BuildConfig, out_dir: Path) -> tuple[Path, Path, Path]:
        build_dir = out_dir / BUILD_DIR_NAME
        include_dir = out_dir / "include"
        lib_dir = out_dir / "lib"

        stage(config.source_dir, build_dir)
        fresh_dir(lib_dir)
        fresh_dir(include_dir)
        install_relver(config.relver_file, build_dir)
        self._log(
            "stage",
            config,
            "Staged vendored sources.",
            extra={"source_dir": str(config.source_dir), "build_dir": str(build_dir)},
        )
        return build_dir, include_dir, lib_dir

    def _run(self, config: BuildConfig, plan: ToolchainPlan, build_dir: Path) -> None:
        self._log(
            "resolve",
            config,
            "Resolved toolchain.",
            extra={
                "argv": list(plan.argv),
                "compiler": plan.compiler_path,
                "env": dict(sorted(plan.env.items())),
                "fingerprint": plan.fingerprint(),
            },
        )
        run_command(
            plan.argv,
            cwd=build_dir / "src",
            env=self.env,
            env_delta=plan.env,
            description="building LuaJIT",
        )
        self._log("invoke", config, "External build finished.")

    def _collect(
        self,
        config: BuildConfig,
        plan: ToolchainPlan,
        build_dir: Path,
        include_dir: Path,
        lib_dir: Path,
        *,
        msvc: bool,
    ) -> Artifacts:
        artifacts = collect_artifacts(
            build_dir,
            include_dir,
            lib_dir,
            is_msvc=msvc,
            plan_fingerprint=plan.fingerprint(),
        )
        self._log("collect", config, "Collected artifacts.", extra=artifacts.to_dict())
        return artifacts

    def _log(
        self,
        phase: BuildPhase,
        config: BuildConfig,
        message: str,
        *,
        level: LogLevel = "info",
        extra: dict[str, object] | None = None,
    ) -> None:
        self.logger.log(
            operation="build",
            phase=phase,
            target=config.target,
            message=message,
            level=level,
            extra=extra,
        )


def _config_extra(config: BuildConfig) -> dict[str, object]:
    return {
        "out_dir": str(config.out_dir),
        "host": config.host,
        "compat_mode": config.compat_mode,
        "debug_mode": config.debug_mode,
    }
