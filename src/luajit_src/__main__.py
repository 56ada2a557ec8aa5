"""Run a LuaJIT build from a build-script environment and print linker directives."""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from typing import TextIO

from luajit_src.build import Build
from luajit_src.errors import LuajitSrcError


def main(
    env: Mapping[str, str] | None = None,
    *,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
) -> int:
    builder = Build(env=dict(os.environ) if env is None else env)
    try:
        artifacts = builder.build()
    except LuajitSrcError as exc:
        print(f"error[{exc.code}]: {exc}", file=stderr if stderr is not None else sys.stderr)
        return 1
    artifacts.print_cargo_metadata(stdout)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
