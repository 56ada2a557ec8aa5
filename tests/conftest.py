"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from fakes import FakeRunner, FakeToolchain
from luajit_src.artifacts import PUBLIC_HEADERS


@pytest.fixture
def fake_tools(tmp_path: Path) -> FakeToolchain:
    bindir = tmp_path / "toolchain" / "bin"
    bindir.mkdir(parents=True)
    return FakeToolchain(bindir=bindir)


@pytest.fixture
def fake_runner(monkeypatch: pytest.MonkeyPatch) -> FakeRunner:
    """Patches the shared ``subprocess.run`` used by the compiler probe and the invoker."""
    runner = FakeRunner()
    monkeypatch.setattr("luajit_src.invoke.subprocess.run", runner)
    return runner


@pytest.fixture
def vendored_tree(tmp_path: Path) -> Path:
    """A minimal LuaJIT checkout: headers, makefiles, batch script and git metadata."""
    root = tmp_path / "vendor" / "luajit2"
    src = root / "src"
    src.mkdir(parents=True)
    for header in PUBLIC_HEADERS:
        (src / header).write_text(f"/* {header} */\n", encoding="utf-8")
    (src / "Makefile").write_text("all:\n", encoding="utf-8")
    (src / "msvcbuild.bat").write_text("@echo off\n", encoding="utf-8")
    (root / "Makefile").write_text("all:\n", encoding="utf-8")
    (root / ".git").mkdir()
    (root / ".git" / "HEAD").write_text("ref: refs/heads/v2.1\n", encoding="utf-8")
    return root


@pytest.fixture
def relver_file(tmp_path: Path) -> Path:
    path = tmp_path / "vendor" / "luajit_relver.txt"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("1713773202\n", encoding="utf-8")
    path.chmod(0o444)
    return path
