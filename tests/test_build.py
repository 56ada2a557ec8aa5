import json
from pathlib import Path

import pytest

from fakes import FakeRunner, FakeToolchain
from luajit_src import Build, BuildConfig
from luajit_src.errors import ConfigurationError, ExternalProcessError
from luajit_src.msvc import MsvcEnvironment

LINUX = "x86_64-unknown-linux-gnu"


def _builder(
    tmp_path: Path,
    vendored_tree: Path,
    relver_file: Path,
    env: dict[str, str],
) -> Build:
    return (
        Build(env=env)
        .set_output_directory(tmp_path / "out")
        .set_source_directory(vendored_tree)
        .set_relver_file(relver_file)
    )


def test_linux_build_end_to_end(
    tmp_path: Path,
    vendored_tree: Path,
    relver_file: Path,
    fake_tools: FakeToolchain,
    fake_runner: FakeRunner,
) -> None:
    fake_tools.add("cc", "ar", "strip")
    env = fake_tools.env(CARGO_CFG_TARGET_POINTER_WIDTH="64")
    snapshot = dict(env)
    builder = _builder(tmp_path, vendored_tree, relver_file, env)

    artifacts = (
        builder.set_target(LINUX)
        .set_host(LINUX)
        .set_compat_mode(False)
        .set_debug_mode(False)
        .build()
    )

    (call,) = fake_runner.build_calls
    build_env = call["env"]
    assert call["argv"] == ["make", "-e"]
    assert call["cwd"] == str(tmp_path / "out" / "luajit-build" / "src")
    assert build_env["TARGET_SYS"] == "Linux"
    assert build_env["BUILDMODE"] == "static"
    assert build_env["XCFLAGS"] == "-fPIC"
    assert "LUA_USE_ASSERT" not in build_env["XCFLAGS"]
    assert artifacts.libs == ("luajit",)
    assert artifacts.lib_file.read_bytes() == b"!<arch>\n"
    assert (artifacts.include_dir / "luajit.h").exists()
    assert (tmp_path / "out" / "luajit-build" / ".relver").exists()
    assert env == snapshot
    assert builder.state == "succeeded"


def test_debug_and_compat_flags_reach_xcflags(
    tmp_path: Path,
    vendored_tree: Path,
    relver_file: Path,
    fake_tools: FakeToolchain,
    fake_runner: FakeRunner,
) -> None:
    fake_tools.add("cc", "ar", "strip")
    builder = _builder(tmp_path, vendored_tree, relver_file, fake_tools.env())

    builder.set_target(LINUX).set_host(LINUX).set_compat_mode(True).set_debug_mode(True).build()

    xcflags = fake_runner.build_calls[0]["env"]["XCFLAGS"].split()
    assert xcflags == [
        "-fPIC",
        "-DLUAJIT_ENABLE_LUA52COMPAT",
        "-DLUA_USE_ASSERT",
        "-DLUA_USE_APICHECK",
        "-g",
    ]


@pytest.mark.parametrize(("preset", "expected"), [(None, "11.0"), ("12.0", "12.0")])
def test_apple_arm_deployment_target(
    tmp_path: Path,
    vendored_tree: Path,
    relver_file: Path,
    fake_tools: FakeToolchain,
    fake_runner: FakeRunner,
    preset: str | None,
    expected: str,
) -> None:
    fake_tools.add("cc", "ar", "strip")
    fake_runner.probe_output = "#define __clang__ 1\n"
    env = fake_tools.env()
    if preset is not None:
        env["MACOSX_DEPLOYMENT_TARGET"] = preset
    target = "aarch64-apple-darwin"

    _builder(tmp_path, vendored_tree, relver_file, env).set_target(target).set_host(target).build()

    assert fake_runner.build_calls[0]["env"]["MACOSX_DEPLOYMENT_TARGET"] == expected


def test_msvc_target_uses_batch_script_regardless_of_host(
    tmp_path: Path,
    vendored_tree: Path,
    relver_file: Path,
    fake_runner: FakeRunner,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(
        "luajit_src.toolchain.find_msvc_env",
        lambda target, env: MsvcEnvironment(cl=Path("C:/VC/bin/cl.exe"), env={"LIB": "C:\\lib"}),
    )
    builder = _builder(tmp_path, vendored_tree, relver_file, {})

    artifacts = (
        builder.set_target("x86_64-pc-windows-msvc").set_host(LINUX).set_compat_mode(True).build()
    )

    (call,) = fake_runner.build_calls
    assert call["argv"][0] == str(tmp_path / "out" / "luajit-build" / "src" / "msvcbuild.bat")
    assert call["argv"][1:] == ["lua52compat", "static"]
    assert call["env"]["LIB"] == "C:\\lib"
    assert artifacts.libs == ("lua51",)


def test_missing_output_directory_fails_before_touching_disk(
    tmp_path: Path,
    vendored_tree: Path,
    fake_runner: FakeRunner,
) -> None:
    before = sorted(tmp_path.rglob("*"))
    builder = Build(env={}).set_target(LINUX).set_host(LINUX).set_source_directory(vendored_tree)

    with pytest.raises(ConfigurationError) as excinfo:
        builder.build()

    assert excinfo.value.context["missing"] == "OUT_DIR"
    assert sorted(tmp_path.rglob("*")) == before
    assert fake_runner.calls == []
    assert builder.state == "unconfigured"


def test_all_missing_settings_are_reported() -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        Build(env={}).build()

    assert excinfo.value.context["missing"] == "OUT_DIR,TARGET,HOST"


def test_settings_default_from_ambient_environment(tmp_path: Path) -> None:
    env = {"OUT_DIR": str(tmp_path), "TARGET": LINUX, "HOST": LINUX, "DEBUG": "true"}

    builder = Build(env=env)
    config = builder.set_host("x86_64-unknown-freebsd").config()

    assert builder.state == "configured"
    assert config == BuildConfig(
        out_dir=tmp_path,
        target=LINUX,
        host="x86_64-unknown-freebsd",
        debug_mode=True,
    )


def test_vendored_paths_can_come_from_environment(tmp_path: Path) -> None:
    env = {
        "LUAJIT_SOURCE_DIR": str(tmp_path / "luajit2"),
        "LUAJIT_RELVER_FILE": str(tmp_path / "relver.txt"),
    }

    config = BuildConfig.from_env(env)

    assert config.source_dir == tmp_path / "luajit2"
    assert config.relver_file == tmp_path / "relver.txt"
    assert config.missing() == ("OUT_DIR", "TARGET", "HOST")


def test_stale_outputs_are_removed_before_collecting(
    tmp_path: Path,
    vendored_tree: Path,
    relver_file: Path,
    fake_tools: FakeToolchain,
    fake_runner: FakeRunner,
) -> None:
    fake_tools.add("cc", "ar", "strip")
    for stale in ("lib/liblua51.a", "include/stale.h", "luajit-build/src/lj_vm.o"):
        path = tmp_path / "out" / stale
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"stale")

    builder = _builder(tmp_path, vendored_tree, relver_file, fake_tools.env())
    builder.set_target(LINUX).set_host(LINUX).build()

    assert [path.name for path in (tmp_path / "out" / "lib").iterdir()] == ["libluajit.a"]
    assert not (tmp_path / "out" / "include" / "stale.h").exists()
    assert not (tmp_path / "out" / "luajit-build" / "src" / "lj_vm.o").exists()


def test_failed_build_is_not_retried(
    tmp_path: Path,
    vendored_tree: Path,
    relver_file: Path,
    fake_tools: FakeToolchain,
    fake_runner: FakeRunner,
) -> None:
    fake_tools.add("cc", "ar", "strip")
    fake_runner.returncode = 2
    builder = _builder(tmp_path, vendored_tree, relver_file, fake_tools.env())
    builder.set_target(LINUX).set_host(LINUX)

    with pytest.raises(ExternalProcessError) as excinfo:
        builder.build()

    assert excinfo.value.context["exit_status"] == "exit code 2"
    assert builder.state == "failed"
    (failure,) = builder.logger.records_for_phase("failed")
    assert failure["level"] == "error"
    assert failure["extra"] == {"code": "E_EXTERNAL_PROCESS"}
    assert not (tmp_path / "out" / "lib" / "libluajit.a").exists()
    with pytest.raises(ConfigurationError):
        builder.build()
    assert len(fake_runner.build_calls) == 1


def test_build_log_and_manifest_are_written(
    tmp_path: Path,
    vendored_tree: Path,
    relver_file: Path,
    fake_tools: FakeToolchain,
    fake_runner: FakeRunner,
) -> None:
    fake_tools.add("cc", "ar", "strip")
    builder = _builder(tmp_path, vendored_tree, relver_file, fake_tools.env())

    artifacts = builder.set_target(LINUX).set_host(LINUX).build()

    phases = [record["phase"] for record in builder.logger.records]
    assert phases == ["configure", "stage", "resolve", "invoke", "collect"]
    resolve = builder.logger.records_for_phase("resolve")[0]
    assert resolve["extra"]["fingerprint"] == artifacts.plan_fingerprint
    log_lines = (tmp_path / "out" / "luajit-build.log.jsonl").read_text(encoding="utf-8")
    assert len(log_lines.strip().splitlines()) == 5
    manifest = json.loads((tmp_path / "out" / "luajit-artifacts.json").read_text(encoding="utf-8"))
    assert manifest["libs"] == ["luajit"]
