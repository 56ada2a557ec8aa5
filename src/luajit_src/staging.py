"""Scratch-tree staging for the vendored LuaJIT sources."""

from __future__ import annotations

import shutil
import stat
from collections.abc import Callable
from pathlib import Path

from luajit_src.errors import FilesystemError

# Receives the entry path relative to the copy root.
ExcludePredicate = Callable[[Path], bool]

RELVER_NAME = ".relver"


def exclude_names(*names: str) -> ExcludePredicate:
    excluded = frozenset(names)

    def predicate(relative: Path) -> bool:
        return relative.name in excluded

    return predicate


exclude_vcs_metadata = exclude_names(".git")


def fresh_dir(path: Path) -> Path:
    """Remove ``path`` if present and recreate it empty."""
    if path.exists():
        try:
            shutil.rmtree(path)
        except OSError as exc:
            raise _fs_error("Cannot remove directory.", path, exc) from exc
    try:
        path.mkdir(parents=True)
    except OSError as exc:
        raise _fs_error("Cannot create directory.", path, exc) from exc
    return path


def copy_tree(src: Path, dst: Path, *, exclude: ExcludePredicate = exclude_vcs_metadata) -> None:
    """Recursively copy ``src`` into existing ``dst``, skipping excluded entries."""
    _copy_entries(src, dst, Path(), exclude)


def stage(
    source_dir: Path,
    build_dir: Path,
    *,
    exclude: ExcludePredicate = exclude_vcs_metadata,
) -> Path:
    if not source_dir.is_dir():
        raise FilesystemError(
            "Vendored source directory does not exist.",
            hint="Point set_source_directory() at a LuaJIT checkout.",
            context={"operation": "stage", "path": str(source_dir)},
        )
    fresh_dir(build_dir)
    copy_tree(source_dir, build_dir, exclude=exclude)
    return build_dir


def install_relver(relver_file: Path, build_dir: Path) -> Path:
    """Copy the release marker to ``<build_dir>/.relver`` and make it writable."""
    relver = build_dir / RELVER_NAME
    try:
        shutil.copy(relver_file, relver)
        mode = relver.stat().st_mode
        relver.chmod(mode | stat.S_IWUSR)
    except OSError as exc:
        raise _fs_error("Cannot install release version file.", relver_file, exc) from exc
    return relver


def _copy_entries(root: Path, dst_root: Path, relative: Path, exclude: ExcludePredicate) -> None:
    source = root / relative
    try:
        entries = sorted(source.iterdir())
    except OSError as exc:
        raise _fs_error("Cannot read directory.", source, exc) from exc

    for entry in entries:
        entry_relative = relative / entry.name
        if exclude(entry_relative):
            continue
        target = dst_root / entry_relative
        if entry.is_dir():
            try:
                target.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise _fs_error("Cannot create directory.", target, exc) from exc
            _copy_entries(root, dst_root, entry_relative, exclude)
            continue
        try:
            target.unlink(missing_ok=True)
            shutil.copy(entry, target)
        except OSError as exc:
            raise _fs_error("Cannot copy file.", entry, exc) from exc


def _fs_error(message: str, path: Path, exc: OSError) -> FilesystemError:
    return FilesystemError(
        message,
        hint="Check permissions and free space under the output directory.",
        context={"operation": "stage", "path": str(path), "error": str(exc)},
    )
