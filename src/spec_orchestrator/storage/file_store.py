"""Atomic file writes with validation and timestamped backups.

Every write goes through a hidden sibling temp file followed by a single
``os.replace``. The target is therefore either fully replaced or untouched.
A validator, when given, runs before anything on disk changes.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from spec_orchestrator.storage.common import backup_stamp

logger = logging.getLogger(__name__)

DEFAULT_BACKUP_DIR = Path(".kiro/backups")
DEFAULT_MAX_BACKUPS = 10
BACKUP_INFIX = ".backup."

ContentValidator = Callable[[str], bool]


@dataclass(slots=True)
class WriteResult:
    """Outcome of an atomic write."""

    success: bool
    file_path: Path
    backup_path: Path | None = None
    error: str | None = None


@dataclass(slots=True)
class BackupResult:
    """Outcome of a backup copy."""

    success: bool
    backup_path: Path | None = None
    error: str | None = None


def atomic_write(
    path: Path,
    content: str,
    *,
    validate: ContentValidator | None = None,
    create_dirs: bool = True,
    encoding: str = "utf-8",
) -> WriteResult:
    """Replace ``path`` with ``content`` using write-to-temp-then-rename."""

    if validate is not None and not validate(content):
        return WriteResult(success=False, file_path=path, error="Content validation failed")
    return _replace_file(path, content, create_dirs=create_dirs, encoding=encoding)


def atomic_write_with_backup(  # noqa: PLR0913
    path: Path,
    content: str,
    *,
    backup_dir: Path = DEFAULT_BACKUP_DIR,
    max_backups: int = DEFAULT_MAX_BACKUPS,
    validate: ContentValidator | None = None,
    create_dirs: bool = True,
    encoding: str = "utf-8",
) -> WriteResult:
    """Back up the existing file, prune old backups, then write atomically."""

    if validate is not None and not validate(content):
        return WriteResult(success=False, file_path=path, error="Content validation failed")

    backup_path: Path | None = None
    if path.exists():
        backup = create_backup(path, backup_dir=backup_dir, max_backups=max_backups)
        if not backup.success:
            return WriteResult(
                success=False,
                file_path=path,
                error=f"Backup failed: {backup.error}",
            )
        backup_path = backup.backup_path

    result = _replace_file(path, content, create_dirs=create_dirs, encoding=encoding)
    result.backup_path = backup_path
    return result


def create_backup(
    path: Path,
    *,
    backup_dir: Path = DEFAULT_BACKUP_DIR,
    max_backups: int = DEFAULT_MAX_BACKUPS,
) -> BackupResult:
    """Copy ``path`` into ``backup_dir`` under a timestamped name."""

    if not path.is_file():
        return BackupResult(success=False, error="Source file does not exist")
    try:
        backup_dir.mkdir(parents=True, exist_ok=True)
        backup_path = _next_backup_path(path, backup_dir)
        shutil.copy2(path, backup_path)
    except OSError as error:
        return BackupResult(success=False, error=f"Failed to create backup: {error}")

    prune_backups(path, backup_dir=backup_dir, max_backups=max_backups)
    return BackupResult(success=True, backup_path=backup_path)


def prune_backups(path: Path, *, backup_dir: Path, max_backups: int) -> list[Path]:
    """Delete backups of ``path`` beyond the newest ``max_backups``."""

    removed: list[Path] = []
    for stale in list_backups(path, backup_dir=backup_dir)[max(0, max_backups) :]:
        try:
            stale.unlink()
        except OSError as error:
            logger.warning("Could not prune backup %s: %s", stale, error)
            continue
        removed.append(stale)
    return removed


def list_backups(path: Path, *, backup_dir: Path = DEFAULT_BACKUP_DIR) -> list[Path]:
    """Backups of ``path``, newest first."""

    if not backup_dir.is_dir():
        return []
    prefix = f"{path.name}{BACKUP_INFIX}"
    backups = [item for item in backup_dir.iterdir() if item.name.startswith(prefix)]
    return sorted(backups, key=lambda item: item.name, reverse=True)


def restore_from_backup(backup_path: Path, target_path: Path) -> WriteResult:
    """Atomically restore ``target_path`` from a backup copy."""

    content = safe_read(backup_path)
    if content is None:
        return WriteResult(
            success=False,
            file_path=target_path,
            error="Backup file does not exist",
        )
    return atomic_write(target_path, content)


def safe_read(path: Path, encoding: str = "utf-8") -> str | None:
    """Read a text file, returning ``None`` when it is missing or unreadable."""

    try:
        with path.open("r", encoding=encoding, newline="") as handle:
            return handle.read()
    except (OSError, UnicodeDecodeError):
        return None


def validate_basic_content(content: str) -> bool:
    """Content must be a non-blank string."""

    return isinstance(content, str) and bool(content.strip())


def validate_markdown(content: str) -> bool:
    """Markdown well-formedness check used before committing spec files."""

    if not validate_basic_content(content):
        return False
    return "\x00" not in content


def _replace_file(path: Path, content: str, *, create_dirs: bool, encoding: str) -> WriteResult:
    temp_path = path.with_name(f".{path.name}.{uuid4().hex}.tmp")
    try:
        if create_dirs:
            path.parent.mkdir(parents=True, exist_ok=True)
        with temp_path.open("w", encoding=encoding, newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    except OSError as error:
        _discard(temp_path)
        return WriteResult(success=False, file_path=path, error=f"Failed to write file: {error}")
    return WriteResult(success=True, file_path=path)


def _next_backup_path(path: Path, backup_dir: Path) -> Path:
    base = f"{path.name}{BACKUP_INFIX}{backup_stamp()}"
    counter = 0
    candidate = backup_dir / f"{base}.{counter:03d}{path.suffix}"
    while candidate.exists():
        counter += 1
        candidate = backup_dir / f"{base}.{counter:03d}{path.suffix}"
    return candidate


def _discard(temp_path: Path) -> None:
    try:
        temp_path.unlink(missing_ok=True)
    except OSError as error:
        logger.warning("Could not remove temp file %s: %s", temp_path, error)
