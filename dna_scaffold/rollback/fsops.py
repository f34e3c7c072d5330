"""Blocking filesystem primitives used by the transaction log.

These run inside ``asyncio.to_thread``.  Writes go through a temporary file
and ``os.replace`` so a failed write never leaves a half-written target.
"""

from __future__ import annotations

import os
import shutil
import uuid
from pathlib import Path

_IS_WINDOWS = os.name == "nt"
_WINDOWS_LOCK_SIZE = 1

if _IS_WINDOWS:
    import msvcrt
else:
    import fcntl


class OwnerLock:
    """Exclusive, non-blocking OS lock on a file, held until :meth:`release`.

    ``fcntl.flock`` on POSIX and ``msvcrt.locking`` on Windows.  Both are
    tied to the open file, so the lock is dropped when the owning process
    exits (crash included) and a second open of the same file conflicts even
    inside one process.
    """

    def __init__(self, path: Path, fd: int) -> None:
        self.path = path
        self._fd: int | None = fd

    @classmethod
    def try_acquire(cls, path: Path) -> OwnerLock | None:
        """Return the held lock, or ``None`` if another owner holds it.

        Raises:
            FileNotFoundError: If the directory holding *path* is gone.
        """
        fd = os.open(path, os.O_CREAT | os.O_RDWR, 0o644)
        try:
            if _IS_WINDOWS:
                msvcrt.locking(fd, msvcrt.LK_NBLCK, _WINDOWS_LOCK_SIZE)
            else:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            os.close(fd)
            return None
        return cls(path, fd)

    @property
    def held(self) -> bool:
        return self._fd is not None

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            if _IS_WINDOWS:
                os.lseek(fd, 0, os.SEEK_SET)
                msvcrt.locking(fd, msvcrt.LK_UNLCK, _WINDOWS_LOCK_SIZE)
            else:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)


def write_atomic(path: Path, content: str | bytes, *, exclusive: bool = False) -> None:
    """Write *content* to *path* via a sibling temp file and ``os.replace``.

    With ``exclusive=True`` an existing *path* raises ``FileExistsError``.
    """
    if exclusive and (path.exists() or path.is_symlink()):
        raise FileExistsError(f"File already exists: {path}")
    if path.is_dir():
        raise IsADirectoryError(f"Is a directory: {path}")

    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    data = content.encode("utf-8") if isinstance(content, str) else content
    try:
        with open(tmp, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()


def copy_path(source: Path, dest: Path) -> None:
    """Copy a file (with metadata) or a whole directory tree."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    if source.is_dir() and not source.is_symlink():
        shutil.copytree(source, dest, symlinks=True)
    else:
        shutil.copy2(source, dest, follow_symlinks=False)


def restore_path(backup: Path, target: Path) -> None:
    """Put *backup* back at *target*, replacing a file but never a directory."""
    if backup.is_dir() and not backup.is_symlink():
        if target.exists():
            raise FileExistsError(f"Cannot restore directory over existing path: {target}")
        copy_path(backup, target)
        return
    if target.is_dir() and not target.is_symlink():
        raise IsADirectoryError(f"Cannot restore file over directory: {target}")
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_name(f".{target.name}.{uuid.uuid4().hex[:8]}.restore")
    shutil.copy2(backup, tmp, follow_symlinks=False)
    os.replace(tmp, target)


def remove_path(path: Path) -> None:
    """Remove a file, symlink or directory tree.  Missing paths are ignored."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def path_exists(path: Path) -> bool:
    return path.exists() or path.is_symlink()


def missing_parents(path: Path) -> list[Path]:
    """Return the ancestors of *path* that do not exist yet, outermost first."""
    missing: list[Path] = []
    parent = path.parent
    while parent != parent.parent and not parent.exists():
        missing.append(parent)
        parent = parent.parent
    return list(reversed(missing))
