"""File helpers: atomic replacement and short-lived private files."""

import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

PathLike = Union[str, Path]


def atomic_write_bytes(path: PathLike, data: bytes, mode: int = 0o600) -> None:
    """Replace ``path`` with ``data`` so readers never see a partial file.

    The temporary file lives in the destination directory so the final
    rename stays on one filesystem.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def write_private(path: PathLike, data: bytes) -> Path:
    """Create ``path`` readable and writable by the owner only."""
    path = Path(path)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    return path


def shred(path: PathLike) -> None:
    """Overwrite a file with zeros, then remove it."""
    path = Path(path)
    if not path.exists():
        return
    size = path.stat().st_size
    with open(path, "r+b") as f:
        f.write(b"\x00" * size)
        f.flush()
        os.fsync(f.fileno())
    path.unlink()


@contextmanager
def private_tempdir() -> Iterator[Path]:
    """Yield a 0700 temporary directory whose files are shredded on exit."""
    tmpdir = Path(tempfile.mkdtemp(prefix="lockbox-"))
    try:
        yield tmpdir
    finally:
        for child in tmpdir.iterdir():
            if child.is_file():
                shred(child)
        shutil.rmtree(tmpdir, ignore_errors=True)
