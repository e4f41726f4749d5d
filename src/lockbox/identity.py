"""Resolve identity references into usable, unencrypted identity files."""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from lockbox.backends.age import SECRET_KEY_PREFIX, AgeBackend
from lockbox.exceptions import MissingIdentityError
from lockbox.fs import private_tempdir, write_private

PathLike = Union[str, Path]


def is_key_string(identity: PathLike) -> bool:
    return isinstance(identity, str) and identity.strip().startswith(SECRET_KEY_PREFIX)


@contextmanager
def resolve_identity(
    identity: PathLike,
    age: AgeBackend,
    passphrase: Optional[str] = None,
) -> Iterator[Path]:
    """Yield a path to a plaintext identity file for the duration of a block.

    ``identity`` may be:

    * a path to a plain age identity file, yielded as is;
    * a path to a passphrase-protected (age-encrypted) identity file, which is
      decrypted with ``passphrase`` (or an interactive age prompt when None);
    * a raw ``AGE-SECRET-KEY-1...`` string.

    Decrypted or materialized key material lives in a private temporary
    directory and is overwritten and removed when the block exits, whether it
    returns, raises or is interrupted.

    Raises:
        MissingIdentityError: If the identity file does not exist
    """
    if is_key_string(identity):
        with private_tempdir() as tmpdir:
            yield write_private(tmpdir / "identity.key", identity.strip().encode() + b"\n")
        return

    path = Path(identity)
    if not path.is_file():
        raise MissingIdentityError("Identity file not found", path=str(path))

    if not age.looks_encrypted(path):
        yield path
        return

    with private_tempdir() as tmpdir:
        plaintext = age.decrypt_with_passphrase(path.read_bytes(), passphrase)
        yield write_private(tmpdir / "identity.key", plaintext)
