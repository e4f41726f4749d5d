"""age key pair helpers."""

import warnings
from pathlib import Path
from typing import Optional, Union

from lockbox.backends.age import SECRET_KEY_PREFIX, AgeBackend, KeyPair
from lockbox.config import ToolConfig

PathLike = Union[str, Path]


def generate_key(keyfile: Optional[PathLike] = None, age: Optional[AgeBackend] = None) -> KeyPair:
    """Generate a new age key pair, optionally saving it to ``keyfile``.

    Raises:
        FileExistsError: If keyfile already exists
    """
    age = age or AgeBackend(ToolConfig.from_env())
    return age.generate_identity(keyfile)


def key_public(keyfile: PathLike, age: Optional[AgeBackend] = None) -> str:
    """Return the public recipient for an identity file."""
    age = age or AgeBackend(ToolConfig.from_env())
    return age.public_key(keyfile)


def key_private(keyfile: PathLike) -> str:
    """Return the first AGE-SECRET-KEY-1 line of an identity file."""
    lines = Path(keyfile).read_text().splitlines()
    keys = [line.strip() for line in lines if line.strip().startswith(SECRET_KEY_PREFIX)]

    if not keys:
        raise ValueError(f"No {SECRET_KEY_PREFIX}1 found in file: {keyfile}")
    if len(keys) > 1:
        warnings.warn("Multiple private keys found, returning the first one", stacklevel=2)
    return keys[0]
