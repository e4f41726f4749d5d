"""Encrypt and decrypt arbitrary files with age."""

from pathlib import Path
from typing import Iterable, Optional, Union

from lockbox.backends.age import AgeBackend
from lockbox.config import ToolConfig
from lockbox.fs import atomic_write_bytes
from lockbox.identity import resolve_identity

PathLike = Union[str, Path]


def _check_paths(input: Path, output: Path, overwrite: bool) -> None:
    if not input.is_file():
        raise FileNotFoundError(f"Input file does not exist: {input}")
    if output.exists() and not overwrite:
        raise FileExistsError(f"Output file already exists: {output}")
    if output.resolve() == input.resolve():
        raise ValueError("Output path must differ from input path")


def encrypt_file(
    input: PathLike,
    output: Optional[PathLike] = None,
    recipients: Optional[Union[str, Iterable[str]]] = None,
    passphrase: Optional[str] = None,
    armor: bool = False,
    overwrite: bool = False,
    age: Optional[AgeBackend] = None,
) -> Path:
    """Encrypt a file for public recipients, or with a passphrase.

    Args:
        input: File to encrypt
        output: Destination; defaults to ``input`` + ".age"
        recipients: age public keys. If omitted the file is encrypted with
            ``passphrase``, or age prompts for one when that is None too.
        armor: Write ASCII-armored output instead of binary
        overwrite: Replace an existing output file

    Returns:
        Path of the encrypted file
    """
    age = age or AgeBackend(ToolConfig.from_env())
    input = Path(input)
    output = Path(output) if output is not None else input.with_name(input.name + ".age")
    _check_paths(input, output, overwrite)

    plaintext = input.read_bytes()
    if recipients:
        if isinstance(recipients, str):
            recipients = [recipients]
        ciphertext = age.encrypt_with_recipients(plaintext, list(recipients), armor=armor)
    else:
        ciphertext = age.encrypt_with_passphrase(plaintext, passphrase, armor=armor)

    atomic_write_bytes(output, ciphertext, mode=0o644)
    return output


def decrypt_file(
    input: PathLike,
    output: Optional[PathLike] = None,
    identity: Optional[PathLike] = None,
    passphrase: Optional[str] = None,
    overwrite: bool = False,
    age: Optional[AgeBackend] = None,
) -> Path:
    """Decrypt an age-encrypted file.

    With an ``identity`` the file is decrypted with that key and
    ``passphrase`` only unlocks a passphrase-protected identity file. Without
    one the file itself is decrypted with ``passphrase``.

    Args:
        input: Encrypted file
        output: Destination; defaults to ``input`` without its ".age" suffix

    Returns:
        Path of the decrypted file (created with owner-only permissions)
    """
    age = age or AgeBackend(ToolConfig.from_env())
    input = Path(input)
    if output is None:
        if input.suffix != ".age":
            raise ValueError(f"Cannot derive an output name from {input}; pass output explicitly")
        output = input.with_suffix("")
    output = Path(output)
    _check_paths(input, output, overwrite)

    ciphertext = input.read_bytes()
    if identity is not None:
        with resolve_identity(identity, age, passphrase) as key_path:
            plaintext = age.decrypt_with_identity(ciphertext, key_path)
    else:
        plaintext = age.decrypt_with_passphrase(ciphertext, passphrase)

    atomic_write_bytes(output, plaintext)
    return output
