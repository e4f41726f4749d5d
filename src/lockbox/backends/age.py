"""age encryption backend.

Wraps the ``age`` and ``age-keygen`` command line tools. Plaintext and
ciphertext travel over stdin/stdout so nothing unencrypted is written to disk
by this module.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence, Union

from lockbox.backends._process import run_tool, stderr_text
from lockbox.config import ToolConfig
from lockbox.exceptions import AuthFailureError, BackendError, DecryptionFailedError

AGE_HEADER = b"age-encryption.org/v1"
AGE_ARMOR_BEGIN = "-----BEGIN AGE ENCRYPTED FILE-----"
SECRET_KEY_PREFIX = "AGE-SECRET-KEY-"

# Fragments of age's stderr that mean the key or passphrase was wrong.
_AUTH_FAILURE_MARKERS = ("no identity matched", "incorrect passphrase")

PathLike = Union[str, Path]


@dataclass
class KeyPair:
    """An age identity: public recipient, private key and creation time."""

    public: str
    private: str = field(repr=False)
    created: datetime

    def __repr__(self) -> str:
        return (
            f"KeyPair(public={self.public!r}, private='AGE-SECRET-KEY-*********', "
            f"created={self.created.isoformat()!r})"
        )

    def __str__(self) -> str:
        return self.public


def looks_encrypted(path: PathLike) -> bool:
    """Sniff the first bytes of a file for an age header or armor boundary."""
    with open(path, "rb") as f:
        head = f.read(256)

    if head.startswith(AGE_HEADER):
        return True

    nul = head.find(b"\x00")
    if nul != -1:
        head = head[:nul]
    return AGE_ARMOR_BEGIN in head.decode("latin-1")


def parse_key_text(text: str) -> KeyPair:
    """Parse the output format of ``age-keygen`` into a KeyPair."""
    public = None
    private = None
    created = None

    for line in text.splitlines():
        line = line.strip()
        if line.startswith("# public key:"):
            public = line.split(":", 1)[1].strip()
        elif line.startswith("# created:"):
            stamp = line.split(":", 1)[1].strip().replace("Z", "+00:00")
            try:
                created = datetime.fromisoformat(stamp)
            except ValueError:
                created = None
        elif line.startswith(SECRET_KEY_PREFIX) and private is None:
            private = line

    if not public or not private:
        raise BackendError("Unexpected age-keygen output: no key pair found", backend="age")

    return KeyPair(public=public, private=private, created=created or datetime.now(timezone.utc))


class AgeBackend:
    """Encrypt and decrypt bytes with the age CLI."""

    name = "age"

    def __init__(self, config: Optional[ToolConfig] = None) -> None:
        self.config = config or ToolConfig()

    def version(self) -> str:
        result = run_tool([self.config.age, "--version"], backend=self.name)
        if result.returncode != 0:
            raise BackendError("age --version failed", backend=self.name,
                               returncode=result.returncode, stderr=stderr_text(result))
        return result.stdout.decode().strip()

    def keygen_version(self) -> str:
        result = run_tool([self.config.age_keygen, "--version"], backend=self.name)
        if result.returncode != 0:
            raise BackendError("age-keygen --version failed", backend=self.name,
                               returncode=result.returncode, stderr=stderr_text(result))
        return result.stdout.decode().strip()

    def encrypt_with_recipients(self, plaintext: bytes, recipients: Sequence[str], armor: bool = False) -> bytes:
        """Encrypt to one or more public recipients.

        Raises:
            BackendError: If a recipient is malformed or age fails
        """
        if not recipients:
            raise ValueError("at least one recipient is required")

        cmd = [self.config.age, "--encrypt"]
        for recipient in recipients:
            cmd.extend(["-r", recipient])
        if armor:
            cmd.append("--armor")

        result = run_tool(cmd, backend=self.name, input=plaintext)
        if result.returncode != 0:
            raise BackendError("age encryption failed", backend=self.name,
                               returncode=result.returncode, stderr=stderr_text(result))
        return result.stdout

    def encrypt_with_passphrase(self, plaintext: bytes, passphrase: Optional[str] = None, armor: bool = False) -> bytes:
        """Encrypt with a passphrase.

        With ``passphrase=None`` age prompts on the terminal. Otherwise the
        passphrase is handed to age's batchpass plugin through the child's
        environment only.
        """
        cmd = [self.config.age, "--encrypt"]
        cmd.extend(self._passphrase_args(passphrase))
        if armor:
            cmd.append("--armor")

        result = run_tool(cmd, backend=self.name, input=plaintext, env=self._passphrase_env(passphrase))
        if result.returncode != 0:
            raise BackendError("age passphrase encryption failed", backend=self.name,
                               returncode=result.returncode, stderr=stderr_text(result))
        return result.stdout

    def decrypt_with_identity(self, ciphertext: bytes, identity_path: PathLike) -> bytes:
        cmd = [self.config.age, "--decrypt", "-i", str(identity_path)]
        result = run_tool(cmd, backend=self.name, input=ciphertext)
        return self._decrypted_output(result)

    def decrypt_with_passphrase(self, ciphertext: bytes, passphrase: Optional[str] = None) -> bytes:
        cmd = [self.config.age, "--decrypt"]
        if passphrase is not None:
            cmd.extend(self._passphrase_args(passphrase))
        result = run_tool(cmd, backend=self.name, input=ciphertext, env=self._passphrase_env(passphrase))
        return self._decrypted_output(result)

    def generate_identity(self, output_path: Optional[PathLike] = None) -> KeyPair:
        """Generate a new X25519 identity.

        Args:
            output_path: Where to save the identity. If None the key pair is
                only returned in memory.

        Raises:
            FileExistsError: If output_path already exists
        """
        if output_path is None:
            result = run_tool([self.config.age_keygen], backend=self.name)
            if result.returncode != 0:
                raise BackendError("age-keygen failed", backend=self.name,
                                   returncode=result.returncode, stderr=stderr_text(result))
            return parse_key_text(result.stdout.decode())

        output_path = Path(output_path)
        if output_path.exists():
            raise FileExistsError(f"Identity file already exists: {output_path}")
        output_path.parent.mkdir(parents=True, exist_ok=True)

        result = run_tool([self.config.age_keygen, "-o", str(output_path)], backend=self.name)
        if result.returncode != 0:
            raise BackendError("age-keygen failed", path=str(output_path), backend=self.name,
                               returncode=result.returncode, stderr=stderr_text(result))

        os.chmod(output_path, 0o600)
        return parse_key_text(output_path.read_text())

    def public_key(self, identity_path: PathLike) -> str:
        """Derive the public recipient of an identity file."""
        result = run_tool([self.config.age_keygen, "-y", str(identity_path)], backend=self.name)
        lines = [line.strip() for line in result.stdout.decode().splitlines() if line.strip()]
        if result.returncode != 0 or not lines:
            raise BackendError("Failed to read public key", path=str(identity_path), backend=self.name,
                               returncode=result.returncode, stderr=stderr_text(result))
        return lines[-1]

    def looks_encrypted(self, path: PathLike) -> bool:
        return looks_encrypted(path)

    def _passphrase_args(self, passphrase: Optional[str]) -> list:
        if passphrase is None:
            return ["--passphrase"]
        if not passphrase:
            raise ValueError("passphrase must not be empty")
        return ["-j", "batchpass"]

    def _passphrase_env(self, passphrase: Optional[str]) -> Optional[dict]:
        if passphrase is None:
            return None
        env = os.environ.copy()
        env["AGE_PASSPHRASE"] = passphrase
        return env

    def _decrypted_output(self, result) -> bytes:
        if result.returncode != 0:
            message = stderr_text(result)
            if any(marker in message.lower() for marker in _AUTH_FAILURE_MARKERS):
                raise AuthFailureError("age could not decrypt with the given key or passphrase",
                                       backend=self.name, returncode=result.returncode, stderr=message)
            raise DecryptionFailedError("age decryption failed", backend=self.name,
                                        returncode=result.returncode, stderr=message)
        if not result.stdout:
            raise DecryptionFailedError("age decryption produced no output", backend=self.name)
        return result.stdout
