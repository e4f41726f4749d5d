"""SOPS secrets-manager backend.

sops encrypts a whole YAML document at once and records the key-wrap
metadata for every recipient in a top-level ``sops`` block.
"""

import os
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union

from lockbox.backends._process import run_tool, stderr_text
from lockbox.config import ToolConfig
from lockbox.exceptions import AuthFailureError, BackendError, DecryptionFailedError
from lockbox.fs import private_tempdir, write_private

SOPS_METADATA_KEY = "sops"

# sops exit code for "could not retrieve the data key".
_COULD_NOT_RETRIEVE_KEY = 128

PathLike = Union[str, Path]


def key_type(document: Mapping[str, Any]) -> str:
    """Return the key type protecting a sops document: "age", "pgp" or "other"."""
    metadata = document.get(SOPS_METADATA_KEY) or {}
    if metadata.get("age"):
        return "age"
    if metadata.get("pgp"):
        return "pgp"
    return "other"


def recipients(document: Mapping[str, Any]) -> list:
    """Extract the recipients recorded in a sops document's metadata block.

    age recipients are returned for age documents, PGP fingerprints for PGP
    documents. Other key types (KMS, Vault...) yield an empty list.
    """
    metadata = document.get(SOPS_METADATA_KEY) or {}
    kind = key_type(document)
    if kind == "age":
        return [str(entry["recipient"]) for entry in metadata["age"] if entry.get("recipient")]
    if kind == "pgp":
        return [str(entry["fp"]) for entry in metadata["pgp"] if entry.get("fp")]
    return []


def is_age_recipient(recipient: str) -> bool:
    return recipient.startswith("age1")


class SopsBackend:
    """Encrypt and decrypt whole YAML documents with the sops CLI."""

    name = "sops"

    def __init__(self, config: Optional[ToolConfig] = None) -> None:
        self.config = config or ToolConfig()

    def version(self) -> str:
        result = run_tool([self.config.sops, "--version"], backend=self.name)
        if result.returncode != 0:
            raise BackendError("sops --version failed", backend=self.name,
                               returncode=result.returncode, stderr=stderr_text(result))
        return result.stdout.decode().strip().splitlines()[0]

    def encrypt_document(self, plaintext_yaml: bytes, recipients: Sequence[str]) -> bytes:
        """Encrypt a YAML document for the given age recipients or PGP fingerprints."""
        if not recipients:
            raise ValueError("at least one recipient is required")

        if any(is_age_recipient(r) for r in recipients):
            key_args = ["--age", ",".join(recipients)]
        else:
            key_args = ["--pgp", ",".join(recipients)]

        with private_tempdir() as tmpdir:
            plaintext_file = write_private(tmpdir / "plaintext.yaml", plaintext_yaml)
            cmd = self._base_cmd() + ["--encrypt", "--input-type", "yaml", "--output-type", "yaml"]
            cmd += key_args + [str(plaintext_file)]
            result = run_tool(cmd, backend=self.name)

        if result.returncode != 0:
            raise BackendError("sops encryption failed", backend=self.name,
                               returncode=result.returncode, stderr=stderr_text(result))
        if not result.stdout:
            raise BackendError("sops encryption produced no output", backend=self.name)
        return result.stdout

    def decrypt_document(self, envelope_bytes: bytes, identity_path: Optional[PathLike] = None) -> bytes:
        """Decrypt a sops envelope.

        Args:
            envelope_bytes: Raw content of the encrypted YAML file
            identity_path: age identity file. If None, sops resolves keys on
                its own (gpg-agent, SOPS_AGE_KEY_FILE already set, ...)
        """
        env = None
        if identity_path is not None:
            env = os.environ.copy()
            env["SOPS_AGE_KEY_FILE"] = str(identity_path)

        with private_tempdir() as tmpdir:
            envelope_file = write_private(tmpdir / "envelope.yaml", envelope_bytes)
            cmd = self._base_cmd() + ["--decrypt", "--input-type", "yaml", "--output-type", "yaml",
                                      str(envelope_file)]
            result = run_tool(cmd, backend=self.name, env=env)

        if result.returncode == _COULD_NOT_RETRIEVE_KEY:
            raise AuthFailureError("sops could not retrieve the data key with the given identity",
                                   backend=self.name, returncode=result.returncode,
                                   stderr=stderr_text(result))
        if result.returncode != 0:
            raise DecryptionFailedError("sops decryption failed", backend=self.name,
                                        returncode=result.returncode, stderr=stderr_text(result))
        if not result.stdout:
            raise DecryptionFailedError("sops decryption produced no output", backend=self.name)
        return result.stdout

    def _base_cmd(self) -> list:
        cmd = [self.config.sops]
        if self.config.sops_config:
            cmd.extend(["--config", self.config.sops_config])
        return cmd
