"""Format-detecting, merge-on-write secret store.

A store file (the envelope) maps secret names to encrypted values. Writing to
an existing envelope decrypts it, merges the new secrets over the old ones and
re-encrypts everything for the envelope's existing recipients. The file is
replaced atomically, so a failed write leaves the previous envelope intact.
"""

import base64
import binascii
import os
import warnings
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, MutableMapping, Optional, Set, Union

import yaml

from lockbox import __version__
from lockbox.backends.age import AgeBackend
from lockbox.backends.sops import SOPS_METADATA_KEY, SopsBackend
from lockbox.config import ToolConfig
from lockbox.envelope import (
    RESERVED_KEYS,
    CustomEnvelope,
    Envelope,
    EnvelopeFormat,
    SopsEnvelope,
    detect_format,
    load_envelope,
    render_custom,
)
from lockbox.exceptions import (
    DecryptionFailedError,
    InvalidSecretValueError,
    MalformedEnvelopeError,
    MissingIdentityError,
    MissingRecipientsError,
    RecipientMismatchError,
)
from lockbox.fs import atomic_write_bytes
from lockbox.identity import resolve_identity

PathLike = Union[str, Path]


class MissingSecretsWarning(UserWarning):
    """Some requested secret names were not present in the envelope."""

    def __init__(self, names: List[str]) -> None:
        super().__init__(f"Secrets not found: {', '.join(names)}")
        self.names = names


def validate_secrets(secrets: Mapping[str, str]) -> None:
    """Check that every secret is a named, non-empty, single-line string.

    Raises:
        InvalidSecretValueError: On the first offending entry
    """
    if not isinstance(secrets, Mapping):
        raise InvalidSecretValueError(f"secrets must be a mapping, got {type(secrets).__name__}")

    for name, value in secrets.items():
        if not isinstance(name, str) or not name:
            raise InvalidSecretValueError(f"Secret names must be non-empty strings, got {name!r}")
        if name in RESERVED_KEYS or name == SOPS_METADATA_KEY:
            raise InvalidSecretValueError("Secret name is reserved for envelope metadata", secret_name=name)
        if not isinstance(value, str):
            raise InvalidSecretValueError(
                f"Secret must be a single string, got {type(value).__name__}", secret_name=name
            )
        if not value:
            raise InvalidSecretValueError("Secret cannot be empty", secret_name=name)
        if "\n" in value or "\r" in value:
            raise InvalidSecretValueError("Secret must be a single line", secret_name=name)


def normalize_recipients(recipients: Union[str, Iterable[str]], path: Optional[PathLike] = None) -> List[str]:
    """Return recipients as a de-duplicated list, preserving order.

    Raises:
        MissingRecipientsError: If any recipient is blank
    """
    if isinstance(recipients, str):
        recipients = [recipients]
    result = []
    for recipient in recipients:
        recipient = str(recipient).strip()
        if not recipient:
            raise MissingRecipientsError(
                "Recipients must be non-empty strings", path=str(path) if path is not None else None
            )
        if recipient not in result:
            result.append(recipient)
    return result


def _as_format(fmt: Union[EnvelopeFormat, str]) -> EnvelopeFormat:
    fmt = EnvelopeFormat(fmt)
    if fmt is EnvelopeFormat.NEW_FILE:
        raise ValueError("fmt must be 'custom' or 'sops'")
    return fmt


def _parse_plaintext_document(plaintext: bytes, path: Path) -> Dict[str, str]:
    try:
        data = yaml.safe_load(plaintext)
    except yaml.YAMLError as e:
        raise MalformedEnvelopeError(f"Decrypted document is not valid YAML: {e}", path=str(path)) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise MalformedEnvelopeError("Decrypted document is not a mapping", path=str(path))

    secrets = {}
    for name, value in data.items():
        if isinstance(value, (dict, list)) or value is None:
            raise MalformedEnvelopeError("Secret value is not a scalar", path=str(path), secret_name=str(name))
        secrets[str(name)] = value if isinstance(value, str) else str(value)
    return secrets


class SecretStore:
    """Read and write secret envelopes through the age and sops backends."""

    def __init__(
        self,
        age: Optional[AgeBackend] = None,
        sops: Optional[SopsBackend] = None,
        config: Optional[ToolConfig] = None,
    ) -> None:
        config = config or ToolConfig.from_env()
        self.age = age or AgeBackend(config)
        self.sops = sops or SopsBackend(config)

    def put(
        self,
        path: PathLike,
        secrets: Mapping[str, str],
        recipients: Optional[Union[str, Iterable[str]]] = None,
        identity: Optional[PathLike] = None,
        passphrase: Optional[str] = None,
        fmt: Union[EnvelopeFormat, str] = EnvelopeFormat.CUSTOM,
    ) -> None:
        """Create an envelope, or merge secrets into an existing one.

        Args:
            path: Envelope file
            secrets: Secret names mapped to plaintext values
            recipients: Public keys. Required for a new envelope; for an
                existing one they must match its recipients exactly.
            identity: Private key file or key string. Required to update an
                existing envelope.
            passphrase: Unlocks a passphrase-protected identity file
            fmt: Format for a new envelope. Existing envelopes keep theirs.

        Raises:
            InvalidSecretValueError: If a secret is empty, multi-line or not a string
            MissingRecipientsError: If creating without recipients
            MissingIdentityError: If updating without an identity
            RecipientMismatchError: If recipients disagree with the envelope's
            BackendError: If encryption or decryption fails; the file is untouched
        """
        path = Path(path)
        validate_secrets(secrets)
        if recipients is not None:
            recipients = normalize_recipients(recipients, path)

        created = None
        if detect_format(path) is EnvelopeFormat.NEW_FILE:
            if not recipients:
                raise MissingRecipientsError("Recipients are required to create a new envelope", path=str(path))
            fmt = _as_format(fmt)
            merged = dict(secrets)
        else:
            envelope = load_envelope(path)
            if recipients is not None and set(recipients) != set(envelope.recipients):
                raise RecipientMismatchError(
                    "Provided recipients do not match the envelope's recipients", path=str(path)
                )
            if not envelope.recipients:
                raise MalformedEnvelopeError("Envelope has no age or PGP recipients to re-encrypt for", path=str(path))

            existing = self._decrypt(envelope, identity, passphrase)
            merged = {**existing, **secrets}
            recipients = envelope.recipients
            fmt = envelope.format
            if isinstance(envelope, CustomEnvelope):
                created = envelope.created

        data = self._encrypt(fmt, merged, recipients, created)
        atomic_write_bytes(path, data)

    def get(
        self,
        path: PathLike,
        identity: Optional[PathLike] = None,
        names: Optional[Union[str, Iterable[str]]] = None,
        passphrase: Optional[str] = None,
    ) -> Dict[str, str]:
        """Decrypt an envelope.

        Args:
            path: Envelope file
            identity: Private key file or key string. May be omitted only for
                sops envelopes whose keys sops resolves itself (e.g. PGP).
            names: Only return these secrets. Names that are absent produce a
                MissingSecretsWarning and are left out of the result.
            passphrase: Unlocks a passphrase-protected identity file

        Returns:
            Secret names mapped to plaintext values

        Raises:
            EnvelopeNotFoundError: If the file does not exist
            MalformedEnvelopeError: If the format cannot be determined
            MissingIdentityError: If an identity is needed but not given
            DecryptionFailedError: If the backend cannot decrypt
        """
        envelope = load_envelope(path)

        if names is None:
            return self._decrypt(envelope, identity, passphrase)

        if isinstance(names, str):
            names = [names]
        wanted = list(dict.fromkeys(names))

        secrets = self._decrypt(envelope, identity, passphrase, only=wanted)
        missing = [name for name in wanted if name not in secrets]
        if missing:
            warnings.warn(MissingSecretsWarning(missing), stacklevel=2)
        return {name: secrets[name] for name in wanted if name in secrets}

    def export(
        self,
        path: PathLike,
        identity: Optional[PathLike] = None,
        passphrase: Optional[str] = None,
        environ: Optional[MutableMapping[str, str]] = None,
    ) -> Set[str]:
        """Decrypt all secrets and set them as environment variables.

        Existing variables of the same name are overwritten.

        Returns:
            The names that were written
        """
        target = os.environ if environ is None else environ
        secrets = self.get(path, identity=identity, passphrase=passphrase)
        for name, value in secrets.items():
            target[name] = value
        return set(secrets)

    @contextmanager
    def exported(
        self,
        path: PathLike,
        identity: Optional[PathLike] = None,
        passphrase: Optional[str] = None,
        environ: Optional[MutableMapping[str, str]] = None,
    ) -> Iterator[Set[str]]:
        """Export secrets for the duration of a block, then restore the environment."""
        target = os.environ if environ is None else environ
        secrets = self.get(path, identity=identity, passphrase=passphrase)
        previous = {name: target.get(name) for name in secrets}
        try:
            for name, value in secrets.items():
                target[name] = value
            yield set(secrets)
        finally:
            for name, value in previous.items():
                if value is None:
                    target.pop(name, None)
                else:
                    target[name] = value

    def _decrypt(
        self,
        envelope: Envelope,
        identity: Optional[PathLike],
        passphrase: Optional[str],
        only: Optional[List[str]] = None,
    ) -> Dict[str, str]:
        if isinstance(envelope, CustomEnvelope):
            return self._decrypt_custom(envelope, identity, passphrase, only)
        return self._decrypt_sops(envelope, identity, passphrase)

    def _decrypt_custom(
        self,
        envelope: CustomEnvelope,
        identity: Optional[PathLike],
        passphrase: Optional[str],
        only: Optional[List[str]],
    ) -> Dict[str, str]:
        if identity is None:
            raise MissingIdentityError("An identity is required for lockbox envelopes", path=str(envelope.path))

        names = [name for name in envelope.entries if only is None or name in only]
        secrets = {}
        with resolve_identity(identity, self.age, passphrase) as key_path:
            for name in names:
                secrets[name] = self._decrypt_value(envelope, name, key_path)
        return secrets

    def _decrypt_value(self, envelope: CustomEnvelope, name: str, key_path: Path) -> str:
        try:
            ciphertext = base64.b64decode(envelope.entries[name], validate=True)
        except binascii.Error as e:
            raise DecryptionFailedError(
                "Encrypted value is not valid base64", path=str(envelope.path), secret_name=name, backend="age"
            ) from e

        try:
            plaintext = self.age.decrypt_with_identity(ciphertext, key_path)
        except DecryptionFailedError as e:
            e.path = str(envelope.path)
            e.secret_name = name
            raise

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionFailedError(
                "Decrypted value is not UTF-8 text", path=str(envelope.path), secret_name=name, backend="age"
            ) from e

    def _decrypt_sops(
        self,
        envelope: SopsEnvelope,
        identity: Optional[PathLike],
        passphrase: Optional[str],
    ) -> Dict[str, str]:
        if identity is None:
            if envelope.needs_identity:
                raise MissingIdentityError(
                    "An identity is required for age-encrypted sops envelopes", path=str(envelope.path)
                )
            plaintext = self.sops.decrypt_document(envelope.raw)
        else:
            with resolve_identity(identity, self.age, passphrase) as key_path:
                plaintext = self.sops.decrypt_document(envelope.raw, key_path)
        return _parse_plaintext_document(plaintext, envelope.path)

    def _encrypt(
        self,
        fmt: EnvelopeFormat,
        secrets: Dict[str, str],
        recipients: List[str],
        created: Optional[str],
    ) -> bytes:
        if fmt is EnvelopeFormat.SOPS:
            document = yaml.safe_dump(secrets, default_flow_style=False, sort_keys=False)
            return self.sops.encrypt_document(document.encode("utf-8"), recipients)

        entries = {}
        for name, value in secrets.items():
            ciphertext = self.age.encrypt_with_recipients(value.encode("utf-8"), recipients)
            entries[name] = base64.b64encode(ciphertext).decode("ascii")

        created = created or datetime.now(timezone.utc).isoformat()
        return render_custom(entries, recipients, created=created, version=__version__)


def encrypt_secrets(
    path: PathLike,
    secrets: Mapping[str, str],
    recipients: Optional[Union[str, Iterable[str]]] = None,
    identity: Optional[PathLike] = None,
    passphrase: Optional[str] = None,
    fmt: Union[EnvelopeFormat, str] = EnvelopeFormat.CUSTOM,
) -> None:
    """Create or update an envelope with the default tool configuration."""
    SecretStore().put(path, secrets, recipients=recipients, identity=identity, passphrase=passphrase, fmt=fmt)


def decrypt_secrets(
    path: PathLike,
    identity: Optional[PathLike] = None,
    names: Optional[Union[str, Iterable[str]]] = None,
    passphrase: Optional[str] = None,
) -> Dict[str, str]:
    """Decrypt an envelope with the default tool configuration."""
    return SecretStore().get(path, identity=identity, names=names, passphrase=passphrase)


def export_secrets(
    path: PathLike,
    identity: Optional[PathLike] = None,
    passphrase: Optional[str] = None,
) -> Set[str]:
    """Export an envelope's secrets into os.environ."""
    return SecretStore().export(path, identity=identity, passphrase=passphrase)
