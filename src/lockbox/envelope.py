"""Envelope formats and format detection.

Two envelope formats exist on disk:

* ``custom``: a YAML mapping of secret name to an individually age-encrypted,
  base64 encoded value, plus ``lockbox_version``, ``lockbox_created`` and
  ``lockbox_recipients`` metadata keys.
* ``sops``: a YAML document encrypted as a whole by sops, recognizable by its
  top-level ``sops`` metadata block.

The format is always derived from file content. ``load_envelope`` resolves it
once and returns a variant object that the store dispatches on.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

import yaml

from lockbox.backends.sops import SOPS_METADATA_KEY, key_type, recipients as sops_recipients
from lockbox.exceptions import EnvelopeNotFoundError, MalformedEnvelopeError

VERSION_KEY = "lockbox_version"
CREATED_KEY = "lockbox_created"
RECIPIENTS_KEY = "lockbox_recipients"
RESERVED_KEYS = (VERSION_KEY, CREATED_KEY, RECIPIENTS_KEY)

PathLike = Union[str, Path]


class EnvelopeFormat(Enum):
    CUSTOM = "custom"
    SOPS = "sops"
    NEW_FILE = "new"


@dataclass
class CustomEnvelope:
    """A lockbox-format envelope as read from disk (values still encrypted)."""

    format: ClassVar[EnvelopeFormat] = EnvelopeFormat.CUSTOM

    path: Path
    recipients: List[str]
    entries: Dict[str, str] = field(default_factory=dict)
    created: Optional[str] = None
    version: Optional[str] = None


@dataclass
class SopsEnvelope:
    """A sops-format envelope as read from disk."""

    format: ClassVar[EnvelopeFormat] = EnvelopeFormat.SOPS

    path: Path
    raw: bytes
    recipients: List[str]
    key_type: str

    @property
    def needs_identity(self) -> bool:
        # PGP and cloud KMS keys are resolved by sops itself.
        return self.key_type == "age"


Envelope = Union[CustomEnvelope, SopsEnvelope]


def _read_document(path: Path) -> Tuple[bytes, Dict[str, Any]]:
    if not path.is_file():
        raise MalformedEnvelopeError("Envelope path is not a regular file", path=str(path))
    raw = path.read_bytes()
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise MalformedEnvelopeError(f"Envelope is not valid YAML: {e}", path=str(path)) from e

    if not isinstance(data, dict):
        raise MalformedEnvelopeError("Envelope is empty or not a YAML mapping", path=str(path))
    return raw, data


def _classify(data: Dict[str, Any], path: Path) -> EnvelopeFormat:
    if isinstance(data.get(SOPS_METADATA_KEY), dict):
        return EnvelopeFormat.SOPS
    if VERSION_KEY in data:
        return EnvelopeFormat.CUSTOM
    raise MalformedEnvelopeError(
        "Cannot determine envelope format: neither sops metadata nor lockbox_version found",
        path=str(path),
    )


def detect_format(path: PathLike) -> EnvelopeFormat:
    """Classify a path as a custom envelope, a sops envelope or a new file.

    Raises:
        MalformedEnvelopeError: If the file exists but matches neither format
    """
    path = Path(path)
    if not path.exists():
        return EnvelopeFormat.NEW_FILE
    _, data = _read_document(path)
    return _classify(data, path)


def is_sops(path: PathLike) -> bool:
    return detect_format(path) is EnvelopeFormat.SOPS


def load_envelope(path: PathLike) -> Envelope:
    """Read and classify an existing envelope.

    Raises:
        EnvelopeNotFoundError: If the file does not exist
        MalformedEnvelopeError: If the content is not a valid envelope
    """
    path = Path(path)
    if not path.exists():
        raise EnvelopeNotFoundError("Envelope file not found", path=str(path))

    raw, data = _read_document(path)
    if _classify(data, path) is EnvelopeFormat.SOPS:
        return SopsEnvelope(
            path=path,
            raw=raw,
            recipients=sops_recipients(data),
            key_type=key_type(data),
        )
    return _parse_custom(data, path)


def _parse_custom(data: Dict[str, Any], path: Path) -> CustomEnvelope:
    recipients = data.get(RECIPIENTS_KEY)
    if isinstance(recipients, str):
        recipients = [recipients]
    if not isinstance(recipients, list) or not recipients or not all(isinstance(r, str) for r in recipients):
        raise MalformedEnvelopeError("lockbox_recipients must be a non-empty list of strings", path=str(path))

    entries = {}
    for name, value in data.items():
        if name in RESERVED_KEYS:
            continue
        if not isinstance(value, str):
            raise MalformedEnvelopeError("Encrypted value is not a string", path=str(path), secret_name=str(name))
        entries[str(name)] = value

    created = data.get(CREATED_KEY)
    if isinstance(created, datetime):
        created = created.isoformat()

    version = data.get(VERSION_KEY)
    return CustomEnvelope(
        path=path,
        recipients=list(recipients),
        entries=entries,
        created=str(created) if created is not None else None,
        version=str(version) if version is not None else None,
    )


def render_custom(entries: Dict[str, str], recipients: List[str], created: str, version: str) -> bytes:
    """Serialize encrypted entries and metadata as a custom envelope."""
    document: Dict[str, Any] = dict(entries)
    document[CREATED_KEY] = created
    document[VERSION_KEY] = version
    document[RECIPIENTS_KEY] = list(recipients)
    return yaml.safe_dump(document, default_flow_style=False, sort_keys=False).encode("utf-8")
