"""External tool backends: age for encryption, sops for document envelopes."""

from lockbox.backends.age import AgeBackend, KeyPair, looks_encrypted
from lockbox.backends.sops import SopsBackend

__all__ = ["AgeBackend", "KeyPair", "SopsBackend", "looks_encrypted"]
