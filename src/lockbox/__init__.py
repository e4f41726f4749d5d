"""lockbox - age and sops backed file encryption and secret stores."""

__version__ = "0.1.0"

from lockbox.envelope import EnvelopeFormat, detect_format, is_sops
from lockbox.files import decrypt_file, encrypt_file
from lockbox.keys import KeyPair, generate_key, key_private, key_public
from lockbox.store import (
    MissingSecretsWarning,
    SecretStore,
    decrypt_secrets,
    encrypt_secrets,
    export_secrets,
)

__all__ = [
    "__version__",
    "EnvelopeFormat",
    "KeyPair",
    "MissingSecretsWarning",
    "SecretStore",
    "decrypt_file",
    "decrypt_secrets",
    "detect_format",
    "encrypt_file",
    "encrypt_secrets",
    "export_secrets",
    "generate_key",
    "is_sops",
    "key_private",
    "key_public",
]
