"""Exception hierarchy for lockbox.

    LockboxError
    ├── EnvelopeNotFoundError
    ├── MalformedEnvelopeError
    ├── MissingRecipientsError
    ├── MissingIdentityError
    ├── RecipientMismatchError
    ├── InvalidSecretValueError
    ├── BackendUnavailableError
    └── BackendError
        └── DecryptionFailedError
            └── AuthFailureError

Messages carry the envelope path, secret name and backend tool for context.
They never carry secret values or key material.
"""

from typing import Optional


class LockboxError(Exception):
    """Base exception for all lockbox errors.

    Attributes:
        path: Envelope or file path involved, if any
        secret_name: Name of the secret involved, if any
        backend: External tool involved ("age", "sops"), if any
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        secret_name: Optional[str] = None,
        backend: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.path = str(path) if path is not None else None
        self.secret_name = secret_name
        self.backend = backend

    def __str__(self) -> str:
        context = []
        if self.path:
            context.append(f"path: {self.path}")
        if self.secret_name:
            context.append(f"secret: {self.secret_name}")
        if self.backend:
            context.append(f"backend: {self.backend}")
        if context:
            return f"{self.message} ({', '.join(context)})"
        return self.message


class EnvelopeNotFoundError(LockboxError):
    """The envelope file does not exist."""


class MalformedEnvelopeError(LockboxError):
    """The file is not a recognizable lockbox or sops envelope."""


class MissingRecipientsError(LockboxError):
    """Recipients are required to create a new envelope."""


class MissingIdentityError(LockboxError):
    """An identity is required to read or update an envelope."""


class RecipientMismatchError(LockboxError):
    """Supplied recipients disagree with the envelope's recipients."""


class InvalidSecretValueError(LockboxError):
    """A secret name or value is empty, multi-line or not a string."""


class BackendUnavailableError(LockboxError):
    """The external tool is not installed or not on PATH."""


class BackendError(LockboxError):
    """The external tool exited non-zero or produced unexpected output.

    Attributes:
        returncode: Exit status of the tool, if it ran
        stderr: Diagnostic output of the tool, if any
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        secret_name: Optional[str] = None,
        backend: Optional[str] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message, path=path, secret_name=secret_name, backend=backend)
        self.returncode = returncode
        self.stderr = stderr


class DecryptionFailedError(BackendError):
    """Decryption failed: corrupt ciphertext, empty output or unknown cause."""


class AuthFailureError(DecryptionFailedError):
    """The identity or passphrase does not match the ciphertext."""
