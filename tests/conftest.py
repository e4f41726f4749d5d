"""Shared fixtures: in-memory stand-ins for the age and sops backends.

The fakes keep the real backends' interfaces and error types but do no
cryptography. Ciphertext is a JSON payload behind the real age header, so the
header sniffing in ``looks_encrypted`` behaves as it would on real files.
"""

import base64
import itertools
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest
import yaml

from lockbox.backends.age import AGE_HEADER, SECRET_KEY_PREFIX, KeyPair, looks_encrypted
from lockbox.backends.sops import SOPS_METADATA_KEY, key_type, recipients
from lockbox.config import ToolConfig
from lockbox.exceptions import AuthFailureError, BackendError, DecryptionFailedError
from lockbox.store import SecretStore

FAKE_PRIVATE_PREFIX = SECRET_KEY_PREFIX + "1FAKE"
FAKE_PUBLIC_PREFIX = "age1fake"


def public_for(private: str) -> str:
    return FAKE_PUBLIC_PREFIX + private[len(FAKE_PRIVATE_PREFIX):].lower()


def read_private_keys(identity_path) -> list:
    lines = Path(identity_path).read_text().splitlines()
    return [line.strip() for line in lines if line.strip().startswith(SECRET_KEY_PREFIX)]


class FakeAgeBackend:
    name = "age"

    def __init__(self):
        self.config = ToolConfig()
        self.calls = []
        self.fail_encrypt = False
        self._counter = itertools.count(1)

    def version(self):
        return "v1.3.0-fake"

    def encrypt_with_recipients(self, plaintext, recipients, armor=False):
        self.calls.append(("encrypt_with_recipients", list(recipients)))
        if self.fail_encrypt:
            raise BackendError("age encryption failed", backend=self.name, returncode=1)
        for recipient in recipients:
            if not recipient.startswith("age1"):
                raise BackendError(f"malformed recipient {recipient}", backend=self.name, returncode=1)
        return self._seal({"r": list(recipients), "d": base64.b64encode(plaintext).decode()})

    def encrypt_with_passphrase(self, plaintext, passphrase=None, armor=False):
        self.calls.append(("encrypt_with_passphrase",))
        if passphrase == "":
            raise ValueError("passphrase must not be empty")
        return self._seal({"p": passphrase, "d": base64.b64encode(plaintext).decode()})

    def decrypt_with_identity(self, ciphertext, identity_path):
        self.calls.append(("decrypt_with_identity", str(identity_path)))
        payload = self._open(ciphertext)
        publics = {public_for(key) for key in read_private_keys(identity_path)}
        if "r" not in payload or not publics & set(payload["r"]):
            raise AuthFailureError("no identity matched any of the recipients", backend=self.name, returncode=1)
        return base64.b64decode(payload["d"])

    def decrypt_with_passphrase(self, ciphertext, passphrase=None):
        self.calls.append(("decrypt_with_passphrase",))
        payload = self._open(ciphertext)
        if payload.get("p") is None or payload.get("p") != passphrase:
            raise AuthFailureError("incorrect passphrase", backend=self.name, returncode=1)
        return base64.b64decode(payload["d"])

    def generate_identity(self, output_path=None):
        token = f"key{next(self._counter)}"
        private = FAKE_PRIVATE_PREFIX + token.upper()
        pair = KeyPair(public=public_for(private), private=private, created=datetime.now(timezone.utc))
        if output_path is not None:
            output_path = Path(output_path)
            if output_path.exists():
                raise FileExistsError(f"Identity file already exists: {output_path}")
            output_path.write_text(
                f"# created: {pair.created.isoformat()}\n# public key: {pair.public}\n{pair.private}\n"
            )
        return pair

    def public_key(self, identity_path):
        return public_for(read_private_keys(identity_path)[0])

    def looks_encrypted(self, path):
        return looks_encrypted(path)

    def _seal(self, payload):
        return AGE_HEADER + b"\n-> fake\n" + json.dumps(payload).encode()

    def _open(self, ciphertext):
        if not ciphertext.startswith(AGE_HEADER + b"\n-> fake\n"):
            raise DecryptionFailedError("failed to read header", backend=self.name, returncode=1)
        return json.loads(ciphertext.split(b"\n", 2)[2])


class FakeSopsBackend:
    name = "sops"

    def __init__(self, age):
        self.age = age
        self.calls = []
        self.fail_encrypt = False

    def version(self):
        return "sops 3.9.0 (fake)"

    def encrypt_document(self, plaintext_yaml, recipients):
        self.calls.append(("encrypt_document", list(recipients)))
        if self.fail_encrypt:
            raise BackendError("sops encryption failed", backend=self.name, returncode=1)
        data = yaml.safe_load(plaintext_yaml) or {}
        document = {
            name: "ENC[AES256_GCM,data:" + base64.b64encode(str(value).encode()).decode() + ",type:str]"
            for name, value in data.items()
        }
        if any(r.startswith("age1") for r in recipients):
            metadata = {"age": [{"recipient": r, "enc": "-----BEGIN AGE ENCRYPTED FILE-----"} for r in recipients]}
        else:
            metadata = {"pgp": [{"fp": r, "enc": "-----BEGIN PGP MESSAGE-----"} for r in recipients]}
        metadata.update({"lastmodified": "2026-10-19T00:00:00Z", "mac": "ENC[fake]", "version": "3.9.0"})
        document[SOPS_METADATA_KEY] = metadata
        return yaml.safe_dump(document, default_flow_style=False, sort_keys=False).encode()

    def decrypt_document(self, envelope_bytes, identity_path=None):
        self.calls.append(("decrypt_document", identity_path))
        document = yaml.safe_load(envelope_bytes)
        if key_type(document) == "age":
            if identity_path is None:
                raise AuthFailureError("sops could not retrieve the data key", backend=self.name, returncode=128)
            publics = {public_for(key) for key in read_private_keys(identity_path)}
            if not publics & set(recipients(document)):
                raise AuthFailureError("sops could not retrieve the data key", backend=self.name, returncode=128)

        plaintext = {}
        for name, value in document.items():
            if name == SOPS_METADATA_KEY:
                continue
            encoded = value[len("ENC[AES256_GCM,data:"):].split(",", 1)[0]
            plaintext[name] = base64.b64decode(encoded).decode()
        return yaml.safe_dump(plaintext, default_flow_style=False, sort_keys=False).encode()


@pytest.fixture()
def age():
    return FakeAgeBackend()


@pytest.fixture()
def sops(age):
    return FakeSopsBackend(age)


@pytest.fixture()
def store(age, sops):
    return SecretStore(age=age, sops=sops, config=ToolConfig())


@pytest.fixture()
def key1(age, tmp_path):
    """(identity file, KeyPair) for a first recipient."""
    path = tmp_path / "key1.key"
    return path, age.generate_identity(path)


@pytest.fixture()
def key2(age, tmp_path):
    path = tmp_path / "key2.key"
    return path, age.generate_identity(path)


@pytest.fixture()
def lockbox_path(tmp_path):
    return tmp_path / "lockbox.yaml"
