"""Tests for file encryption helpers and key helpers."""

import stat

import pytest

from lockbox.exceptions import AuthFailureError
from lockbox.files import decrypt_file, encrypt_file
from lockbox.keys import generate_key, key_private, key_public


@pytest.fixture()
def plain_file(tmp_path):
    path = tmp_path / "test.txt"
    path.write_text("Hello, World!\n")
    return path


class TestEncryptFile:
    def test_default_output_name(self, age, key1, plain_file):
        _, pair = key1
        output = encrypt_file(plain_file, recipients=pair.public, age=age)

        assert output == plain_file.with_name("test.txt.age")
        assert age.looks_encrypted(output)

    def test_round_trip_with_identity(self, age, key1, plain_file, tmp_path):
        key_file, pair = key1
        encrypted = encrypt_file(plain_file, tmp_path / "out.age", recipients=[pair.public], age=age)

        decrypted = decrypt_file(encrypted, tmp_path / "back.txt", identity=key_file, age=age)

        assert decrypted.read_text() == "Hello, World!\n"
        assert stat.S_IMODE(decrypted.stat().st_mode) == 0o600

    def test_multiple_recipients(self, age, key1, key2, plain_file, tmp_path):
        key_file1, pair1 = key1
        key_file2, pair2 = key2
        encrypted = encrypt_file(plain_file, recipients=[pair1.public, pair2.public], age=age)

        first = decrypt_file(encrypted, tmp_path / "one.txt", identity=key_file1, age=age)
        second = decrypt_file(encrypted, tmp_path / "two.txt", identity=key_file2, age=age)
        assert first.read_text() == second.read_text() == "Hello, World!\n"

    def test_passphrase_mode(self, age, plain_file, tmp_path):
        encrypted = encrypt_file(plain_file, passphrase="correct horse", age=age)

        decrypted = decrypt_file(encrypted, tmp_path / "back.txt", passphrase="correct horse", age=age)
        assert decrypted.read_text() == "Hello, World!\n"

        with pytest.raises(AuthFailureError):
            decrypt_file(encrypted, tmp_path / "bad.txt", passphrase="wrong", age=age)
        assert not (tmp_path / "bad.txt").exists()

    def test_refuses_to_overwrite(self, age, key1, plain_file):
        _, pair = key1
        encrypt_file(plain_file, recipients=pair.public, age=age)

        with pytest.raises(FileExistsError):
            encrypt_file(plain_file, recipients=pair.public, age=age)
        encrypt_file(plain_file, recipients=pair.public, overwrite=True, age=age)

    def test_missing_input(self, age, key1, tmp_path):
        _, pair = key1
        with pytest.raises(FileNotFoundError):
            encrypt_file(tmp_path / "nonexistent.txt", recipients=pair.public, age=age)

    def test_output_must_differ_from_input(self, age, key1, plain_file):
        _, pair = key1
        with pytest.raises(ValueError):
            encrypt_file(plain_file, plain_file, recipients=pair.public, overwrite=True, age=age)


class TestDecryptFile:
    def test_default_output_strips_suffix(self, age, key1, plain_file):
        key_file, pair = key1
        encrypted = encrypt_file(plain_file, recipients=pair.public, age=age)
        plain_file.unlink()

        assert decrypt_file(encrypted, identity=key_file, age=age) == plain_file
        assert plain_file.read_text() == "Hello, World!\n"

    def test_cannot_derive_output_without_age_suffix(self, age, key1, plain_file):
        key_file, _ = key1
        with pytest.raises(ValueError):
            decrypt_file(plain_file, identity=key_file, age=age)

    def test_passphrase_protected_identity(self, age, key1, plain_file, tmp_path):
        key_file, pair = key1
        protected = tmp_path / "protected.key"
        protected.write_bytes(age.encrypt_with_passphrase(key_file.read_bytes(), "unlock"))
        encrypted = encrypt_file(plain_file, recipients=pair.public, age=age)

        decrypted = decrypt_file(encrypted, tmp_path / "back.txt", identity=protected, passphrase="unlock", age=age)

        assert decrypted.read_text() == "Hello, World!\n"


class TestKeys:
    def test_generate_key_to_file(self, age, tmp_path):
        keyfile = tmp_path / "test.key"
        pair = generate_key(keyfile, age=age)

        content = keyfile.read_text()
        assert "# created:" in content
        assert "# public key:" in content
        assert pair.private in content
        assert key_public(keyfile, age=age) == pair.public
        assert key_private(keyfile) == pair.private

    def test_generate_key_in_memory(self, age):
        pair = generate_key(age=age)
        assert pair.public.startswith("age1")
        assert pair.private.startswith("AGE-SECRET-KEY-1")

    def test_generate_key_refuses_existing_file(self, age, key1):
        key_file, _ = key1
        with pytest.raises(FileExistsError):
            generate_key(key_file, age=age)

    def test_key_private_missing(self, tmp_path):
        keyfile = tmp_path / "empty.key"
        keyfile.write_text("# nothing here\n")
        with pytest.raises(ValueError):
            key_private(keyfile)

    def test_key_private_warns_on_multiple(self, tmp_path):
        keyfile = tmp_path / "multi.key"
        keyfile.write_text("AGE-SECRET-KEY-1FIRST\nAGE-SECRET-KEY-1SECOND\n")
        with pytest.warns(UserWarning, match="Multiple private keys"):
            assert key_private(keyfile) == "AGE-SECRET-KEY-1FIRST"
