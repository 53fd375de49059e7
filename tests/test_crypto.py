"""
Tests for the crypto envelope.

Tests cover:
- Round-trip in key mode and password mode
- Tamper detection on every byte of ciphertext and tag
- Deterministic password derivation
- Key export/import
- Fresh IV per call via an injected random source
"""
import pytest

from zerovault.crypto import (
    IV_SIZE,
    KEY_LENGTH,
    SALT_SIZE,
    TAG_SIZE,
    CryptoEnvelope,
    file_digest,
)
from zerovault.exceptions import AuthenticationError, FormatError

from .conftest import CountingRandom


@pytest.fixture(scope="module")
def envelope():
    return CryptoEnvelope()


class TestKeys:
    def test_generate_key_length(self, envelope):
        assert len(envelope.generate_key()) == KEY_LENGTH

    def test_generate_key_is_fresh(self, envelope):
        assert envelope.generate_key() != envelope.generate_key()

    def test_export_import_round_trip(self, envelope):
        key = envelope.generate_key()
        text = envelope.export_key(key)
        assert text == key.hex()
        assert ":" not in text
        assert envelope.import_key(text) == key

    def test_import_rejects_non_hex(self, envelope):
        with pytest.raises(FormatError):
            envelope.import_key("zz" * KEY_LENGTH)

    def test_import_rejects_short_key(self, envelope):
        with pytest.raises(FormatError):
            envelope.import_key("ab" * 16)

    def test_rejects_weak_iteration_count(self):
        with pytest.raises(ValueError):
            CryptoEnvelope(iterations=1000)


class TestPasswordDerivation:
    def test_same_inputs_same_key(self, envelope):
        salt = b"s" * SALT_SIZE
        assert (
            envelope.derive_key_from_password("hunter2", salt)
            == envelope.derive_key_from_password("hunter2", salt)
        )

    def test_different_password_differs(self, envelope):
        salt = b"s" * SALT_SIZE
        assert (
            envelope.derive_key_from_password("hunter2", salt)
            != envelope.derive_key_from_password("hunter3", salt)
        )

    def test_different_salt_differs(self, envelope):
        assert (
            envelope.derive_key_from_password("hunter2", b"a" * SALT_SIZE)
            != envelope.derive_key_from_password("hunter2", b"b" * SALT_SIZE)
        )

    def test_derived_key_length(self, envelope):
        assert len(envelope.derive_key_from_password("pw", b"x" * SALT_SIZE)) == KEY_LENGTH


class TestEnvelope:
    @pytest.mark.parametrize("message", [b"", b"x", b"hello world", bytes(range(256)) * 40])
    def test_round_trip_key_mode(self, envelope, message):
        key = envelope.generate_key()
        sealed = envelope.encrypt(message, key)
        assert len(sealed) == IV_SIZE + len(message) + TAG_SIZE
        assert envelope.decrypt(sealed, key) == message

    def test_round_trip_password_mode(self, envelope):
        sealed = envelope.encrypt_with_password(b"secret payload", "correct horse")
        assert len(sealed) == SALT_SIZE + IV_SIZE + len(b"secret payload") + TAG_SIZE
        assert envelope.decrypt_with_password(sealed, "correct horse") == b"secret payload"

    def test_password_mode_salt_prefix(self, envelope):
        salt = b"\x01" * SALT_SIZE
        key = envelope.derive_key_from_password("pw", salt)
        sealed = envelope.encrypt(b"data", key, salt)
        assert sealed[:SALT_SIZE] == salt
        assert envelope.decrypt(sealed, key, password_mode=True) == b"data"

    def test_wrong_key_fails(self, envelope):
        sealed = envelope.encrypt(b"data", envelope.generate_key())
        with pytest.raises(AuthenticationError):
            envelope.decrypt(sealed, envelope.generate_key())

    def test_wrong_password_fails(self, envelope):
        sealed = envelope.encrypt_with_password(b"data", "right")
        with pytest.raises(AuthenticationError):
            envelope.decrypt_with_password(sealed, "wrong")

    def test_every_single_byte_flip_fails(self, envelope):
        key = envelope.generate_key()
        sealed = envelope.encrypt(b"tamper me please", key)
        for i in range(IV_SIZE, len(sealed)):
            tampered = bytearray(sealed)
            tampered[i] ^= 0x01
            with pytest.raises(AuthenticationError):
                envelope.decrypt(bytes(tampered), key)

    def test_iv_flip_fails(self, envelope):
        key = envelope.generate_key()
        sealed = bytearray(envelope.encrypt(b"payload", key))
        sealed[0] ^= 0xFF
        with pytest.raises(AuthenticationError):
            envelope.decrypt(bytes(sealed), key)

    def test_truncated_envelope_is_format_error(self, envelope):
        with pytest.raises(FormatError):
            envelope.decrypt(b"\x00" * (IV_SIZE + TAG_SIZE - 1), envelope.generate_key())

    def test_bad_salt_length(self, envelope):
        with pytest.raises(FormatError):
            envelope.encrypt(b"x", envelope.generate_key(), b"short")

    @pytest.mark.parametrize("size", [0, 16, 24, 31, 33])
    def test_encrypt_rejects_wrong_key_length(self, envelope, size):
        with pytest.raises(FormatError):
            envelope.encrypt(b"x", b"k" * size)

    def test_decrypt_rejects_wrong_key_length(self, envelope):
        sealed = envelope.encrypt(b"x", envelope.generate_key())
        with pytest.raises(FormatError):
            envelope.decrypt(sealed, b"k" * 16)


class TestInjectedRandom:
    def test_fresh_iv_per_call(self):
        rng = CountingRandom()
        envelope = CryptoEnvelope(random_source=rng)
        key = b"k" * KEY_LENGTH
        first = envelope.encrypt(b"same", key)
        second = envelope.encrypt(b"same", key)
        assert first[:IV_SIZE] != second[:IV_SIZE]
        assert first != second
        assert [len(c) for c in rng.calls] == [IV_SIZE, IV_SIZE]

    def test_generate_key_uses_source(self):
        rng = CountingRandom()
        key = CryptoEnvelope(random_source=rng).generate_key()
        assert rng.calls == [key]


def test_file_digest():
    assert file_digest(b"abc") == (
        "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    )
