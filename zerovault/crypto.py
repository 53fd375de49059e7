"""
ZeroVault Crypto Envelope — key generation, password derivation and framing.

Envelope layout (both directions):
    key mode:      [iv 12B][ciphertext + GCM tag 16B]
    password mode: [salt 16B][iv 12B][ciphertext + GCM tag 16B]

Keys travel inside the link fragment as lowercase hex. Password-mode links
carry the ``PASSWORD`` sentinel instead and the key is re-derived from the
salt stored at the head of the envelope.

Security Note:
    Never log plaintext, keys or passwords.
    A fresh random IV is drawn for every call to ``encrypt``; IV reuse under
    one key breaks GCM confidentiality.
"""
import os
import hashlib
import logging
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .exceptions import AuthenticationError, FormatError

logger = logging.getLogger("zerovault.crypto")

KEY_LENGTH = 32  # AES-256
IV_SIZE = 12  # 96-bit GCM nonce
SALT_SIZE = 16
TAG_SIZE = 16
MIN_KDF_ITERATIONS = 100_000


def _check_key(key: bytes) -> None:
    if len(key) != KEY_LENGTH:
        raise FormatError(f"Key must be {KEY_LENGTH} bytes, got {len(key)}")


class RandomSource(Protocol):
    """Provider of cryptographically secure random bytes."""

    def random_bytes(self, n: int) -> bytes:
        ...


class SystemRandomSource:
    """RandomSource backed by the operating system CSPRNG."""

    def random_bytes(self, n: int) -> bytes:
        return os.urandom(n)


class CryptoEnvelope:
    """AES-256-GCM envelope with an injectable random source.

    Args:
        random_source: Source for keys, salts and IVs. Defaults to
            ``SystemRandomSource``; tests may inject a recording source.
        iterations: PBKDF2 rounds used for password mode.
    """

    def __init__(
        self,
        random_source: RandomSource | None = None,
        iterations: int = MIN_KDF_ITERATIONS,
    ):
        if iterations < MIN_KDF_ITERATIONS:
            raise ValueError(
                f"PBKDF2 iterations must be at least {MIN_KDF_ITERATIONS}"
            )
        self._random = random_source or SystemRandomSource()
        self._iterations = iterations

    @property
    def random(self) -> RandomSource:
        return self._random

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def generate_key(self) -> bytes:
        """Return a fresh 256-bit AES-GCM key."""
        return self._random.random_bytes(KEY_LENGTH)

    def generate_salt(self) -> bytes:
        return self._random.random_bytes(SALT_SIZE)

    def derive_key_from_password(self, password: str, salt: bytes) -> bytes:
        """Derive a 32-byte key from a password using PBKDF2-HMAC-SHA256.

        Deterministic: identical (password, salt) always yields the same key.

        Args:
            password: User supplied password.
            salt: 16 random bytes stored at the head of the envelope.

        Returns:
            32-byte derived key.
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self._iterations,
        )
        return kdf.derive(password.encode("utf-8"))

    @staticmethod
    def export_key(key: bytes) -> str:
        """Serialize raw key bytes as lowercase hex for the link fragment."""
        return key.hex()

    @staticmethod
    def import_key(text: str) -> bytes:
        """Parse a hex-exported key.

        Raises:
            FormatError: If text is not hex or not a 256-bit key.
        """
        try:
            key = bytes.fromhex(text)
        except ValueError:
            raise FormatError("Key is not valid hex") from None
        _check_key(key)
        return key

    # ------------------------------------------------------------------
    # Framing
    # ------------------------------------------------------------------

    def encrypt(self, plaintext: bytes, key: bytes, salt: bytes | None = None) -> bytes:
        """Encrypt plaintext into an envelope.

        Args:
            plaintext: Data to encrypt.
            key: 32-byte AES key.
            salt: Password-mode salt to prefix, or None for key mode.

        Returns:
            Envelope bytes ``[salt?][iv][ciphertext+tag]``.

        Raises:
            FormatError: If the key is not 32 bytes or the salt not 16.
        """
        _check_key(key)
        if salt is not None and len(salt) != SALT_SIZE:
            raise FormatError(f"Salt must be {SALT_SIZE} bytes")
        iv = self._random.random_bytes(IV_SIZE)
        ct = AESGCM(key).encrypt(iv, plaintext, None)
        prefix = salt or b""
        return prefix + iv + ct

    def decrypt(self, envelope: bytes, key: bytes, password_mode: bool = False) -> bytes:
        """Decrypt an envelope.

        Args:
            envelope: Bytes produced by ``encrypt``.
            key: 32-byte AES key (derived key in password mode).
            password_mode: Whether the envelope starts with a salt.

        Returns:
            Decrypted plaintext bytes.

        Raises:
            FormatError: If the key is not 32 bytes, or the envelope is too
                short to hold header and tag.
            AuthenticationError: On tag mismatch or wrong key.
        """
        _check_key(key)
        offset = SALT_SIZE if password_mode else 0
        _min = offset + IV_SIZE + TAG_SIZE
        if len(envelope) < _min:
            raise FormatError(
                f"Envelope too short: {len(envelope)} bytes (minimum {_min})"
            )
        iv = envelope[offset:offset + IV_SIZE]
        ct = envelope[offset + IV_SIZE:]
        try:
            return AESGCM(key).decrypt(iv, ct, None)
        except (InvalidTag, ValueError):
            raise AuthenticationError() from None

    # ------------------------------------------------------------------
    # Password mode helpers
    # ------------------------------------------------------------------

    def encrypt_with_password(self, plaintext: bytes, password: str) -> bytes:
        """Generate a salt, derive the key and encrypt in one step."""
        salt = self.generate_salt()
        key = self.derive_key_from_password(password, salt)
        return self.encrypt(plaintext, key, salt)

    def decrypt_with_password(self, envelope: bytes, password: str) -> bytes:
        """Re-derive the key from the envelope's salt and decrypt."""
        if len(envelope) < SALT_SIZE:
            raise FormatError("Envelope too short to contain a salt")
        key = self.derive_key_from_password(password, envelope[:SALT_SIZE])
        return self.decrypt(envelope, key, password_mode=True)


def file_digest(data: bytes) -> str:
    """SHA-256 hex digest a client attaches as the integrity ``fileHash``."""
    return hashlib.sha256(data).hexdigest()
