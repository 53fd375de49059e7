"""
ZeroVault errors.

Every failure that can reach a caller is a ``VaultError`` subclass carrying a
stable machine-readable ``code`` and an HTTP-style ``status``. Messages are
safe to show to end users; they never include key material, tokens or
internal paths.
"""


class VaultError(Exception):
    """Base class for all ZeroVault failures."""

    code: str = "vault_error"
    status: int = 500
    default_message: str = "Vault operation failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class FormatError(VaultError):
    """Malformed fragment, envelope or request input."""

    code = "invalid_format"
    status = 400
    default_message = "Invalid format"


class NotFound(VaultError):
    code = "not_found"
    status = 404
    default_message = "File not found (may have been deleted or burned)"


class Forbidden(VaultError):
    code = "forbidden"
    status = 403
    default_message = "Invalid master token"


class Gone(VaultError):
    """Resource existed but is expired, used or burned."""

    code = "gone"
    status = 410
    default_message = "Resource is no longer available"


class TooLarge(VaultError):
    code = "too_large"
    status = 413
    default_message = "Upload exceeds the size limit"


class AuthenticationError(VaultError):
    """Decryption failed.

    Raised for a wrong key and for tampered ciphertext alike, the two cases
    are deliberately indistinguishable.
    """

    code = "authentication_failed"
    status = 400
    default_message = "Decryption failed"
