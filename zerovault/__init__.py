"""ZeroVault — zero-knowledge file drop with self-contained capability links.

Security Note (Threat Model):
    The server stores only AES-GCM envelopes and opaque ids. Keys, passwords
    and filenames stay in the link fragment, which browsers never send.
    Master and disposable tokens are bearer capabilities: anyone holding one
    can use it. Transport security is provided outside this package.
"""
from .version import __version__
from .exceptions import (
    VaultError,
    FormatError,
    NotFound,
    Forbidden,
    Gone,
    TooLarge,
    AuthenticationError,
)
from .config import VaultConfig
from .crypto import CryptoEnvelope, RandomSource, SystemRandomSource, file_digest
from .link import Capability, PASSWORD_SENTINEL
from .models import DisposableToken, ExpiryOption, FileRecord
from .store import VaultMetadataStore
from .tokens import TokenAuthority
from .deniability import DeniabilityLayer
from .sweeper import RetentionSweeper
from .vault import ZeroVault

__all__ = [
    "__version__",
    "VaultError",
    "FormatError",
    "NotFound",
    "Forbidden",
    "Gone",
    "TooLarge",
    "AuthenticationError",
    "VaultConfig",
    "CryptoEnvelope",
    "RandomSource",
    "SystemRandomSource",
    "file_digest",
    "Capability",
    "PASSWORD_SENTINEL",
    "DisposableToken",
    "ExpiryOption",
    "FileRecord",
    "VaultMetadataStore",
    "TokenAuthority",
    "DeniabilityLayer",
    "RetentionSweeper",
    "ZeroVault",
]
