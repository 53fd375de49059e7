"""
ZeroVault Link Codec — the capability fragment ``id:key:filename``.

The fragment lives after ``#`` in the share URL, so browsers never send it to
the server. Only the file id is ever used in a server-directed address.

Escaping contract:
    The filename is always carried as standard base64 of its UTF-8 bytes.
    The base64 alphabet has no ``:``, so names containing colons, spaces or
    non-ASCII characters round-trip exactly. The id and key segments must not
    contain ``:`` themselves.
"""
import base64
import binascii
import logging
from typing import Callable, NamedTuple
from urllib.parse import unquote

from .exceptions import FormatError

logger = logging.getLogger("zerovault.link")

PASSWORD_SENTINEL = "PASSWORD"
DEFAULT_FILENAME = "downloaded_file"
_SEPARATOR = ":"


class Capability(NamedTuple):
    """Decoded capability link. Never persisted server-side."""

    file_id: str
    key: str
    filename: str

    @property
    def password_mode(self) -> bool:
        return self.key == PASSWORD_SENTINEL


class DecodedName(NamedTuple):
    name: str
    strategy: str


# ---------------------------------------------------------------------------
# Filename decode strategies
# ---------------------------------------------------------------------------

def _b64decode(segment: str) -> bytes | None:
    try:
        return base64.b64decode(segment, validate=True)
    except (binascii.Error, ValueError):
        return None


def _utf8(raw: bytes) -> str | None:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return None


def _from_percent_base64(segment: str) -> str | None:
    """Percent-unquote, base64-decode, then strict UTF-8."""
    raw = _b64decode(unquote(segment))
    return _utf8(raw) if raw is not None else None


def _from_raw_base64(segment: str) -> str | None:
    """Plain base64 whose bytes are taken one-to-one as Latin-1 characters."""
    raw = _b64decode(segment)
    return raw.decode("latin-1") if raw is not None else None


def _from_percent(segment: str) -> str | None:
    try:
        return unquote(segment, errors="strict")
    except UnicodeDecodeError:
        return None


_FILENAME_STRATEGIES: tuple[tuple[str, Callable[[str], str | None]], ...] = (
    ("base64-utf8", _from_percent_base64),
    ("base64-latin1", _from_raw_base64),
    ("percent", _from_percent),
)


def decode_filename(segment: str) -> DecodedName:
    """Decode the filename segment, falling through strategies in order.

    Never raises; the last resort is ``DEFAULT_FILENAME``.
    """
    for name, strategy in _FILENAME_STRATEGIES:
        decoded = strategy(segment)
        if decoded:
            return DecodedName(decoded, name)
    return DecodedName(DEFAULT_FILENAME, "default")


def encode_filename(filename: str) -> str:
    return base64.b64encode(filename.encode("utf-8")).decode("ascii")


# ---------------------------------------------------------------------------
# Fragment
# ---------------------------------------------------------------------------

def encode(file_id: str, key: str, filename: str) -> str:
    """Pack a capability fragment.

    Args:
        file_id: Server-issued opaque id.
        key: Hex-exported key or ``PASSWORD_SENTINEL``.
        filename: Original filename; stays client-side.

    Raises:
        FormatError: If id or key is empty or contains ``:``.
    """
    for label, value in (("file id", file_id), ("key", key)):
        if not value or _SEPARATOR in value:
            raise FormatError(f"Link {label} must be non-empty and colon-free")
    return _SEPARATOR.join((file_id, key, encode_filename(filename)))


def decode(fragment: str) -> Capability:
    """Unpack a capability fragment.

    A leading ``#`` is ignored. Extra ``:`` separators are folded back into
    the filename segment so legacy percent-encoded names survive.

    Raises:
        FormatError: If fewer than three segments are present.
    """
    if fragment.startswith("#"):
        fragment = fragment[1:]
    parts = fragment.split(_SEPARATOR)
    if len(parts) < 3:
        raise FormatError("Invalid link format")
    file_id, key = parts[0], parts[1]
    if not file_id or not key:
        raise FormatError("Invalid link format")
    decoded = decode_filename(_SEPARATOR.join(parts[2:]))
    logger.debug("Decoded link for file=%s via %s", file_id, decoded.strategy)
    return Capability(file_id, key, decoded.name)


def build_share_url(origin: str, capability: Capability) -> str:
    """Return ``origin/#fragment`` for a capability."""
    fragment = encode(*capability)
    return f"{origin.rstrip('/')}/#{fragment}"
