"""File id allocation."""
import secrets
import logging

from .storage import BaseStorage
from .store import VaultMetadataStore

logger = logging.getLogger("zerovault.ids")

FILE_ID_BYTES = 12
_MAX_ATTEMPTS = 8


def new_file_id() -> str:
    """Opaque, URL-safe, colon-free identifier."""
    return secrets.token_urlsafe(FILE_ID_BYTES)


async def allocate_file_id(store: VaultMetadataStore, storage: BaseStorage) -> str:
    """Reserve an id unused by any live record, pending upload or stored blob.

    The caller owns the reservation until it creates the record or calls
    ``store.release_reservation``.
    """
    for _ in range(_MAX_ATTEMPTS):
        candidate = new_file_id()
        if not await store.reserve_id(candidate):
            continue
        if await storage.exists(candidate):
            # bytes left behind by an unfinished deletion
            await store.release_reservation(candidate)
            continue
        return candidate
    raise RuntimeError("Could not allocate a unique file id")
