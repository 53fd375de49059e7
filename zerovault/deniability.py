"""
Deniability Layer — decoy filler records and dual-payload uploads.

A decoy is a sibling record whose blob is pure random filler. Random bytes
and AES-GCM output are indistinguishable, so an observer holding only the
stored blobs cannot tell filler from a real envelope.

A dual upload stores two independently encrypted envelopes as a linked
pair, so two passwords open two different payloads. Which blob becomes the
parent record is chosen at random.

Linked records share one lifetime: burning or expiring either side of a
pair removes both.
"""
import secrets
import logging
from typing import Callable, NamedTuple, Optional

from .crypto import RandomSource, SystemRandomSource
from .exceptions import NotFound
from .ids import allocate_file_id
from .models import FileRecord, now_ms
from .storage import BaseStorage
from .store import VaultMetadataStore
from .tokens import TokenAuthority

logger = logging.getLogger("zerovault.deniability")

MIN_DECOY_SIZE = 1024


class DualPart(NamedTuple):
    file_id: str
    master_token: str


class DestroyResult(NamedTuple):
    removed: list[str]
    failed: list[str]


class DualUploadResult(NamedTuple):
    first: DualPart
    second: DualPart
    expires_at: int

    def to_dict(self) -> dict:
        return {
            "files": [
                {"filename": p.file_id, "masterToken": p.master_token}
                for p in (self.first, self.second)
            ],
            "expiresAt": self.expires_at,
        }


def plausible_size(size: int) -> int:
    """Pick a filler size between 50% and 150% of ``size``."""
    base = max(size, MIN_DECOY_SIZE)
    low = base // 2
    return max(MIN_DECOY_SIZE, low + secrets.randbelow(base + 1))


class DeniabilityLayer:
    def __init__(
        self,
        store: VaultMetadataStore,
        storage: BaseStorage,
        random_source: Optional[RandomSource] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self._store = store
        self._storage = storage
        self._random = random_source or SystemRandomSource()
        self._clock = clock

    async def attach_decoy(self, file_id: str) -> FileRecord:
        """Create a filler record that lives and dies with ``file_id``.

        Returns:
            The decoy record.

        Raises:
            NotFound: Unknown parent id.
        """
        parent = await self._store.get(file_id)
        size = plausible_size(parent.size)
        decoy_id = await allocate_file_id(self._store, self._storage)
        try:
            await self._storage.write(decoy_id, self._random.random_bytes(size))
            decoy = parent.model_copy(update={
                "file_id": decoy_id,
                "size": size,
                "downloads": 0,
                "master_token": None,
                "file_hash": None,
                "has_decoy": False,
                "decoy_id": None,
                "link_version": 1,
                "is_decoy_part": True,
                "parent_id": file_id,
            })
            await self._store.attach_decoy(file_id, decoy)
        except Exception:
            await self._storage.delete(decoy_id)
            await self._store.release_reservation(decoy_id)
            raise
        logger.info("Decoy attached: file=%s decoy=%s size=%d", file_id, decoy_id, size)
        return decoy

    async def upload_dual(
        self,
        first: bytes,
        second: bytes,
        burn: bool = False,
        expiry: str = "24h",
    ) -> DualUploadResult:
        """Store two envelopes as one linked pair.

        Returns ids and master tokens in submission order.
        """
        ids = []
        try:
            for blob in (first, second):
                file_id = await allocate_file_id(self._store, self._storage)
                ids.append(file_id)
                await self._storage.write(file_id, blob)
        except Exception:
            await self._discard(ids)
            raise

        now = self._clock()
        tokens = [TokenAuthority.issue_master_token() for _ in ids]
        parts = list(zip(ids, (first, second), tokens))
        parent_idx = secrets.randbelow(2)
        parent_id, parent_blob, parent_token = parts[parent_idx]
        partner_id, partner_blob, partner_token = parts[1 - parent_idx]

        parent = FileRecord.new(
            parent_id, len(parent_blob), now, burn=burn, expiry=expiry,
            master_token=parent_token, has_decoy=True, decoy_id=partner_id,
            is_dual_mode=True,
        )
        partner = FileRecord.new(
            partner_id, len(partner_blob), now, burn=burn, expiry=expiry,
            master_token=partner_token, is_dual_mode=True,
            is_decoy_part=True, parent_id=parent_id,
        )
        try:
            await self._store.create_pair(parent, partner)
        except Exception:
            await self._discard(ids)
            raise
        logger.info("Dual upload stored: files=%s,%s", ids[0], ids[1])
        return DualUploadResult(
            DualPart(ids[0], tokens[0]),
            DualPart(ids[1], tokens[1]),
            parent.expires_at,
        )

    async def _discard(self, ids: list[str]) -> None:
        for file_id in ids:
            await self._storage.delete(file_id)
            await self._store.release_reservation(file_id)

    async def destroy(self, file_id: str) -> DestroyResult:
        """Delete a record and its linked siblings: bytes first, then metadata.

        Best effort: a failure on one id is logged and the rest still go.

        Returns:
            Ids whose metadata was removed, and ids whose deletion failed.
        """
        record = await self._store.find(file_id)
        if record is None:
            raise NotFound()
        removed, failed = [], []
        for target in [file_id, *record.linked_ids()]:
            try:
                await self._storage.delete(target)
                if await self._store.delete(target) is not None:
                    removed.append(target)
            except OSError as err:
                failed.append(target)
                logger.error("Failed to delete file=%s: %s", target, err)
        logger.info("Destroyed file=%s (%d record(s))", file_id, len(removed))
        return DestroyResult(removed, failed)
