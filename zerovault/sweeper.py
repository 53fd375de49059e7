"""
Retention Sweeper — periodic reclamation of expired, orphaned and used-up data.

Each sweep makes three passes:

1. records whose ``expiresAt`` has elapsed: bytes, then metadata, then any
   linked decoy or dual partner;
2. stored blobs with no record and no pending upload, and temp files left
   by interrupted writes, older than the orphan threshold;
3. disposable tokens past their own expiry.

No lock is held across a pass. Every deletion takes the store lock for that
one record only, so request traffic interleaves freely with a sweep.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .deniability import DeniabilityLayer
from .exceptions import NotFound
from .models import now_ms
from .storage import BaseStorage
from .store import VaultMetadataStore

logger = logging.getLogger("zerovault.sweeper")

DEFAULT_INTERVAL = 60.0  # seconds
DEFAULT_ORPHAN_THRESHOLD = 24 * 60 * 60  # seconds


@dataclass
class SweepStats:
    expired: int = 0
    orphans: int = 0
    tokens: int = 0
    errors: int = 0


class RetentionSweeper:
    def __init__(
        self,
        store: VaultMetadataStore,
        storage: BaseStorage,
        deniability: DeniabilityLayer,
        interval: float = DEFAULT_INTERVAL,
        orphan_threshold: int = DEFAULT_ORPHAN_THRESHOLD,
        clock: Callable[[], int] = now_ms,
    ):
        self._store = store
        self._storage = storage
        self._deniability = deniability
        self._interval = interval
        self._orphan_threshold_ms = orphan_threshold * 1000
        self._clock = clock
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the sweep loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="zerovault-sweeper")
        logger.info("Retention sweeper started (interval=%ss)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Retention sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Retention sweep failed")

    async def sweep(self) -> SweepStats:
        """Run all three passes once."""
        stats = SweepStats()
        now = self._clock()
        await self._sweep_expired(now, stats)
        await self._sweep_orphans(now, stats)
        await self._sweep_tokens(now, stats)
        if self._store.dirty:
            await self._store.flush()
        if stats.expired or stats.orphans or stats.tokens or stats.errors:
            logger.info(
                "Sweep complete: expired=%d orphans=%d tokens=%d errors=%d",
                stats.expired, stats.orphans, stats.tokens, stats.errors,
            )
        return stats

    async def _sweep_expired(self, now: int, stats: SweepStats) -> None:
        for file_id in self._store.expired_ids(now):
            try:
                result = await self._deniability.destroy(file_id)
            except NotFound:
                # already taken down with its linked sibling
                continue
            except Exception as err:
                stats.errors += 1
                logger.error("Failed to expire file=%s: %s", file_id, err)
                continue
            stats.expired += len(result.removed)
            stats.errors += len(result.failed)
            logger.debug("Expired file=%s", file_id)

    async def _sweep_orphans(self, now: int, stats: SweepStats) -> None:
        try:
            blobs = await self._storage.list_blobs()
        except OSError as err:
            stats.errors += 1
            logger.error("Failed to list stored files: %s", err)
            return
        for blob in blobs:
            if blob.file_id in self._store or self._store.is_reserved(blob.file_id):
                continue
            if now - blob.modified_at < self._orphan_threshold_ms:
                continue
            try:
                if await self._storage.delete(blob.file_id):
                    stats.orphans += 1
                    logger.debug("Removed orphan file=%s", blob.file_id)
            except OSError as err:
                stats.errors += 1
                logger.error("Failed to remove orphan file=%s: %s", blob.file_id, err)
        await self._sweep_partials(now, stats)

    async def _sweep_partials(self, now: int, stats: SweepStats) -> None:
        # temp files left by writes interrupted before the final rename
        try:
            partials = await self._storage.list_partials()
        except OSError as err:
            stats.errors += 1
            logger.error("Failed to list partial writes: %s", err)
            return
        for blob in partials:
            if self._store.is_reserved(blob.file_id):
                continue
            if now - blob.modified_at < self._orphan_threshold_ms:
                continue
            try:
                if await self._storage.discard_partial(blob.file_id):
                    stats.orphans += 1
                    logger.debug("Removed partial write file=%s", blob.file_id)
            except OSError as err:
                stats.errors += 1
                logger.error("Failed to remove partial write file=%s: %s",
                             blob.file_id, err)

    async def _sweep_tokens(self, now: int, stats: SweepStats) -> None:
        for token in self._store.expired_tokens(now):
            if await self._store.purge_token(token):
                stats.tokens += 1
