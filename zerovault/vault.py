"""
ZeroVault — server-side facade over the metadata store, tokens and storage.

Provides the operations request handlers call:
- ``upload(data, ...)`` — store an envelope and create its record
- ``upload_dual(first, second, ...)`` — store two linked envelopes
- ``info(file_id)`` — public metadata shown before download
- ``download(file_id)`` — context manager that burns on clean exit
- ``heal`` / ``issue_disposable`` / ``redeem_disposable`` — management contract
- ``start()`` / ``close()`` — load metadata and run the sweeper

The server only ever sees ciphertext and opaque ids.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, NamedTuple, Optional

from .config import VaultConfig
from .crypto import RandomSource
from .deniability import DeniabilityLayer, DualUploadResult
from .exceptions import FormatError, Gone, NotFound, TooLarge
from .ids import allocate_file_id
from .models import EXPIRY_DURATIONS, FileRecord, now_ms
from .storage import BaseStorage, LocalStorage, MetadataFile
from .store import VaultMetadataStore
from .sweeper import RetentionSweeper
from .tokens import DisposableGrant, HealResult, TokenAuthority

logger = logging.getLogger("zerovault.vault")


class UploadResult(NamedTuple):
    file_id: str
    master_token: str
    expires_at: int
    link_version: int
    decoy_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "filename": self.file_id,
            "masterToken": self.master_token,
            "expiresAt": self.expires_at,
            "linkVersion": self.link_version,
            "hasDecoy": self.decoy_id is not None,
        }


class ZeroVault:
    """Owns one store, one storage root and the components built on them."""

    def __init__(
        self,
        config: Optional[VaultConfig] = None,
        storage: Optional[BaseStorage] = None,
        random_source: Optional[RandomSource] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.config = config or VaultConfig()
        self.storage = storage or LocalStorage(self.config.storage_root)
        self.store = VaultMetadataStore(
            MetadataFile(self.config.metadata_file), clock=clock,
        )
        self.tokens = TokenAuthority(
            self.store, disposable_ttl=self.config.disposable_token_ttl, clock=clock,
        )
        self.deniability = DeniabilityLayer(
            self.store, self.storage, random_source=random_source, clock=clock,
        )
        self.sweeper = RetentionSweeper(
            self.store,
            self.storage,
            self.deniability,
            interval=self.config.sweep_interval,
            orphan_threshold=self.config.orphan_threshold,
            clock=clock,
        )
        self._clock = clock

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, sweep: bool = True) -> None:
        """Load persisted metadata and optionally start the sweeper."""
        if isinstance(self.storage, LocalStorage):
            await self.storage.init()
        await self.store.load()
        if sweep:
            self.sweeper.start()

    async def close(self) -> None:
        await self.sweeper.stop()
        await self.store.flush()

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def _validate(self, data: bytes, expiry: Optional[str]) -> str:
        expiry = expiry or self.config.default_expiry
        if expiry not in EXPIRY_DURATIONS:
            raise FormatError(f"Unknown expiry option: {expiry}")
        if not data:
            raise FormatError("No file uploaded")
        if len(data) > self.config.max_upload_size:
            raise TooLarge()
        return expiry

    async def upload(
        self,
        data: bytes,
        burn: bool = False,
        expiry: Optional[str] = None,
        decoy: bool = False,
        file_hash: Optional[str] = None,
    ) -> UploadResult:
        """Store an envelope and create its record once the bytes are on disk.

        Raises:
            FormatError: Empty payload or unknown expiry option.
            TooLarge: Payload above ``max_upload_size``.
        """
        expiry = self._validate(data, expiry)
        file_id = await allocate_file_id(self.store, self.storage)
        master_token = self.tokens.issue_master_token()
        try:
            await self.storage.write(file_id, data)
            record = FileRecord.new(
                file_id, len(data), self._clock(), burn=burn, expiry=expiry,
                master_token=master_token, file_hash=file_hash or None,
            )
            await self.store.create(record)
        except Exception:
            await self.storage.delete(file_id)
            await self.store.release_reservation(file_id)
            raise
        decoy_id = None
        if decoy:
            try:
                decoy_id = (await self.deniability.attach_decoy(file_id)).file_id
            except Exception:
                # the caller never receives the master token
                await self.deniability.destroy(file_id)
                raise
        logger.info(
            "File uploaded: file=%s size=%d burn=%s expiry=%s decoy=%s",
            file_id, len(data), burn, expiry, decoy_id is not None,
        )
        return UploadResult(
            file_id, master_token, record.expires_at, record.link_version, decoy_id,
        )

    async def upload_dual(
        self,
        first: bytes,
        second: bytes,
        burn: bool = False,
        expiry: Optional[str] = None,
    ) -> DualUploadResult:
        expiry = self._validate(first, expiry)
        self._validate(second, expiry)
        return await self.deniability.upload_dual(first, second, burn=burn, expiry=expiry)

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def info(self, file_id: str) -> dict:
        """Public metadata for the download page.

        Raises:
            NotFound: Unknown file id.
            Gone: Record has expired.
        """
        record = await self.store.get(file_id)
        if record.is_expired(self._clock()):
            raise Gone("File has expired")
        return record.public_info()

    @asynccontextmanager
    async def download(self, file_id: str) -> AsyncIterator[bytes]:
        """Yield the envelope; burn records are destroyed on clean exit.

        Deletion happens when the ``async with`` block ends, i.e. after the
        caller finished streaming the bytes. If the block raises, a burn
        claim is released and the record stays available.

        Raises:
            NotFound: Unknown id, or bytes missing from storage.
            Gone: Expired, or a concurrent download already claimed the burn.
        """
        record = await self.store.claim_download(file_id)
        try:
            data = await self.storage.read(file_id)
            yield data
        except BaseException:
            if record.burn:
                await self.store.release_claim(file_id)
            raise
        if record.burn:
            logger.info("Burning file=%s after download", file_id)
            try:
                result = await self.deniability.destroy(file_id)
            except NotFound:
                # expired and swept while streaming
                return
            if file_id in result.failed:
                logger.error(
                    "Burn of file=%s incomplete; it stays claimed until expiry",
                    file_id,
                )

    async def fetch(self, file_id: str) -> bytes:
        """Download in one call, burning immediately when flagged."""
        async with self.download(file_id) as data:
            return data

    # ------------------------------------------------------------------
    # Management contract
    # ------------------------------------------------------------------

    async def heal(self, file_id: str, master_token: str) -> HealResult:
        return await self.tokens.heal_link(file_id, master_token)

    async def issue_disposable(self, file_id: str, master_token: str) -> DisposableGrant:
        return await self.tokens.issue_disposable_token(file_id, master_token)

    async def redeem_disposable(self, token: str) -> bytes:
        """Spend a disposable token and return the file bytes.

        The download goes through the normal path, so burn applies.

        Raises:
            NotFound: Unknown token or file.
            Gone: Token used or expired, or file expired or burning.
        """
        record = await self.tokens.redeem_disposable_token(token)
        return await self.fetch(record.file_id)
