"""
Vault Metadata Store — durable file records and disposable tokens.

One store instance owns all metadata. Every mutation runs under a single
``asyncio.Lock`` and flushes the whole document before returning, so an
interrupted process loses at most the operation in flight. Reads return
copies and never observe a half-applied mutation.

Persisted document::

    {"schemaVersion": 1,
     "files": {"<fileId>": {...FileRecord...}},
     "tokens": {"<token>": {...DisposableToken...}}}

Security Note:
    Never log master tokens or disposable tokens. Log file ids only.
"""
import hmac
import asyncio
import logging
from typing import Callable, Optional

import orjson
from pydantic import ValidationError

from .exceptions import Forbidden, Gone, NotFound
from .models import SCHEMA_VERSION, DisposableToken, FileRecord, now_ms
from .storage import MetadataFile

logger = logging.getLogger("zerovault.store")


class VaultMetadataStore:
    """Owned, internally synchronized mapping fileId → FileRecord."""

    def __init__(
        self,
        metadata_file: MetadataFile,
        clock: Callable[[], int] = now_ms,
    ):
        self._file = metadata_file
        self._clock = clock
        self._files: dict[str, FileRecord] = {}
        self._tokens: dict[str, DisposableToken] = {}
        self._reserved: set[str] = set()
        self._claims: set[str] = set()
        self._dirty = False
        self.lock = asyncio.Lock()

    @property
    def dirty(self) -> bool:
        """True while the last flush failed and a rewrite is pending."""
        return self._dirty

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Load the persisted document, skipping records that fail validation."""
        raw = await self._file.load()
        if raw is None:
            logger.info("No metadata at %s, starting empty", self._file.path)
            return
        try:
            doc = orjson.loads(raw)
        except orjson.JSONDecodeError as err:
            logger.error("Unreadable metadata at %s: %s", self._file.path, err)
            return
        if not isinstance(doc, dict):
            logger.error("Metadata at %s is not a JSON object", self._file.path)
            return
        if "files" in doc:
            files, tokens = doc["files"], doc.get("tokens", {})
        else:
            # first-generation servers wrote a flat fileId -> record map
            files, tokens = doc, {}
        if not isinstance(files, dict):
            logger.error("Metadata at %s has no usable file map", self._file.path)
            files = {}
        if not isinstance(tokens, dict):
            logger.error("Metadata at %s has no usable token map", self._file.path)
            tokens = {}
        for file_id, data in files.items():
            if not isinstance(data, dict):
                continue
            try:
                self._files[file_id] = FileRecord.model_validate(
                    {**data, "fileId": file_id}
                )
            except ValidationError as err:
                logger.error("Skipping invalid record %s: %s", file_id, err)
        for value, data in tokens.items():
            if not isinstance(data, dict):
                logger.error("Skipping malformed disposable token entry")
                continue
            try:
                self._tokens[value] = DisposableToken.model_validate(
                    {**data, "token": value}
                )
            except ValidationError:
                logger.error("Skipping invalid disposable token for file=%s",
                             data.get("fileId"))
        logger.info(
            "Metadata loaded: %d file(s), %d token(s)",
            len(self._files), len(self._tokens),
        )

    def _serialize(self) -> bytes:
        return orjson.dumps(
            {
                "schemaVersion": SCHEMA_VERSION,
                "files": {k: v.to_json_dict() for k, v in self._files.items()},
                "tokens": {k: v.to_json_dict() for k, v in self._tokens.items()},
            },
            option=orjson.OPT_INDENT_2,
        )

    async def _flush(self) -> None:
        """Write the full document. Caller must hold the lock."""
        try:
            await self._file.save(self._serialize())
        except OSError as err:
            self._dirty = True
            logger.error(
                "Failed to persist metadata to %s, will retry on next write: %s",
                self._file.path, err,
            )
        else:
            self._dirty = False

    async def flush(self) -> None:
        """Retry a previously failed write."""
        async with self.lock:
            if self._dirty:
                await self._flush()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, file_id: str) -> FileRecord:
        """Return a copy of the record.

        Raises:
            NotFound: If no live record has this id.
        """
        record = self._files.get(file_id)
        if record is None:
            raise NotFound()
        return record.model_copy()

    async def find(self, file_id: str) -> Optional[FileRecord]:
        record = self._files.get(file_id)
        return record.model_copy() if record is not None else None

    def list_ids(self) -> set[str]:
        return set(self._files)

    def expired_ids(self, now: int) -> list[str]:
        return [k for k, v in self._files.items() if v.is_expired(now)]

    def is_reserved(self, file_id: str) -> bool:
        return file_id in self._reserved

    async def get_token(self, token: str) -> DisposableToken:
        found = self._tokens.get(token)
        if found is None:
            raise NotFound("Unknown token")
        return found.model_copy()

    def __len__(self) -> int:
        return len(self._files)

    def __contains__(self, file_id: object) -> bool:
        return file_id in self._files

    # ------------------------------------------------------------------
    # Id reservation
    # ------------------------------------------------------------------

    async def reserve_id(self, file_id: str) -> bool:
        """Reserve an id for an upload in progress. False if already taken."""
        async with self.lock:
            if file_id in self._files or file_id in self._reserved:
                return False
            self._reserved.add(file_id)
            return True

    async def release_reservation(self, file_id: str) -> None:
        async with self.lock:
            self._reserved.discard(file_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(self, record: FileRecord) -> FileRecord:
        """Insert a new record, consuming its id reservation."""
        async with self.lock:
            self._insert(record)
            await self._flush()
        logger.debug("Record created: file=%s size=%d", record.file_id, record.size)
        return record.model_copy()

    def _insert(self, record: FileRecord) -> None:
        if record.file_id in self._files:
            raise ValueError(f"Duplicate file id {record.file_id}")
        self._files[record.file_id] = record.model_copy()
        self._reserved.discard(record.file_id)

    async def create_pair(self, parent: FileRecord, partner: FileRecord) -> None:
        """Insert two linked records in one write."""
        async with self.lock:
            self._insert(parent)
            self._insert(partner)
            await self._flush()

    async def increment_downloads(self, file_id: str) -> FileRecord:
        async with self.lock:
            record = self._require(file_id)
            record.downloads += 1
            await self._flush()
            return record.model_copy()

    async def delete(self, file_id: str) -> Optional[FileRecord]:
        """Remove a record. Returns the removed record, or None if absent."""
        async with self.lock:
            record = self._files.pop(file_id, None)
            self._claims.discard(file_id)
            if record is not None:
                await self._flush()
        return record

    async def update_healing(
        self,
        file_id: str,
        new_master_token: str,
        expected: Optional[str] = None,
    ) -> FileRecord:
        """Swap the master token and bump ``linkVersion`` in one mutation.

        When ``expected`` is given it must equal the stored token; the check
        and the swap happen under the same lock. Outstanding disposable
        tokens for the record are revoked.

        Raises:
            NotFound: Unknown file id.
            Forbidden: ``expected`` does not match.
        """
        async with self.lock:
            record = self._require(file_id)
            if expected is not None:
                self._authorize(record, expected)
            record.master_token = new_master_token
            record.link_version += 1
            revoked = [k for k, t in self._tokens.items() if t.file_id == file_id]
            for k in revoked:
                del self._tokens[k]
            await self._flush()
            return record.model_copy()

    async def attach_decoy(self, parent_id: str, decoy: FileRecord) -> FileRecord:
        """Insert a decoy record and link it to its parent."""
        async with self.lock:
            parent = self._require(parent_id)
            self._insert(decoy)
            parent.has_decoy = True
            parent.decoy_id = decoy.file_id
            await self._flush()
            return parent.model_copy()

    # ------------------------------------------------------------------
    # Download claims
    # ------------------------------------------------------------------

    async def claim_download(self, file_id: str) -> FileRecord:
        """Count a download and, for burn records, take the exclusive claim.

        Exactly one concurrent caller can claim a burn record; the others
        get Gone until the claim is released or the record is deleted.

        Raises:
            NotFound: Unknown file id.
            Gone: Record expired or already claimed for burning.
        """
        async with self.lock:
            record = self._require(file_id)
            if record.is_expired(self._clock()):
                raise Gone("File has expired")
            if file_id in self._claims:
                raise Gone("File is being burned")
            if record.burn:
                self._claims.add(file_id)
            record.downloads += 1
            await self._flush()
            return record.model_copy()

    async def release_claim(self, file_id: str) -> None:
        async with self.lock:
            self._claims.discard(file_id)

    # ------------------------------------------------------------------
    # Disposable tokens
    # ------------------------------------------------------------------

    async def add_token(
        self, file_id: str, token: DisposableToken, expected: Optional[str] = None,
    ) -> DisposableToken:
        """Store a disposable token, authorizing against the master token."""
        async with self.lock:
            record = self._require(file_id)
            if expected is not None:
                self._authorize(record, expected)
            self._tokens[token.token] = token.model_copy()
            await self._flush()
            return token

    async def redeem_token(self, value: str) -> DisposableToken:
        """Atomically test-and-set the token's ``used`` flag.

        Raises:
            NotFound: Unknown token, or its file no longer exists.
            Gone: Token already used or past its own expiry.
        """
        async with self.lock:
            token = self._tokens.get(value)
            if token is None:
                raise NotFound("Unknown token")
            if token.used:
                raise Gone("Token already used")
            if token.is_expired(self._clock()):
                raise Gone("Token has expired")
            if token.file_id not in self._files:
                raise NotFound()
            token.used = True
            await self._flush()
            return token.model_copy()

    async def purge_token(self, value: str) -> bool:
        async with self.lock:
            if self._tokens.pop(value, None) is None:
                return False
            await self._flush()
            return True

    def expired_tokens(self, now: int) -> list[str]:
        return [k for k, t in self._tokens.items() if t.is_expired(now)]

    # ------------------------------------------------------------------
    # Helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _require(self, file_id: str) -> FileRecord:
        record = self._files.get(file_id)
        if record is None:
            raise NotFound()
        return record

    @staticmethod
    def _authorize(record: FileRecord, presented: str) -> None:
        stored = record.master_token
        if not stored or not hmac.compare_digest(
            stored.encode("utf-8"), presented.encode("utf-8")
        ):
            raise Forbidden()
