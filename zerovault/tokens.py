"""
Token Authority — master tokens, link healing and disposable download tokens.

Bearer-capability model: whoever presents the master token may manage the
record. Healing swaps the master token and bumps ``linkVersion``; every
earlier token for the record stops working at once.

Security Note:
    Tokens are compared in constant time and never logged.
"""
import secrets
import logging
from typing import Callable, NamedTuple

from .models import DisposableToken, FileRecord, now_ms
from .store import VaultMetadataStore

logger = logging.getLogger("zerovault.tokens")

TOKEN_BYTES = 32
DEFAULT_DISPOSABLE_TTL = 3600  # seconds


class HealResult(NamedTuple):
    new_master_token: str
    link_version: int

    def to_dict(self) -> dict:
        return {"newMasterToken": self.new_master_token, "linkVersion": self.link_version}


class DisposableGrant(NamedTuple):
    token: str
    ttl: int  # seconds
    expires_at: int

    def to_dict(self) -> dict:
        return {"token": self.token, "ttl": self.ttl, "expiresAt": self.expires_at}


class TokenAuthority:
    def __init__(
        self,
        store: VaultMetadataStore,
        disposable_ttl: int = DEFAULT_DISPOSABLE_TTL,
        clock: Callable[[], int] = now_ms,
    ):
        self._store = store
        self._ttl = disposable_ttl
        self._clock = clock

    @property
    def disposable_ttl(self) -> int:
        return self._ttl

    @staticmethod
    def issue_master_token() -> str:
        """Return a fresh opaque management secret."""
        return secrets.token_hex(TOKEN_BYTES)

    async def heal_link(self, file_id: str, presented: str) -> HealResult:
        """Replace the master token and invalidate every earlier one.

        Raises:
            NotFound: Unknown file id.
            Forbidden: ``presented`` is not the current master token.
        """
        new_token = self.issue_master_token()
        record = await self._store.update_healing(
            file_id, new_token, expected=presented,
        )
        logger.info(
            "Link healed: file=%s linkVersion=%d", file_id, record.link_version,
        )
        return HealResult(new_token, record.link_version)

    async def issue_disposable_token(self, file_id: str, presented: str) -> DisposableGrant:
        """Create a single-use download token with its own fixed TTL.

        The token's lifetime is independent of the file's expiry.

        Raises:
            NotFound: Unknown file id.
            Forbidden: ``presented`` is not the current master token.
        """
        now = self._clock()
        token = DisposableToken(
            token=secrets.token_urlsafe(TOKEN_BYTES),
            file_id=file_id,
            created_at=now,
            expires_at=now + self._ttl * 1000,
        )
        await self._store.add_token(file_id, token, expected=presented)
        logger.info("Disposable token issued: file=%s ttl=%ds", file_id, self._ttl)
        return DisposableGrant(token.token, self._ttl, token.expires_at)

    async def redeem_disposable_token(self, token: str) -> FileRecord:
        """Flip the token's used flag and return the record it unlocks.

        Raises:
            NotFound: Unknown token or its file is gone.
            Gone: Token already used or expired.
        """
        redeemed = await self._store.redeem_token(token)
        logger.info("Disposable token redeemed: file=%s", redeemed.file_id)
        return await self._store.get(redeemed.file_id)
