"""
ZeroVault records — per-file metadata and disposable download tokens.

Records persist with camelCase keys. Loading is forward compatible: unknown
keys are ignored and missing optional keys take their defaults. Records
written by the first server generation (``{"burn": ..., "timestamp": ...}``)
are upgraded on load.
"""
import time
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

SCHEMA_VERSION = 1

HOUR_MS = 60 * 60 * 1000


class ExpiryOption(str, Enum):
    ONE_HOUR = "1h"
    SIX_HOURS = "6h"
    ONE_DAY = "24h"
    SEVEN_DAYS = "7d"

    @property
    def millis(self) -> int:
        return EXPIRY_DURATIONS[self.value]


EXPIRY_DURATIONS: dict[str, int] = {
    "1h": HOUR_MS,
    "6h": 6 * HOUR_MS,
    "24h": 24 * HOUR_MS,
    "7d": 7 * 24 * HOUR_MS,
}


def now_ms() -> int:
    """Wall clock in epoch milliseconds."""
    return int(time.time() * 1000)


class _Record(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        use_enum_values=True,
        validate_default=True,
    )

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class FileRecord(_Record):
    """Metadata for one stored envelope."""

    file_id: str
    burn: bool = False
    created_at: int
    expires_at: int
    expiry_option: ExpiryOption = ExpiryOption.ONE_DAY
    downloads: int = Field(default=0, ge=0)
    size: int = Field(default=0, ge=0)
    master_token: Optional[str] = None
    file_hash: Optional[str] = None
    has_decoy: bool = False
    decoy_id: Optional[str] = None
    link_version: int = Field(default=1, ge=1)
    is_dual_mode: bool = False
    is_decoy_part: bool = False
    parent_id: Optional[str] = None
    schema_version: int = SCHEMA_VERSION

    @model_validator(mode="before")
    @classmethod
    def upgrade_legacy(cls, data: Any) -> Any:
        """Fill timestamps for records that only carry ``timestamp``."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "createdAt" not in data and "created_at" not in data and "timestamp" in data:
            data["createdAt"] = data["timestamp"]
        created = data.get("createdAt", data.get("created_at"))
        if created is not None and "expiresAt" not in data and "expires_at" not in data:
            option = data.get("expiryOption", data.get("expiry_option", "24h"))
            data["expiresAt"] = int(created) + EXPIRY_DURATIONS.get(
                option, EXPIRY_DURATIONS["24h"]
            )
        return data

    @classmethod
    def new(
        cls,
        file_id: str,
        size: int,
        now: int,
        burn: bool = False,
        expiry: str = "24h",
        **extra: Any,
    ) -> "FileRecord":
        """Build a fresh record expiring ``expiry`` after ``now``."""
        option = ExpiryOption(expiry)
        return cls(
            file_id=file_id,
            burn=burn,
            created_at=now,
            expires_at=now + option.millis,
            expiry_option=option,
            size=size,
            **extra,
        )

    def is_expired(self, now: int) -> bool:
        return self.expires_at <= now

    def linked_ids(self) -> list[str]:
        """Ids of sibling records that share this record's lifetime."""
        return [i for i in (self.decoy_id, self.parent_id) if i]

    def public_info(self) -> dict:
        """Fields a recipient may see before downloading. Never the token."""
        return {
            "burn": self.burn,
            "expiryOption": self.expiry_option,
            "expiresAt": self.expires_at,
            "hasDecoy": self.has_decoy,
            "size": self.size,
            "downloads": self.downloads,
            "linkVersion": self.link_version,
            "fileHash": self.file_hash,
        }


class DisposableToken(_Record):
    """Single-use download token with its own lifetime."""

    token: str
    file_id: str
    created_at: int
    expires_at: int
    used: bool = False

    def is_expired(self, now: int) -> bool:
        return self.expires_at <= now
