"""
ZeroVault Configuration — validated settings loaded from the environment.

Reads settings from environment variables prefixed with ``ZEROVAULT_``:
    ZEROVAULT_STORAGE_ROOT = <directory for encrypted blobs>
    ZEROVAULT_METADATA_FILE = <path of the metadata document>
    ZEROVAULT_MAX_UPLOAD_SIZE = <bytes>
    ZEROVAULT_DEFAULT_EXPIRY = 1h | 6h | 24h | 7d
    ZEROVAULT_DISPOSABLE_TOKEN_TTL = <seconds>
    ZEROVAULT_SWEEP_INTERVAL = <seconds>
    ZEROVAULT_ORPHAN_THRESHOLD = <seconds>
"""
import os
import logging

from pydantic import BaseModel, Field, field_validator, model_validator

from .models import EXPIRY_DURATIONS

logger = logging.getLogger("zerovault.config")

_ENV_PREFIX = "ZEROVAULT_"


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    storage_root: str = Field(default="uploads")
    metadata_file: str = Field(default="metadata.json")
    max_upload_size: int = Field(default=100 * 1024 * 1024, ge=1)
    default_expiry: str = Field(default="24h")
    disposable_token_ttl: int = Field(default=3600, ge=60)
    sweep_interval: float = Field(default=60.0, ge=1)
    orphan_threshold: int = Field(default=24 * 60 * 60, ge=0)

    @field_validator("default_expiry")
    @classmethod
    def validate_expiry(cls, v: str) -> str:
        """Validate the default expiry is a known option."""
        if v not in EXPIRY_DURATIONS:
            raise ValueError(
                f"Unsupported expiry option: {v} "
                f"(available: {sorted(EXPIRY_DURATIONS)})"
            )
        return v

    @model_validator(mode="after")
    def validate_orphan_threshold(self) -> "VaultConfig":
        """Orphans must outlive at least one sweep so uploads in flight survive."""
        if self.orphan_threshold and self.orphan_threshold < self.sweep_interval:
            raise ValueError(
                f"orphan_threshold ({self.orphan_threshold}s) must not be "
                f"shorter than sweep_interval ({self.sweep_interval}s)"
            )
        return self

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Unset variables fall back to the field defaults.

        Returns:
            Populated VaultConfig instance.
        """
        values = {}
        for name in cls.model_fields:
            raw = os.environ.get(f"{_ENV_PREFIX}{name.upper()}")
            if raw is not None:
                values[name] = raw
        config = cls(**values)
        logger.debug(
            "Loaded vault config: storage_root=%s metadata_file=%s",
            config.storage_root, config.metadata_file,
        )
        return config
