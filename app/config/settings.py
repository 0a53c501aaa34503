"""ERA ingestion and posting settings."""
from decimal import Decimal
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


class PostingSettings(BaseSettings):
    """Tunables for parsing, reconciliation and payment posting."""

    # Allowed drift between BPR02 and the claim paid total, per claim loop
    reconciliation_tolerance_per_claim: Decimal = Field(
        Decimal("0.01"), alias="RECONCILIATION_TOLERANCE_PER_CLAIM"
    )
    posting_concurrency: int = Field(4, alias="POSTING_CONCURRENCY", ge=1, le=32)
    # Transient conflicts are retried at most once
    posting_max_retries: int = Field(1, alias="POSTING_MAX_RETRIES", ge=0, le=1)

    allowed_extensions: str = Field(".835,.edi,.x12,.txt", alias="ERA_ALLOWED_EXTENSIONS")
    max_upload_mb: int = Field(50, alias="ERA_MAX_UPLOAD_MB", ge=1)
    tokenizer_chunk_size: int = Field(64 * 1024, alias="TOKENIZER_CHUNK_SIZE", ge=256)

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"
        populate_by_name = True

    @property
    def extension_list(self) -> List[str]:
        """Allowed upload extensions, lower-cased with a leading dot."""
        extensions = []
        for item in self.allowed_extensions.split(","):
            item = item.strip().lower()
            if item:
                extensions.append(item if item.startswith(".") else f".{item}")
        return extensions


@lru_cache()
def get_posting_settings() -> PostingSettings:
    """Settings singleton; tests clear it with `get_posting_settings.cache_clear()`."""
    return PostingSettings()
