"""Tunable parameters for an ingestion session."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class IngestionConfig:
    poll_interval_seconds: float = 20.0
    poll_batch_size: int = 20
    catchup_batch_size: int = 50
    dedup_ttl_seconds: float = 300.0
    background_min_interval_seconds: float = 900.0
    duplicate_window_seconds: float = 300.0
    category_cache_ttl_seconds: float = 300.0
    watermark_path: Optional[str] = None
    ingestion_enabled: bool = True
