"""
Tracker configuration.
Uses the LT_TRACKER_ prefix; database / redis / feed settings live in shared.config.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from feeds.books import DEFAULT_ALLOWED_BOOKS, normalize_allow_list


def _split_csv(value: object) -> object:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


class TrackerSettings(BaseSettings):
    """Tracking-specific settings."""

    model_config = SettingsConfigDict(
        env_prefix="LT_TRACKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Cache
    cache_ttl_s: float = Field(default=300.0, description="TTL for cached tracking responses")
    cache_backend: str = Field(default="memory", description="'memory' or 'redis'")

    # Fetching
    max_concurrency: int = Field(default=3, ge=1, description="Parallel per-market odds fetches")

    # Tours
    default_tours: Annotated[list[str], NoDecode] = Field(
        default=["PGA", "DPWT", "KFT", "LIV"], description="Tours scanned when discovery is called without any"
    )
    no_cut_tours: Annotated[list[str], NoDecode] = Field(
        default=["LIV"], description="Tours without a cut; cut markets settle as push"
    )

    # Odds
    allowed_books: Annotated[list[str], NoDecode] = Field(
        default=list(DEFAULT_ALLOWED_BOOKS), description="Comma-separated bookmaker allow-list"
    )

    # Identity
    min_surname_length: int = Field(default=3, description="Shortest surname eligible for last-name matching")

    # Ledger
    run_key_prefix: str = Field(default="live-tracking", description="Prefix of the per-day run key")

    @field_validator("default_tours", "no_cut_tours", "allowed_books", mode="before")
    @classmethod
    def split_comma_lists(cls, value: object) -> object:
        return _split_csv(value)

    @field_validator("default_tours", "no_cut_tours")
    @classmethod
    def upper_tours(cls, value: list[str]) -> list[str]:
        return [t.upper() for t in value]

    @property
    def allowed_book_keys(self) -> frozenset[str]:
        return normalize_allow_list(self.allowed_books)

    @property
    def no_cut_tour_set(self) -> frozenset[str]:
        return frozenset(self.no_cut_tours)


@lru_cache(maxsize=1)
def get_tracker_settings() -> TrackerSettings:
    return TrackerSettings()
