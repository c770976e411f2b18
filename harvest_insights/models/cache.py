"""
Data models for the response cache.

Defines cache configuration, entries and statistics.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CacheConfig(BaseModel):
    """Response cache configuration"""

    model_config = ConfigDict(protected_namespaces=())

    enabled: bool = True

    # Both bounds apply independently, whichever triggers first wins
    max_size: int = Field(500, ge=1, description="Maximum number of entries")
    ttl_seconds: float = Field(60.0, gt=0, description="Time to live per entry")


@dataclass
class CacheEntry:
    """A cached upstream response"""

    data: Any
    stored_at: float
    key: str


class CacheStats(BaseModel):
    """Cache statistics"""

    model_config = ConfigDict(protected_namespaces=())

    hits: int = 0
    misses: int = 0
    size: int = 0

    last_updated: datetime = Field(default_factory=datetime.now)

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate"""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total
