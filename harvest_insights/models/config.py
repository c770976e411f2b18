from typing import Optional

from pydantic import BaseModel, Field, field_validator

from harvest_insights.models.cache import CacheConfig


class HarvestSettings(BaseModel):
    """Upstream API connection settings"""

    access_token: str = Field(..., min_length=1, description="OAuth bearer token")
    account_id: str = Field(..., min_length=1, description="Harvest-Account-Id header")
    base_url: str = Field("https://api.harvestapp.com/v2")
    user_agent: str = Field("HarvestInsights")
    timeout_seconds: float = Field(30.0, gt=0, le=300)

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class RateLimitConfig(BaseModel):
    """Sliding window limits (Harvest allows 100 requests per 15 seconds)"""

    max_requests: int = Field(100, ge=1)
    window_ms: int = Field(15000, ge=1)
    warning_threshold: float = Field(
        0.8,
        gt=0.0,
        le=1.0,
        description="Start staggering requests at this fraction of the limit",
    )


class RetryConfig(BaseModel):
    """Configuration for upstream retries

    429 responses wait out the embargo announced by Retry-After. Transport
    errors (connection resets, timeouts) back off exponentially.
    """

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum attempts per request (1 initial + N-1 retries)",
    )
    base_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=60.0,
        description="Base delay for exponential backoff",
    )
    max_delay_seconds: float = Field(
        default=10.0,
        ge=0.0,
        le=300.0,
        description="Maximum delay cap",
    )
    default_retry_after_seconds: float = Field(
        default=15.0,
        ge=0.0,
        description="Embargo assumed when a 429 carries no usable Retry-After",
    )


class ResolverConfig(BaseModel):
    """Entity resolver snapshot settings"""

    snapshot_ttl_seconds: float = Field(300.0, gt=0)
    max_pages: int = Field(10, ge=1, le=100)


class RatesSettings(BaseModel):
    """Rate fallback sources"""

    config_path: str = Field("rates.yaml", description="Rate override file")
    default_cost_rate: Optional[float] = Field(
        default=None,
        ge=0.0,
        description="Overrides the DEFAULT_COST_RATE environment variable",
    )


class LoggingSettings(BaseModel):
    level: str = Field("INFO")
    json_output: bool = Field(True)


class AppConfig(BaseModel):
    """Complete application configuration"""

    harvest: HarvestSettings
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    rates: RatesSettings = Field(default_factory=RatesSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
