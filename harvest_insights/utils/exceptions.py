"""Custom exceptions for the Harvest gateway and analytics engine

This module defines the exception hierarchy:
- Base exception for everything raised by this package
- Upstream errors surfaced once the gateway gives up on a request
- Internal rate limit signal used to drive retries
- Configuration errors (fatal for the app config, degradable for rates)

Data-quality problems found during a calculation are NOT exceptions. They are
returned as warning strings next to the result.
"""

from typing import Optional


class HarvestInsightsError(Exception):
    """Base exception for all gateway and analytics errors

    Use this to catch any error raised by the package:
    ```python
    try:
        await calculator.calculate(params)
    except HarvestInsightsError as e:
        logger.error("calculation_failed", error=str(e))
    ```
    """

    pass


class UpstreamError(HarvestInsightsError):
    """Harvest API request failed

    Raised when:
    - API returns a non-2xx status other than 429
    - 429 responses persist after all retry attempts
    - Connection errors or timeouts persist after all retry attempts
      (status_code is None in that case)

    The flags let an outer layer decide whether to re-authenticate.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code == 401


class RateLimitError(HarvestInsightsError):
    """Upstream returned 429 with optional retry-after metadata.

    Internal to the gateway: it is retried automatically and converted to
    UpstreamError(429) once the retry budget is exhausted.
    """

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ConfigValidationError(HarvestInsightsError):
    """Application configuration could not be read or validated"""

    pass


class ConfigLoadError(HarvestInsightsError):
    """Rate override file exists but could not be read or parsed

    Never fatal: the rates service falls back to built-in defaults and
    reports the failure as a warning.
    """

    pass
