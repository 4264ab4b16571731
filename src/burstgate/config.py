"""Configuration: frozen Config with environment-resolved credentials."""

from __future__ import annotations

from dataclasses import dataclass, field
import os

from dotenv import load_dotenv

from burstgate.errors import ConfigurationError
from burstgate.leases import DEFAULT_LEASE_KEY
from burstgate.polling import ResultOrder
from burstgate.retry import RetryPolicy

load_dotenv()

_API_KEY_ENV_VAR = "BURSTGATE_API_KEY"
_BASE_URL_ENV_VAR = "BURSTGATE_BASE_URL"
_REDIS_URL_ENV_VAR = "BURSTGATE_REDIS_URL"


@dataclass(frozen=True)
class Config:
    """Immutable configuration for burstgate execution.

    Credentials and endpoints are auto-resolved from environment variables
    when not given. Setting ``redis_url`` switches admission control from
    the in-process counter to shared Redis leases.

    Example:
        config = Config(max_concurrency=5)
        # API key is automatically resolved from BURSTGATE_API_KEY
    """

    #: Auto-resolved from ``BURSTGATE_API_KEY`` when *None*.
    api_key: str | None = None
    #: Auto-resolved from ``BURSTGATE_BASE_URL`` when *None*.
    base_url: str | None = None
    use_mock: bool = False
    max_concurrency: int = 5
    slot_poll_interval_s: float = 0.2
    #: Auto-resolved from ``BURSTGATE_REDIS_URL`` when *None*.
    redis_url: str | None = None
    lease_key: str = DEFAULT_LEASE_KEY
    lease_ttl_s: float = 70.0
    job_poll_interval_s: float = 2.0
    result_order: ResultOrder = "completion"
    request_timeout_s: float | None = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        """Auto-resolve environment values and validate configuration."""
        if self.max_concurrency < 1:
            raise ConfigurationError(
                f"max_concurrency must be ≥ 1, got {self.max_concurrency}",
                hint="This is the account-wide ceiling on simultaneous calls.",
            )
        if self.slot_poll_interval_s < 0:
            raise ConfigurationError(
                f"slot_poll_interval_s must be ≥ 0, got {self.slot_poll_interval_s}",
            )
        if self.lease_ttl_s <= 0:
            raise ConfigurationError(
                f"lease_ttl_s must be > 0, got {self.lease_ttl_s}",
                hint="Keep it above one call's latency plus retry backoff (default 70s).",
            )
        if self.job_poll_interval_s < 0:
            raise ConfigurationError(
                f"job_poll_interval_s must be ≥ 0, got {self.job_poll_interval_s}",
            )
        if self.result_order not in ("completion", "submission"):
            raise ConfigurationError(
                f"Unknown result_order: {self.result_order!r}",
                hint="Supported orders: 'completion', 'submission'",
            )
        if self.request_timeout_s is not None and self.request_timeout_s <= 0:
            raise ConfigurationError(
                f"request_timeout_s must be > 0 or None, got {self.request_timeout_s}",
            )

        if self.redis_url is None:
            object.__setattr__(self, "redis_url", os.environ.get(_REDIS_URL_ENV_VAR))
        if self.use_mock:
            return

        if self.base_url is None:
            object.__setattr__(self, "base_url", os.environ.get(_BASE_URL_ENV_VAR))
        if self.api_key is None:
            object.__setattr__(self, "api_key", os.environ.get(_API_KEY_ENV_VAR))

        # Validate: real API calls need a key
        if not self.api_key:
            raise ConfigurationError(
                "API key required for the remote API",
                hint=f"Set {_API_KEY_ENV_VAR} environment variable or pass api_key=...",
            )

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(base_url={self.base_url!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"max_concurrency={self.max_concurrency}, "
            f"distributed={bool(self.redis_url)}, use_mock={self.use_mock})"
        )

    __repr__ = __str__
