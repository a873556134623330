"""Backoff arithmetic and the per-job retry state machine."""

from dataclasses import dataclass
from typing import Optional

from panelcast import config


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Delay before retry number ``attempt`` (1-based): ``min(base * 2**(attempt-1), cap)``."""
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return min(base * (2 ** (attempt - 1)), cap)


@dataclass(frozen=True)
class RetryPolicy:
    base_delay: float = config.RATE_LIMIT_BASE_DELAY
    max_delay: float = config.RATE_LIMIT_MAX_DELAY
    max_rate_limit_retries: int = config.MAX_RATE_LIMIT_RETRIES
    max_attempts: int = config.MAX_CREDENTIAL_ATTEMPTS


@dataclass
class RetryState:
    """Counters for one job.

    Rate-limit retries and credential attempts are budgeted separately: an
    auth failure rotates the credential without spending rate-limit budget,
    while ``max_attempts`` bounds the total number of credentials tried.
    """
    policy: RetryPolicy
    rate_limit_retries: int = 0
    credential_attempts: int = 0
    next_delay: Optional[float] = None

    def on_rate_limited(self) -> Optional[float]:
        """Register a rate-limit hit. Returns the delay, or None once the budget is spent."""
        self.rate_limit_retries += 1
        if self.rate_limit_retries > self.policy.max_rate_limit_retries:
            self.next_delay = None
            return None
        self.next_delay = backoff_delay(
            self.rate_limit_retries, self.policy.base_delay, self.policy.max_delay
        )
        return self.next_delay

    def on_new_credential(self) -> bool:
        """Register a credential acquisition. False once the attempt ceiling is hit."""
        self.credential_attempts += 1
        self.rate_limit_retries = 0
        self.next_delay = None
        return self.credential_attempts <= self.policy.max_attempts

