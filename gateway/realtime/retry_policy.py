"""
Reconnect budget and delay computation for broker connections.
"""

from dataclasses import dataclass

from ..config.models import MQTTConfig


@dataclass(frozen=True)
class RetryConfig:
    """
    Configuration for reconnect behavior.

    max_attempts counts consecutive connect attempts; a successful connect
    resets the count.
    """

    max_attempts: int = 5
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0

    @classmethod
    def from_mqtt_config(cls, config: MQTTConfig) -> "RetryConfig":
        return cls(
            max_attempts=config.max_retries,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
        )

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay before the next attempt.

        Args:
            attempt: Number of attempts already made, minus one (0-indexed)

        Returns:
            min(base_delay * base^attempt, max_delay) in seconds
        """
        delay = self.base_delay * (self.exponential_base ** max(attempt, 0))
        return min(delay, self.max_delay)

    def is_exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts
