"""Pipeline constants shared by services and use cases."""

from typing import Final

# Pagination
DEFAULT_MAX_ROUNDS: Final[int] = 8
DEFAULT_ROUND_DELAY_SECONDS: Final[float] = 2.0
CONTINUATION_HISTORY_SIZE: Final[int] = 40
"""Most recent events echoed back to the model so it does not repeat them."""

# Delivery
TELEGRAM_SAFE_CHUNK_LEN: Final[int] = 3600
FALLBACK_CHUNK_LEN: Final[int] = 2500
"""Re-split threshold used after the sink reports an oversize payload."""
INTER_CHUNK_PAUSE_SECONDS: Final[float] = 0.35
RETRY_PAUSE_SECONDS: Final[float] = 1.2
MAX_SEND_ATTEMPTS: Final[int] = 3
RATE_LIMIT_MARGIN_SECONDS: Final[float] = 1.0
DEFAULT_RATE_LIMIT_WAIT_SECONDS: Final[float] = 5.0
MAX_RATE_LIMIT_WAITS: Final[int] = 10

# Persistence
DEFAULT_RETENTION_DAYS: Final[int] = 90
RUNNING_EXECUTION_STALE_MINUTES: Final[int] = 60

# Guide metadata defaults, overwritten by whatever the model reports
DEFAULT_GUIDE_META: Final[dict[str, str]] = {
    "city": "São Paulo",
    "scope": "Capital",
    "source": "Sesc Em Cartaz",
    "month": "",
}

# Dedup
IDENTITY_KEY_DELIMITER: Final[str] = "|"
