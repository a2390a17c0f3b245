"""Telegram Bot API message sink adapter (plain HTTPS via requests)."""

import re
from typing import Any, Final

import requests

from event_digest.config.logging_config import get_logger
from event_digest.domain.exceptions import (
    MessageTooLongError,
    MessagingAPIError,
    RateLimitError,
)

logger = get_logger(__name__)

TELEGRAM_API_BASE: Final[str] = "https://api.telegram.org"
DEFAULT_TELEGRAM_TIMEOUT_SECONDS: Final[float] = 30.0
TOO_LONG_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"message is too long", flags=re.IGNORECASE
)
TOO_MANY_REQUESTS_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"too many requests", flags=re.IGNORECASE
)


class TelegramClient:
    """Sends messages through the Telegram Bot API ``sendMessage`` method.

    Example:
        >>> client = TelegramClient(bot_token="123:abc")
        >>> client.send_message("-100123", "hello")
    """

    def __init__(
        self,
        bot_token: str,
        *,
        session: requests.Session | None = None,
        timeout_seconds: float = DEFAULT_TELEGRAM_TIMEOUT_SECONDS,
        api_base: str = TELEGRAM_API_BASE,
    ) -> None:
        """Initialize Telegram client.

        Args:
            bot_token: Bot token from @BotFather
            session: Optional requests session (tests inject a fake)
            timeout_seconds: Per-request timeout
            api_base: Bot API base URL
        """
        if not bot_token:
            raise ValueError("Telegram bot_token must not be empty")
        self._bot_token = bot_token
        self._session = session or requests.Session()
        self._timeout_seconds = timeout_seconds
        self._api_base = api_base.rstrip("/")

    def _method_url(self, method: str) -> str:
        return f"{self._api_base}/bot{self._bot_token}/{method}"

    def send_message(self, chat_id: str, text: str) -> None:
        """Send a single plain-text message.

        Raises:
            MessageTooLongError: Telegram reported the text exceeds its limit
            RateLimitError: HTTP 429 / ``retry_after`` in the response
            MessagingAPIError: On transport or other API errors
        """
        payload = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        try:
            response = self._session.post(
                self._method_url("sendMessage"),
                json=payload,
                timeout=self._timeout_seconds,
            )
        except requests.RequestException as e:
            # The request URL embeds the bot token; keep it out of messages.
            raise MessagingAPIError(
                f"Telegram request failed: {type(e).__name__}"
            ) from e

        body = _json_body(response)
        if response.status_code == 200 and body.get("ok"):
            logger.debug("telegram_message_sent", chat_id=chat_id, length=len(text))
            return

        raise _translate_error(response.status_code, body)


def _json_body(response: requests.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _translate_error(status_code: int, body: dict[str, Any]) -> Exception:
    description = str(body.get("description") or f"HTTP {status_code}")
    error_code = body.get("error_code", status_code)
    parameters = body.get("parameters") or {}
    retry_after = parameters.get("retry_after") if isinstance(parameters, dict) else None

    if TOO_LONG_PATTERN.search(description):
        return MessageTooLongError(description)

    if (
        error_code == 429
        or status_code == 429
        or retry_after is not None
        or TOO_MANY_REQUESTS_PATTERN.search(description)
    ):
        logger.warning("telegram_rate_limited", retry_after=retry_after)
        return RateLimitError(
            retry_after=float(retry_after) if retry_after is not None else None
        )

    return MessagingAPIError(f"Telegram API error {error_code}: {description}")
