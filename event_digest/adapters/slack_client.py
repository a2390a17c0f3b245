"""Slack API message sink adapter."""

from typing import Any, Final

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from event_digest.config.logging_config import get_logger
from event_digest.domain.exceptions import (
    MessageTooLongError,
    MessagingAPIError,
    RateLimitError,
)

logger = get_logger(__name__)

DEFAULT_SLACK_RETRY_AFTER_SECONDS: Final[int] = 60
TOO_LONG_ERRORS: Final[frozenset[str]] = frozenset({"msg_too_long", "msg_blocks_too_long"})


class SlackClient:
    """Posts plain-text digest chunks to a Slack channel."""

    def __init__(self, bot_token: str, *, client: WebClient | None = None) -> None:
        """Initialize Slack client.

        Args:
            bot_token: Slack bot user OAuth token
            client: Pre-built WebClient (tests inject a fake)
        """
        self.client = client or WebClient(token=bot_token)

    def send_message(self, chat_id: str, text: str) -> None:
        """Post one message to ``chat_id``.

        Raises:
            MessageTooLongError: Slack rejected the payload size
            RateLimitError: Slack throttled the request
            MessagingAPIError: On any other API error
        """
        try:
            response = self.client.chat_postMessage(
                channel=chat_id, text=text, unfurl_links=False, mrkdwn=False
            )
        except SlackApiError as e:
            raise _translate_error(e) from e

        if not response["ok"]:
            error = response.get("error")
            if error in TOO_LONG_ERRORS:
                raise MessageTooLongError(f"Slack rejected message: {error}")
            raise MessagingAPIError(f"Failed to post message: {error}")

        logger.debug("slack_message_posted", channel=chat_id, ts=response.get("ts"))


def _retry_after(response: Any) -> float | None:
    headers = getattr(response, "headers", None) or {}
    value = headers.get("Retry-After") or headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _translate_error(error: SlackApiError) -> Exception:
    response = error.response
    code = response.get("error") if response is not None else None
    status = getattr(response, "status_code", None)

    if code == "ratelimited" or status == 429:
        retry_after = _retry_after(response)
        logger.warning("slack_rate_limited", retry_after=retry_after)
        return RateLimitError(
            retry_after=retry_after
            if retry_after is not None
            else DEFAULT_SLACK_RETRY_AFTER_SECONDS
        )

    if code in TOO_LONG_ERRORS:
        return MessageTooLongError(f"Slack rejected message: {code}")

    return MessagingAPIError(f"Failed to post message: {code or error}")
