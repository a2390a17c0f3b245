"""
Message sink factory.

Provides a factory function to instantiate the messaging sink configured for
digest delivery (Telegram or Slack).
"""

from event_digest.adapters.slack_client import SlackClient
from event_digest.adapters.telegram_client import TelegramClient
from event_digest.config.settings import Settings
from event_digest.domain.protocols import MessageSinkProtocol


def get_message_sink(settings: Settings) -> MessageSinkProtocol:
    """Get the message sink for the configured delivery channel.

    Args:
        settings: Application settings

    Returns:
        MessageSinkProtocol: Telegram or Slack client instance

    Raises:
        ConfigurationError: If the channel's credentials are missing

    Example:
        >>> sink = get_message_sink(settings)
        >>> sink.send_message(settings.delivery_target, "hello")
    """
    settings.require_delivery_credentials()

    if settings.delivery_channel == "slack":
        assert settings.slack_bot_token is not None
        return SlackClient(bot_token=settings.slack_bot_token.get_secret_value())

    assert settings.telegram_bot_token is not None
    return TelegramClient(bot_token=settings.telegram_bot_token.get_secret_value())
