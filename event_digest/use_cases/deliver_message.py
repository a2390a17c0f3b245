"""Chunked, retry-safe delivery of long text to a message sink.

Each chunk moves through a small state machine::

    ATTEMPTING --ok--------------------------> DELIVERED
    ATTEMPTING --rate limit--> BACKOFF --wait--> ATTEMPTING   (not counted)
    ATTEMPTING --transient error--> BACKOFF --pause--> ATTEMPTING
    ATTEMPTING --attempt cap reached--------> EXHAUSTED (raises)

An oversize rejection re-splits the chunk at a smaller threshold and sends the
pieces in order before moving on to the next chunk.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from event_digest.config.logging_config import get_logger
from event_digest.domain.constants import (
    DEFAULT_RATE_LIMIT_WAIT_SECONDS,
    FALLBACK_CHUNK_LEN,
    INTER_CHUNK_PAUSE_SECONDS,
    MAX_RATE_LIMIT_WAITS,
    MAX_SEND_ATTEMPTS,
    RATE_LIMIT_MARGIN_SECONDS,
    RETRY_PAUSE_SECONDS,
    TELEGRAM_SAFE_CHUNK_LEN,
)
from event_digest.domain.exceptions import (
    DeliveryExhaustedError,
    MessageTooLongError,
    MessagingAPIError,
    RateLimitError,
)
from event_digest.domain.models import DeliveryResult
from event_digest.domain.protocols import MessageSinkProtocol
from event_digest.services.message_splitter import add_position_markers, split_message

logger = get_logger(__name__)

SleepCallable = Callable[[float], None]


class DeliveryState(str, Enum):
    """States of a single chunk delivery."""

    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    EXHAUSTED = "exhausted"
    DELIVERED = "delivered"


@dataclass(frozen=True)
class RetryPolicy:
    """Limits and pauses governing delivery."""

    chunk_max_length: int = TELEGRAM_SAFE_CHUNK_LEN
    fallback_chunk_length: int = FALLBACK_CHUNK_LEN
    max_attempts: int = MAX_SEND_ATTEMPTS
    retry_pause_seconds: float = RETRY_PAUSE_SECONDS
    inter_chunk_pause_seconds: float = INTER_CHUNK_PAUSE_SECONDS
    rate_limit_margin_seconds: float = RATE_LIMIT_MARGIN_SECONDS
    default_rate_limit_wait_seconds: float = DEFAULT_RATE_LIMIT_WAIT_SECONDS
    max_rate_limit_waits: int = MAX_RATE_LIMIT_WAITS

    def rate_limit_delay(self, retry_after: float | None) -> float:
        base = (
            retry_after
            if retry_after is not None and retry_after >= 0
            else self.default_rate_limit_wait_seconds
        )
        return base + self.rate_limit_margin_seconds


@dataclass
class _ChunkAttempt:
    label: str
    state: DeliveryState = DeliveryState.ATTEMPTING
    attempts: int = 0
    rate_limit_waits: int = 0


class ChunkedMessageDelivery:
    """Deliver arbitrarily long text through a size-bounded sink."""

    def __init__(
        self,
        sink: MessageSinkProtocol,
        *,
        policy: RetryPolicy | None = None,
        sleep: SleepCallable | None = None,
    ) -> None:
        """Initialize delivery.

        Args:
            sink: Message sink
            policy: Retry limits and pauses
            sleep: Sleep callable (injectable for tests)
        """
        self._sink = sink
        self._policy = policy or RetryPolicy()
        self._sleep = sleep or time.sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def deliver(self, chat_id: str, text: str) -> DeliveryResult:
        """Split ``text`` and send every chunk in order.

        Args:
            chat_id: Destination identifier
            text: Text of any length

        Returns:
            DeliveryResult with counters

        Raises:
            DeliveryExhaustedError: A chunk failed after all attempts
        """
        chunks = add_position_markers(
            split_message(text, self._policy.chunk_max_length)
        )
        result = DeliveryResult(chunks_total=len(chunks))
        if not chunks:
            return result

        logger.info(
            "delivery_started",
            text_length=len(text),
            chunks=len(chunks),
            max_length=self._policy.chunk_max_length,
        )

        for index, payload in enumerate(chunks, 1):
            label = f"{index}/{len(chunks)}"
            self._send_chunk(chat_id, payload, label, result, allow_resplit=True)
            self._sleep(self._policy.inter_chunk_pause_seconds)

        logger.info(
            "delivery_completed",
            chunks=result.chunks_total,
            messages_sent=result.messages_sent,
            resplit_chunks=result.resplit_chunks,
            rate_limit_waits=result.rate_limit_waits,
        )
        return result

    def _send_chunk(
        self,
        chat_id: str,
        payload: str,
        label: str,
        result: DeliveryResult,
        *,
        allow_resplit: bool,
    ) -> None:
        attempt = _ChunkAttempt(label=label)

        while attempt.state is not DeliveryState.DELIVERED:
            attempt.state = DeliveryState.ATTEMPTING
            try:
                self._sink.send_message(chat_id, payload)
            except MessageTooLongError as exc:
                if allow_resplit:
                    self._resplit(chat_id, payload, label, result)
                    return
                self._register_failure(attempt, exc)
                continue
            except RateLimitError as exc:
                self._wait_for_rate_limit(attempt, exc, result)
                continue
            except MessagingAPIError as exc:
                self._register_failure(attempt, exc)
                continue

            attempt.state = DeliveryState.DELIVERED
            result.messages_sent += 1
            logger.debug("chunk_delivered", chunk=label, length=len(payload))

    def _resplit(
        self, chat_id: str, payload: str, label: str, result: DeliveryResult
    ) -> None:
        pieces = split_message(payload, self._policy.fallback_chunk_length)
        logger.warning(
            "delivery_message_too_long",
            chunk=label,
            length=len(payload),
            pieces=len(pieces),
            fallback_length=self._policy.fallback_chunk_length,
        )
        result.resplit_chunks += 1
        for sub_index, piece in enumerate(pieces, 1):
            if sub_index > 1:
                self._sleep(self._policy.inter_chunk_pause_seconds)
            self._send_chunk(
                chat_id,
                piece,
                f"{label}.{sub_index}",
                result,
                allow_resplit=False,
            )

    def _wait_for_rate_limit(
        self, attempt: _ChunkAttempt, error: RateLimitError, result: DeliveryResult
    ) -> None:
        attempt.rate_limit_waits += 1
        if attempt.rate_limit_waits > self._policy.max_rate_limit_waits:
            attempt.state = DeliveryState.EXHAUSTED
            logger.error(
                "delivery_rate_limit_exhausted",
                chunk=attempt.label,
                rate_limit_waits=self._policy.max_rate_limit_waits,
                retry_after_seconds=error.retry_after,
            )
            raise DeliveryExhaustedError(
                chunk_index=_chunk_number(attempt.label),
                attempts=self._policy.max_rate_limit_waits,
                last_error=error,
                rate_limited=True,
            ) from error

        delay = self._policy.rate_limit_delay(error.retry_after)
        attempt.state = DeliveryState.BACKOFF
        result.rate_limit_waits += 1
        logger.warning(
            "delivery_rate_limited",
            chunk=attempt.label,
            retry_after_seconds=error.retry_after,
            sleep_seconds=delay,
            wait=attempt.rate_limit_waits,
        )
        self._sleep(delay)

    def _register_failure(self, attempt: _ChunkAttempt, error: MessagingAPIError) -> None:
        attempt.attempts += 1
        if attempt.attempts >= self._policy.max_attempts:
            attempt.state = DeliveryState.EXHAUSTED
            logger.error(
                "delivery_exhausted",
                chunk=attempt.label,
                attempts=attempt.attempts,
                error=str(error),
            )
            raise DeliveryExhaustedError(
                chunk_index=_chunk_number(attempt.label),
                attempts=attempt.attempts,
                last_error=error,
            ) from error

        attempt.state = DeliveryState.BACKOFF
        logger.warning(
            "delivery_retry",
            chunk=attempt.label,
            attempt=attempt.attempts,
            max_attempts=self._policy.max_attempts,
            error=str(error),
        )
        self._sleep(self._policy.retry_pause_seconds)


def _chunk_number(label: str) -> int:
    return int(label.split("/", 1)[0].split(".", 1)[0])


__all__ = ["ChunkedMessageDelivery", "DeliveryState", "RetryPolicy"]
