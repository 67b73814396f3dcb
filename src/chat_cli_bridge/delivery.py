from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from chat_cli_bridge.errors import DeliveryRateLimitedError


@dataclass(frozen=True)
class MessageRef:
    chat_id: str
    message_id: str


@runtime_checkable
class MessageDelivery(Protocol):
    """Outbound channel of a chat front-end.

    ``edit_of`` asks the front-end to replace an earlier message in place.
    Implementations raise ``DeliveryRateLimitedError`` when the caller should
    back off and retry, and any other ``DeliveryError`` for permanent failures.
    """

    async def send(self, chat_id: str, text: str, *, edit_of: MessageRef | None = None) -> MessageRef: ...


def _on_retry(retry_state: RetryCallState) -> None:
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"{reason} while delivering. Retrying in {wait:.1f}s (attempt {attempt})...")


class RetryingDelivery:
    """Retries rate-limited sends with exponential backoff.

    A ``retry_after`` hint on the error takes precedence over the computed
    backoff. Other errors propagate on the first attempt.
    """

    def __init__(self, inner: MessageDelivery, *, attempts: int = 3, wait_multiplier: float = 1.0):
        self._inner = inner
        self._attempts = max(1, attempts)
        self._backoff = wait_exponential(multiplier=wait_multiplier, min=wait_multiplier, max=wait_multiplier * 8)

    async def send(self, chat_id: str, text: str, *, edit_of: MessageRef | None = None) -> MessageRef:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(DeliveryRateLimitedError),
            wait=self._wait,
            stop=stop_after_attempt(self._attempts),
            before_sleep=_on_retry,
            reraise=True,
        ):
            with attempt:
                return await self._inner.send(chat_id, text, edit_of=edit_of)
        raise AssertionError("unreachable")

    def _wait(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, DeliveryRateLimitedError) and exc.retry_after is not None:
            return max(0.0, exc.retry_after)
        return self._backoff(retry_state)


@runtime_checkable
class ResourceCleanup(Protocol):
    def release(self, user_id: str, resource: str) -> None: ...


class TempFileCleanup:
    """Deletes per-turn temporary files such as downloaded attachments."""

    def release(self, user_id: str, resource: str) -> None:
        path = Path(resource)
        try:
            path.unlink()
            logger.debug(f"Released temporary resource for user {user_id}: {path}")
        except FileNotFoundError:
            logger.debug(f"Temporary resource already gone: {path}")
        except OSError as ex:
            logger.warning(f"Failed to release temporary resource {path}: {ex}")
