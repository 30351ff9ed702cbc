"""Cancellation tokens and per-conversation stream slots."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncIterable, AsyncIterator

from ..types import StreamCancelled

logger = logging.getLogger(__name__)


class CancelToken:
    """One-shot cancellation flag that async readers can wait on."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise StreamCancelled(self.reason or "cancelled")


async def iter_until_cancelled(
    stream: AsyncIterable[bytes],
    token: CancelToken | None,
) -> AsyncIterator[bytes]:
    """Re-yield *stream*, aborting a pending read as soon as *token* fires.

    Raises:
        StreamCancelled: the token was cancelled before the stream ended.
    """
    iterator = stream.__aiter__()
    if token is None:
        async for chunk in iterator:
            yield chunk
        return

    waiter = asyncio.ensure_future(token.wait())
    try:
        while True:
            token.raise_if_cancelled()
            read = asyncio.ensure_future(iterator.__anext__())
            done, _ = await asyncio.wait({read, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if read not in done:
                read.cancel()
                await asyncio.gather(read, return_exceptions=True)
                raise StreamCancelled(token.reason or "cancelled")
            try:
                chunk = read.result()
            except StopAsyncIteration:
                return
            yield chunk
    finally:
        waiter.cancel()
        await asyncio.gather(waiter, return_exceptions=True)
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except RuntimeError as e:
                logger.debug("Stream close after cancellation: %s", e)


class StreamSlots:
    """At most one active request per conversation slot.

    Owned by the caller.  ``acquire`` cancels whatever request still holds
    the slot; ``release`` only frees the slot if it is still held by the
    releasing token, so a finished request cannot evict its successor.
    """

    def __init__(self) -> None:
        self._slots: dict[str, CancelToken] = {}
        self._lock = threading.Lock()

    def acquire(self, slot: str) -> CancelToken:
        token = CancelToken()
        with self._lock:
            previous = self._slots.get(slot)
            self._slots[slot] = token
        if previous is not None and not previous.cancelled:
            logger.info("Slot %s: cancelling previous in-flight request", slot)
            previous.cancel("superseded")
        return token

    def release(self, slot: str, token: CancelToken) -> None:
        with self._lock:
            if self._slots.get(slot) is token:
                del self._slots[slot]

    def active(self, slot: str) -> CancelToken | None:
        with self._lock:
            return self._slots.get(slot)

    def cancel(self, slot: str, reason: str = "cancelled") -> bool:
        with self._lock:
            token = self._slots.pop(slot, None)
        if token is None:
            return False
        token.cancel(reason)
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)
