from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any, Callable

from chatsync.features.shared.diagnostics import SyncDiagnostics

from .schemas import ConversationDelta, ConversationDeltaRequest

logger = logging.getLogger(__name__)

StreamFactory = Callable[[ConversationDeltaRequest], AsyncIterator[Any]]
DeltaHandler = Callable[[ConversationDelta], None]
ErrorHandler = Callable[[BaseException], None]


def _to_delta(request: ConversationDeltaRequest, item: Any) -> ConversationDelta:
    ack = None
    event = item
    if isinstance(item, tuple) and len(item) == 2 and callable(item[1]):
        event, ack = item
    if not isinstance(event, Mapping):
        event = {}
    return ConversationDelta.from_socket_event(request.source, event, ack)


class ConversationDeltaListener:
    """Consumes one socket subscription and feeds each event to ``on_delta`` in arrival order.

    The transport owns connect/reconnect; this only drives an async iterator of raw events.
    A stream failure is reported to ``on_error`` and ends the subscription.
    """

    def __init__(
        self,
        request: ConversationDeltaRequest,
        stream_factory: StreamFactory,
        on_delta: DeltaHandler,
        *,
        on_error: ErrorHandler | None = None,
        diagnostics: SyncDiagnostics | None = None,
    ) -> None:
        self.request = request
        self._stream_factory = stream_factory
        self._on_delta = on_delta
        self._on_error = on_error
        self.diagnostics = diagnostics or SyncDiagnostics()
        self._task: asyncio.Task[None] | None = None
        self._disposed = False

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def start(self) -> asyncio.Task[None] | None:
        if self._disposed:
            logger.debug("Ignoring start of disposed %s listener.", self.request.source)
            return None
        if self.is_active:
            return self._task
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self.run())
        logger.info(
            "Listening for %s deltas (conversation=%s, session=%s).",
            self.request.source,
            self.request.conversation_id or "*",
            self.request.session_id or "-",
        )
        return self._task

    async def run(self) -> None:
        stream: AsyncIterator[Any] | None = None
        try:
            stream = self._stream_factory(self.request)
            async for item in stream:
                self._dispatch(_to_delta(self.request, item))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.diagnostics.listener_errors += 1
            logger.warning("%s delta stream failed: %s", self.request.source, exc)
            if self._on_error is not None:
                self._on_error(exc)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                with contextlib.suppress(Exception):
                    await aclose()

    def _dispatch(self, delta: ConversationDelta) -> None:
        try:
            self._on_delta(delta)
        except Exception:
            self.diagnostics.listener_errors += 1
            logger.exception("Delta handler failed for %s event '%s'.", delta.source, delta.type)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("%s delta listener ended with an error.", self.request.source)
        logger.debug("Stopped %s delta listener.", self.request.source)

    async def dispose(self) -> None:
        self._disposed = True
        await self.stop()


__all__ = [
    "ConversationDeltaListener",
    "DeltaHandler",
    "StreamFactory",
]
