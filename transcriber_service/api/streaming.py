"""
Server-sent events transport for pipeline runs

Flask serves responses from WSGI worker threads, so each streamed request gets
its own event loop that is driven one event at a time from the response
iterator. When the client disconnects the server closes that iterator; the
close fires the run's cancel signal and waits for the pipeline to clean up.
"""
import asyncio
import json
from typing import AsyncIterator, Callable, Iterator, Optional

import structlog

from transcriber_service.core.cancellation import CancelSignal
from transcriber_service.core.logging import get_logger
from transcriber_service.core.models import StageEvent

logger = get_logger(__name__)

HEARTBEAT = ': keep-alive\n\n'
CLIENT_DISCONNECTED = 'client disconnected'

_DONE = object()


def format_sse(event: StageEvent) -> str:
    """Serialize one event as a single SSE message"""
    return f"data: {json.dumps(event.to_dict(), ensure_ascii=False)}\n\n"


async def _next_event(events: AsyncIterator[StageEvent]):
    try:
        return await events.__anext__()
    except StopAsyncIteration:
        return _DONE


class EventStream:
    """Sync iterator of SSE chunks over an async StageEvent iterator"""

    def __init__(
        self,
        events: AsyncIterator[StageEvent],
        cancel_signal: CancelSignal,
        heartbeat_seconds: Optional[float] = None,
        shutdown_grace: float = 30.0,
        on_unstarted_close: Optional[Callable[[], None]] = None,
        **log_context
    ):
        """
        Args:
            events: The pipeline run (async generator)
            cancel_signal: Signal of the same run, fired on disconnect
            heartbeat_seconds: Interval for keep-alive comments while a stage
                is in flight; a failed write is how disconnects surface
            shutdown_grace: Upper bound on waiting for cleanup after disconnect
            on_unstarted_close: Called when the response is closed before the
                run ever started (the run's tracker never saw the upload)
            log_context: Bound into structlog context for the whole stream
        """
        self.events = events
        self.cancel_signal = cancel_signal
        self.heartbeat_seconds = heartbeat_seconds
        self.shutdown_grace = shutdown_grace
        self.on_unstarted_close = on_unstarted_close
        self.log_context = log_context
        self._iterator: Optional[Iterator[str]] = None
        self._entered = False
        self._closed = False

    def close(self):
        """Called by the WSGI server once the response is done or abandoned"""
        if self._iterator is not None:
            self._iterator.close()
        if self._entered or self._closed:
            return
        self._closed = True
        logger.info("stream_closed_before_start", **self.log_context)
        if self.on_unstarted_close is not None:
            self.on_unstarted_close()

    def __iter__(self) -> Iterator[str]:
        if self._iterator is not None or self._closed:
            raise RuntimeError("event stream can only be consumed once")
        self._iterator = self._stream()
        return self._iterator

    def _stream(self) -> Iterator[str]:
        self._entered = True
        with structlog.contextvars.bound_contextvars(**self.log_context):
            loop = asyncio.new_event_loop()
            step = None
            try:
                while True:
                    step = loop.create_task(_next_event(self.events))
                    while not step.done():
                        loop.run_until_complete(asyncio.wait({step}, timeout=self.heartbeat_seconds))
                        if not step.done():
                            yield HEARTBEAT

                    event = step.result()
                    step = None
                    if event is _DONE:
                        return
                    yield format_sse(event)
            finally:
                self._shutdown(loop, step)

    def _shutdown(self, loop: asyncio.AbstractEventLoop, step: Optional[asyncio.Task]):
        try:
            if step is not None and not step.done():
                self.cancel_signal.cancel(CLIENT_DISCONNECTED)
                logger.info("stream_closed_early")
                loop.run_until_complete(asyncio.wait({step}, timeout=self.shutdown_grace))
                if not step.done():
                    logger.warning("stream_cleanup_timeout", grace=self.shutdown_grace)
                    step.cancel()
                    loop.run_until_complete(asyncio.gather(step, return_exceptions=True))
                elif not step.cancelled() and step.exception() is not None:
                    logger.warning("stream_failed_after_close", error=str(step.exception()))
            loop.run_until_complete(self.events.aclose())
            loop.run_until_complete(loop.shutdown_asyncgens())
        finally:
            loop.close()


def run_to_completion(events: AsyncIterator[StageEvent], **log_context) -> Optional[StageEvent]:
    """
    Drive a run without streaming

    Returns:
        The terminal event, or None if the run was cancelled before one was emitted
    """
    async def drain():
        terminal = None
        async for event in events:
            if event.is_terminal:
                terminal = event
        return terminal

    with structlog.contextvars.bound_contextvars(**log_context):
        return asyncio.run(drain())
