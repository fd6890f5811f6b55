"""Tests for the per-request cancellation signal."""

import asyncio
import threading
import time

import pytest

from transcriber_service.core.cancellation import DEADLINE_EXCEEDED, CancelSignal
from transcriber_service.core.exceptions import ErrorKind, PipelineCancelled


class TestSignal:
    def test_fires_once(self):
        signal = CancelSignal()

        assert signal.cancel('client disconnected') is True
        assert signal.cancel('deadline exceeded') is False
        assert signal.reason == 'client disconnected'
        assert signal.cancelled

    def test_raise_if_cancelled(self):
        signal = CancelSignal()
        signal.raise_if_cancelled()

        signal.cancel('client disconnected')
        with pytest.raises(PipelineCancelled) as excinfo:
            signal.raise_if_cancelled()
        assert excinfo.value.kind is ErrorKind.CANCELLED

    def test_past_deadline_counts_as_fired(self):
        signal = CancelSignal(deadline=time.monotonic() - 1)
        assert signal.cancelled
        assert signal.reason == DEADLINE_EXCEEDED

    def test_without_timeout_never_expires(self):
        assert not CancelSignal.with_timeout(None).cancelled


class TestWait:
    @pytest.mark.asyncio
    async def test_woken_from_another_thread(self):
        signal = CancelSignal()
        timer = threading.Timer(0.05, signal.cancel, args=('client disconnected',))
        timer.start()
        try:
            reason = await asyncio.wait_for(signal.wait(), timeout=5)
        finally:
            timer.cancel()

        assert reason == 'client disconnected'

    @pytest.mark.asyncio
    async def test_deadline_wakes_waiter(self):
        signal = CancelSignal.with_timeout(0.05)
        reason = await asyncio.wait_for(signal.wait(), timeout=5)
        assert reason == DEADLINE_EXCEEDED

    @pytest.mark.asyncio
    async def test_returns_immediately_when_already_fired(self):
        signal = CancelSignal()
        signal.cancel('client disconnected')
        assert await asyncio.wait_for(signal.wait(), timeout=1) == 'client disconnected'


class TestGuard:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def work():
            await asyncio.sleep(0)
            return 42

        assert await CancelSignal().guard(work()) == 42

    @pytest.mark.asyncio
    async def test_propagates_inner_error(self):
        async def work():
            raise ValueError('backend error')

        with pytest.raises(ValueError):
            await CancelSignal().guard(work())

    @pytest.mark.asyncio
    async def test_signal_cancels_inner_call(self):
        signal = CancelSignal()
        inner_cancelled = asyncio.Event()

        async def work():
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                inner_cancelled.set()
                raise

        asyncio.get_running_loop().call_later(0.05, signal.cancel, 'client disconnected')
        with pytest.raises(PipelineCancelled, match='client disconnected'):
            await asyncio.wait_for(signal.guard(work()), timeout=5)

        assert inner_cancelled.is_set()

    @pytest.mark.asyncio
    async def test_refuses_to_start_after_fire(self):
        signal = CancelSignal()
        signal.cancel('client disconnected')
        started = []

        async def work():
            started.append(True)

        coro = work()
        with pytest.raises(PipelineCancelled):
            await signal.guard(coro)
        coro.close()

        assert started == []

    @pytest.mark.asyncio
    async def test_outer_task_cancel_reaches_inner_call(self):
        inner_cancelled = asyncio.Event()
        entered = asyncio.Event()

        async def work():
            entered.set()
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                inner_cancelled.set()
                raise

        task = asyncio.create_task(CancelSignal().guard(work()))
        await entered.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert inner_cancelled.is_set()
