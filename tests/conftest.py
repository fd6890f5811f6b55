"""
Shared fixtures: fake adapters, counting tracker, fake encoder executables
"""
import asyncio
import stat
from pathlib import Path
from types import SimpleNamespace
from typing import List, Optional

import pytest

from transcriber_service.core.cancellation import CancelSignal
from transcriber_service.core.models import PipelineRequest
from transcriber_service.utils.pipeline import TranscriptionPipeline
from transcriber_service.utils.tracker import TempResourceTracker


class FakeNormalizer:
    encoder = 'fake-encoder'

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls: List[Path] = []

    async def normalize(self, input_path, cancel_signal, tracker=None):
        self.calls.append(Path(input_path))
        if self.error is not None:
            raise self.error
        output = Path(input_path).with_name(Path(input_path).stem + '_optimized.ogg')
        output.write_bytes(b'OggS' + bytes(64))
        if tracker is not None:
            tracker.register(output)
        return output


class FakeTranscriber:
    def __init__(self, text: str = 'سلام، این یک آزمایش است', error: Optional[Exception] = None,
                 delay: float = 0.0):
        self.text = text
        self.error = error
        self.delay = delay
        self.calls: List[Path] = []
        self.cancelled = False

    def is_available(self):
        return True

    async def transcribe(self, audio_path, cancel_signal, language=None):
        self.calls.append(Path(audio_path))
        if self.delay:
            try:
                await cancel_signal.guard(asyncio.sleep(self.delay))
            except BaseException:
                self.cancelled = True
                raise
        if self.error is not None:
            raise self.error
        return self.text


class FakeRefiner:
    def __init__(self, text: str = 'سلام، این یک آزمایش است.', error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.calls: List[str] = []

    def is_available(self):
        return True

    async def improve(self, transcript, cancel_signal, language=None):
        self.calls.append(transcript)
        if self.error is not None:
            raise self.error
        return self.text


class CountingTracker(TempResourceTracker):
    """Tracker that remembers everything it saw and how often it was released"""

    def __init__(self):
        super().__init__(kill_timeout=2.0)
        self.release_calls = 0
        self.history = []

    def register(self, resource):
        super().register(resource)
        self.history.append(resource)

    async def release_all(self):
        self.release_calls += 1
        await super().release_all()


@pytest.fixture
def audio_file(tmp_path) -> Path:
    path = tmp_path / 'upload-recording.mp3'
    path.write_bytes(b'ID3' + bytes(1024 * 1024))
    return path


@pytest.fixture
def trackers():
    return []


@pytest.fixture
def tracker_factory(trackers):
    def factory():
        tracker = CountingTracker()
        trackers.append(tracker)
        return tracker
    return factory


@pytest.fixture
def make_pipeline(tracker_factory):
    def make(normalizer=None, transcriber=None, refiner=None):
        return TranscriptionPipeline(
            normalizer=normalizer or FakeNormalizer(),
            transcriber=transcriber or FakeTranscriber(),
            refiner=refiner or FakeRefiner(),
            tracker_factory=tracker_factory
        )
    return make


@pytest.fixture
def make_request(audio_file):
    def make(**overrides):
        values = dict(source_path=audio_file, cancel_signal=CancelSignal())
        values.update(overrides)
        return PipelineRequest(**values)
    return make


async def collect(pipeline, request):
    return [event async for event in pipeline.run(request)]


def write_script(path: Path, body: str) -> Path:
    path.write_text('#!/bin/sh\n' + body + '\n')
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def copying_encoder(tmp_path) -> Path:
    """Writes a small file to its last argument, like a successful encode"""
    return write_script(tmp_path / 'encoder-ok', 'for last; do :; done\nprintf "OggS-encoded" > "$last"')


@pytest.fixture
def failing_encoder(tmp_path) -> Path:
    return write_script(tmp_path / 'encoder-fail', 'echo "Invalid data found when processing input" >&2\nexit 1')


@pytest.fixture
def silent_encoder(tmp_path) -> Path:
    """Exits cleanly without producing output"""
    return write_script(tmp_path / 'encoder-silent', 'exit 0')


@pytest.fixture
def hanging_encoder(tmp_path) -> Path:
    return write_script(tmp_path / 'encoder-hang', 'exec sleep 30')


def fake_openai_factory(response=None, error=None):
    client = SimpleNamespace(calls=[], closed=False)

    async def create(**kwargs):
        client.calls.append(kwargs)
        if error is not None:
            raise error
        return response

    async def aenter():
        return client

    async def aexit(*exc):
        client.closed = True

    client.audio = SimpleNamespace(transcriptions=SimpleNamespace(create=create))

    class _Context:
        async def __aenter__(self):
            return await aenter()

        async def __aexit__(self, *exc):
            await aexit(*exc)
            return False

    def factory(**kwargs):
        client.init_kwargs = kwargs
        return _Context()

    return client, factory


def fake_anthropic_factory(reply_text=None, error=None, stop_reason='end_turn', reply=None):
    """``reply`` maps the prompt text to the reply text when given"""
    client = SimpleNamespace(calls=[], closed=False)

    async def create(**kwargs):
        client.calls.append(kwargs)
        if error is not None:
            raise error
        text = reply(kwargs['messages'][0]['content']) if reply is not None else reply_text
        return SimpleNamespace(content=[SimpleNamespace(type='text', text=text)], stop_reason=stop_reason)

    client.messages = SimpleNamespace(create=create)

    class _Context:
        async def __aenter__(self):
            return client

        async def __aexit__(self, *exc):
            client.closed = True
            return False

    def factory(**kwargs):
        client.init_kwargs = kwargs
        return _Context()

    return client, factory
