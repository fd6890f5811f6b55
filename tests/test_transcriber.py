"""Tests for the speech-to-text adapter and its error classification."""

import asyncio
from pathlib import Path

import httpx
import openai
import pytest

from conftest import fake_openai_factory
from transcriber_service.core.cancellation import CancelSignal
from transcriber_service.core.exceptions import (
    AuthenticationFailedError,
    ErrorKind,
    PayloadTooLargeError,
    PipelineCancelled,
    RateLimitedError,
    TranscriptionError,
)
from transcriber_service.services.transcriber import TranscriptionClient, classify_error, content_type_for

API_URL = 'https://api.openai.com/v1/audio/transcriptions'


def status_error(cls, status, message='error'):
    response = httpx.Response(status, request=httpx.Request('POST', API_URL))
    return cls(message, response=response, body=None)


class TestClassifyError:
    def test_rate_limit(self):
        error = classify_error(status_error(openai.RateLimitError, 429, 'Rate limit reached for whisper-1'))
        assert isinstance(error, RateLimitedError)
        assert error.kind is ErrorKind.RATE_LIMITED
        assert str(error) == 'rate limit exceeded'

    def test_rate_limit_detected_from_message(self):
        error = classify_error(status_error(openai.BadRequestError, 400, 'You exceeded the rate limit'))
        assert isinstance(error, RateLimitedError)

    def test_authentication(self):
        error = classify_error(status_error(openai.AuthenticationError, 401, 'Incorrect API key provided'))
        assert isinstance(error, AuthenticationFailedError)
        assert error.kind is ErrorKind.AUTH_FAILED

    def test_payload_too_large(self):
        error = classify_error(status_error(openai.APIStatusError, 413, 'Maximum content size exceeded'))
        assert isinstance(error, PayloadTooLargeError)

    def test_network_failure(self):
        error = classify_error(openai.APIConnectionError(request=httpx.Request('POST', API_URL)))
        assert type(error) is TranscriptionError
        assert 'Could not reach' in str(error)

    def test_other_api_error(self):
        error = classify_error(status_error(openai.InternalServerError, 500, 'server had an error'))
        assert type(error) is TranscriptionError
        assert error.kind is ErrorKind.TRANSCRIPTION_FAILED


class TestContentType:
    @pytest.mark.parametrize('name, expected', [
        ('a_optimized.ogg', 'audio/ogg'),
        ('voice.MP3', 'audio/mpeg'),
        ('memo.m4a', 'audio/x-m4a'),
        ('upload-xyz', 'audio/mpeg'),
    ])
    def test_mapping(self, name, expected):
        assert content_type_for(Path(name)) == expected


class TestTranscribe:
    @pytest.mark.asyncio
    async def test_returns_stripped_text(self, audio_file):
        client, factory = fake_openai_factory(response='  سلام دنیا \n')
        transcriber = TranscriptionClient(api_key='sk-test', model='whisper-1', language='fa',
                                          client_factory=factory)

        text = await transcriber.transcribe(audio_file, CancelSignal())

        assert text == 'سلام دنیا'
        call = client.calls[0]
        assert call['model'] == 'whisper-1'
        assert call['language'] == 'fa'
        assert call['response_format'] == 'text'
        name, payload, content_type = call['file']
        assert name == audio_file.name
        assert len(payload) == audio_file.stat().st_size
        assert content_type == 'audio/mpeg'
        assert client.init_kwargs['api_key'] == 'sk-test'
        assert client.closed

    @pytest.mark.asyncio
    async def test_language_override(self, audio_file):
        client, factory = fake_openai_factory(response='hello')
        transcriber = TranscriptionClient(api_key='sk-test', language='fa', client_factory=factory)

        await transcriber.transcribe(audio_file, CancelSignal(), language='en')

        assert client.calls[0]['language'] == 'en'

    @pytest.mark.asyncio
    async def test_rate_limit_is_classified(self, audio_file):
        _, factory = fake_openai_factory(error=status_error(openai.RateLimitError, 429, 'Rate limit reached'))
        transcriber = TranscriptionClient(api_key='sk-test', client_factory=factory)

        with pytest.raises(RateLimitedError):
            await transcriber.transcribe(audio_file, CancelSignal())

    @pytest.mark.asyncio
    async def test_empty_transcript_fails(self, audio_file):
        _, factory = fake_openai_factory(response='   ')
        transcriber = TranscriptionClient(api_key='sk-test', client_factory=factory)

        with pytest.raises(TranscriptionError, match='empty transcript'):
            await transcriber.transcribe(audio_file, CancelSignal())

    @pytest.mark.asyncio
    async def test_unreadable_file(self, tmp_path):
        _, factory = fake_openai_factory(response='text')
        transcriber = TranscriptionClient(api_key='sk-test', client_factory=factory)

        with pytest.raises(TranscriptionError, match='Cannot read audio'):
            await transcriber.transcribe(tmp_path / 'missing.ogg', CancelSignal())

    @pytest.mark.asyncio
    async def test_cancel_aborts_inflight_call(self, audio_file):
        started = asyncio.Event()
        aborted = asyncio.Event()
        client, factory = fake_openai_factory(response='never')

        async def slow_create(**kwargs):
            started.set()
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                aborted.set()
                raise

        client.audio.transcriptions.create = slow_create
        transcriber = TranscriptionClient(api_key='sk-test', client_factory=factory)
        signal = CancelSignal()

        task = asyncio.create_task(transcriber.transcribe(audio_file, signal))
        await asyncio.wait_for(started.wait(), timeout=5)
        signal.cancel('client disconnected')

        with pytest.raises(PipelineCancelled):
            await asyncio.wait_for(task, timeout=5)
        assert aborted.is_set()
        assert client.closed
