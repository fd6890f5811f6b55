"""
Speech transcription through the OpenAI audio API
"""
import asyncio
from pathlib import Path
from typing import Callable, Optional

import openai
from openai import AsyncOpenAI

from transcriber_service.core.cancellation import CancelSignal
from transcriber_service.core.config import Config
from transcriber_service.core.exceptions import (
    AuthenticationFailedError,
    PayloadTooLargeError,
    RateLimitedError,
    TranscriptionError,
)
from transcriber_service.core.logging import get_logger

logger = get_logger(__name__)

CONTENT_TYPES = {
    '.ogg': 'audio/ogg',
    '.oga': 'audio/ogg',
    '.opus': 'audio/ogg',
    '.mp3': 'audio/mpeg',
    '.mpga': 'audio/mpeg',
    '.wav': 'audio/wav',
    '.m4a': 'audio/x-m4a',
    '.mp4': 'audio/mp4',
    '.webm': 'audio/webm',
    '.flac': 'audio/flac',
}


def content_type_for(path: Path) -> str:
    return CONTENT_TYPES.get(path.suffix.lower(), 'audio/mpeg')


def classify_error(error: Exception) -> TranscriptionError:
    """
    Map an SDK failure onto our taxonomy

    Args:
        error: Exception raised by the OpenAI client

    Returns:
        TranscriptionError or one of its subclasses
    """
    message = str(error)

    if isinstance(error, openai.RateLimitError) or 'rate limit' in message.lower():
        return RateLimitedError("rate limit exceeded")

    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return AuthenticationFailedError(f"Transcription backend rejected credentials: {message}")

    if isinstance(error, openai.APIStatusError) and error.status_code == 413:
        return PayloadTooLargeError("Audio file is too large for the transcription backend")

    if isinstance(error, (openai.APIConnectionError, openai.APITimeoutError)):
        return TranscriptionError(f"Could not reach transcription backend: {message}")

    return TranscriptionError(f"Transcription failed: {message}")


class TranscriptionClient:
    """Speech-to-text against a remote Whisper deployment"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        language: Optional[str] = None,
        timeout: Optional[float] = None,
        client_factory: Callable[..., AsyncOpenAI] = AsyncOpenAI
    ):
        """
        Initialize transcription client

        Args:
            api_key: OpenAI API key (uses config if not provided)
            model: Transcription model name
            language: Default language hint (ISO-639-1)
            timeout: Per-request timeout in seconds
            client_factory: Builds the SDK client; one client is opened per call
                because each request runs on its own event loop
        """
        self.api_key = api_key or Config.OPENAI_API_KEY
        self.model = model or Config.TRANSCRIPTION_MODEL
        self.language = language or Config.LANGUAGE
        self.timeout = timeout or Config.BACKEND_TIMEOUT_SECONDS
        self.client_factory = client_factory

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def transcribe(
        self,
        audio_path: Path,
        cancel_signal: CancelSignal,
        language: Optional[str] = None
    ) -> str:
        """
        Transcribe an audio file

        Args:
            audio_path: File to upload
            cancel_signal: Aborts the in-flight HTTP call when fired
            language: Language hint (uses default if not provided)

        Returns:
            Plain transcript text

        Raises:
            TranscriptionError: Or a subclass, classified by cause
            PipelineCancelled: The signal fired during the call
        """
        audio_path = Path(audio_path)
        language = language or self.language
        return await cancel_signal.guard(self._transcribe(audio_path, language))

    async def _transcribe(self, audio_path: Path, language: str) -> str:
        try:
            payload = await asyncio.to_thread(audio_path.read_bytes)
        except OSError as e:
            raise TranscriptionError(f"Cannot read audio for transcription: {e}")

        logger.info(
            "transcription_request",
            model=self.model,
            language=language,
            size_bytes=len(payload),
            file=audio_path.name
        )

        try:
            async with self.client_factory(api_key=self.api_key, timeout=self.timeout) as client:
                response = await client.audio.transcriptions.create(
                    model=self.model,
                    file=(audio_path.name, payload, content_type_for(audio_path)),
                    language=language,
                    response_format='text',
                )
        except openai.OpenAIError as e:
            error = classify_error(e)
            logger.warning("transcription_failed", kind=error.kind.value, error=str(e))
            raise error from e

        text = response if isinstance(response, str) else getattr(response, 'text', '')
        text = (text or '').strip()
        if not text:
            raise TranscriptionError("Transcription backend returned an empty transcript")

        logger.info("transcription_received", length=len(text))
        return text
