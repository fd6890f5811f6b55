"""
AI transcript refinement - fixes recognition errors without changing meaning
"""
import re
from typing import Callable, List, Optional

import anthropic
from anthropic import AsyncAnthropic

from transcriber_service.core.cancellation import CancelSignal
from transcriber_service.core.config import Config
from transcriber_service.core.exceptions import RefinementError
from transcriber_service.core.logging import get_logger

logger = get_logger(__name__)

MAX_OUTPUT_TOKENS = 4096

# preferred chunk boundaries, strongest first
_BOUNDARIES = (
    re.compile(r'\n+'),
    re.compile(r'(?<=[.!?؟۔])\s+'),
    re.compile(r'\s+'),
)


def split_transcript(transcript: str, max_chars: int) -> List[str]:
    """
    Split a transcript into pieces of at most ``max_chars``

    Cuts fall on a line break, then a sentence end, then any whitespace; a
    run of text with no whitespace is cut hard. Joining the pieces with
    single spaces reproduces the transcript up to whitespace.
    """
    chunks = []
    rest = transcript.strip()
    while len(rest) > max_chars:
        window = rest[:max_chars + 1]
        cut = None
        for boundary in _BOUNDARIES:
            matches = [m for m in boundary.finditer(window) if m.start() > 0]
            if matches:
                cut = matches[-1]
                break
        if cut is None:
            chunks.append(rest[:max_chars])
            rest = rest[max_chars:].lstrip()
        else:
            chunks.append(rest[:cut.start()].rstrip())
            rest = rest[cut.end():].lstrip()
    if rest:
        chunks.append(rest)
    return chunks


class TranscriptRefiner:
    """Rewrite raw transcripts into clean, punctuated text"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        chunk_chars: Optional[int] = None,
        timeout: Optional[float] = None,
        client_factory: Callable[..., AsyncAnthropic] = AsyncAnthropic
    ):
        """
        Args:
            api_key: Anthropic API key (uses config if not provided)
            model: Refinement model name
            chunk_chars: Longest piece of transcript sent in one request;
                longer transcripts are refined piece by piece
            timeout: Per-request timeout in seconds
            client_factory: Builds the SDK client, opened once per improve call
        """
        self.api_key = api_key or Config.ANTHROPIC_API_KEY
        self.model = model or Config.REFINEMENT_MODEL
        self.chunk_chars = chunk_chars or Config.REFINEMENT_CHUNK_CHARS
        self.timeout = timeout or Config.BACKEND_TIMEOUT_SECONDS
        self.client_factory = client_factory

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def improve(
        self,
        transcript: str,
        cancel_signal: CancelSignal,
        language: Optional[str] = None
    ) -> str:
        if not self.is_available():
            raise RefinementError("Refinement backend is not configured")

        return await cancel_signal.guard(self._improve(transcript, language or Config.LANGUAGE))

    async def _improve(self, transcript: str, language: str) -> str:
        chunks = split_transcript(transcript, self.chunk_chars)
        if not chunks:
            raise RefinementError("Nothing to refine: transcript is empty")
        logger.info("refinement_request", model=self.model, length=len(transcript), chunks=len(chunks))

        try:
            async with self.client_factory(api_key=self.api_key, timeout=self.timeout) as client:
                refined = [await self._refine_chunk(client, chunk, language) for chunk in chunks]
        except anthropic.AnthropicError as e:
            raise RefinementError(f"Failed to improve transcript: {str(e)}") from e

        return ' '.join(refined)

    async def _refine_chunk(self, client, chunk: str, language: str) -> str:
        message = await client.messages.create(
            model=self.model,
            max_tokens=MAX_OUTPUT_TOKENS,
            temperature=0,
            messages=[{"role": "user", "content": self._create_prompt(chunk, language)}]
        )

        if getattr(message, 'stop_reason', None) == 'max_tokens':
            raise RefinementError("Refinement reply was cut off at the output token limit")

        text = ''.join(
            block.text for block in message.content if getattr(block, 'type', None) == 'text'
        ).strip()
        if not text:
            raise RefinementError("Refinement backend returned an empty reply")

        return text

    @staticmethod
    def _create_prompt(transcript: str, language: str) -> str:
        if language == 'fa':
            return f"""متن زیر خروجی خام یک سیستم تبدیل گفتار به متن فارسی است.

متن:
{transcript}

دستورالعمل:
- غلط‌های املایی و کلماتی که اشتباه شنیده شده‌اند را اصلاح کن
- نقطه‌گذاری و نیم‌فاصله‌ها را درست کن
- معنی، لحن و زبان متن را تغییر نده
- چیزی اضافه یا حذف نکن

فقط متن اصلاح‌شده را برگردان، بدون هیچ توضیح اضافه."""

        return f"""The text below is raw output from a speech-to-text system (language: {language}).

TRANSCRIPT:
{transcript}

INSTRUCTIONS:
- Fix misheard words and spelling mistakes
- Fix punctuation and spacing
- Keep the original language, meaning and tone
- Do not add or remove content

Return only the corrected transcript, with no commentary."""
