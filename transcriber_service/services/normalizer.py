"""
Audio normalization - re-encodes uploads into small speech-optimized files
"""
import asyncio
import threading
import uuid
from pathlib import Path
from typing import List, Optional

from pydub.utils import get_encoder_name

from transcriber_service.core.cancellation import CancelSignal
from transcriber_service.core.config import Config
from transcriber_service.core.exceptions import OptimizationError, PipelineCancelled
from transcriber_service.core.logging import get_logger

logger = get_logger(__name__)

STDERR_TAIL_CHARS = 1000


class EncoderGate:
    """
    Process-wide cap on concurrently running encoder processes

    Runs live on separate event loops (one per request thread), so the gate is
    a thread semaphore polled from async code rather than an asyncio one.
    """

    def __init__(self, limit: int, poll_interval: float = 0.05):
        self.limit = limit
        self.poll_interval = poll_interval
        self._semaphore = threading.BoundedSemaphore(limit)

    async def acquire(self, cancel_signal: CancelSignal):
        while not self._semaphore.acquire(blocking=False):
            cancel_signal.raise_if_cancelled()
            await asyncio.sleep(self.poll_interval)

    def release(self):
        self._semaphore.release()


_default_gate: Optional[EncoderGate] = None
_default_gate_lock = threading.Lock()


def default_gate() -> EncoderGate:
    global _default_gate
    with _default_gate_lock:
        if _default_gate is None:
            _default_gate = EncoderGate(Config.MAX_PARALLEL_ENCODERS)
        return _default_gate


class AudioNormalizer:
    """Wraps the external encoder binary (ffmpeg)"""

    def __init__(
        self,
        encoder: Optional[str] = None,
        codec: Optional[str] = None,
        bitrate: Optional[str] = None,
        channels: Optional[int] = None,
        output_format: Optional[str] = None,
        output_dir: Optional[Path] = None,
        kill_timeout: Optional[float] = None,
        gate: Optional[EncoderGate] = None
    ):
        """
        Initialize normalizer

        Args:
            encoder: Encoder executable (resolved through pydub when not given)
            codec: Audio codec passed to the encoder
            bitrate: Target bitrate, e.g. '12k'
            channels: Output channel count
            output_format: Output container / file extension
            output_dir: Where outputs are written (defaults to the input's directory)
            kill_timeout: Seconds to wait after terminate before killing
            gate: Admission gate shared by all runs
        """
        self.encoder = encoder or Config.ENCODER_BINARY or get_encoder_name()
        self.codec = codec or Config.ENCODER_CODEC
        self.bitrate = bitrate or Config.ENCODER_BITRATE
        self.channels = channels or Config.ENCODER_CHANNELS
        self.output_format = output_format or Config.ENCODER_FORMAT
        self.output_dir = Path(output_dir) if output_dir else None
        self.kill_timeout = kill_timeout if kill_timeout is not None else Config.ENCODER_KILL_TIMEOUT
        self.gate = gate or default_gate()

    def output_path_for(self, input_path: Path) -> Path:
        directory = self.output_dir or input_path.parent
        return directory / f"{input_path.stem}-{uuid.uuid4().hex[:8]}_optimized.{self.output_format}"

    def build_command(self, input_path: Path, output_path: Path) -> List[str]:
        return [
            self.encoder,
            '-y',
            '-hide_banner',
            '-loglevel', 'error',
            '-i', str(input_path),
            '-vn',
            '-ac', str(self.channels),
            '-c:a', self.codec,
            '-b:a', self.bitrate,
            '-application', 'voip',
            '-map_metadata', '-1',
            str(output_path),
        ]

    async def normalize(self, input_path: Path, cancel_signal: CancelSignal, tracker=None) -> Path:
        """
        Re-encode ``input_path`` to mono low-bitrate speech audio

        Args:
            input_path: Source audio file
            cancel_signal: Terminates the encoder when fired
            tracker: Optional TempResourceTracker; output file and process are
                registered as soon as they exist

        Returns:
            Path of the encoded file

        Raises:
            OptimizationError: Spawn failure, non-zero exit or missing output
            PipelineCancelled: The signal fired while encoding
        """
        input_path = Path(input_path)
        output_path = self.output_path_for(input_path)
        if tracker is not None:
            tracker.register(output_path)

        await self.gate.acquire(cancel_signal)
        try:
            return await self._encode(input_path, output_path, cancel_signal, tracker)
        finally:
            self.gate.release()

    async def _encode(self, input_path: Path, output_path: Path, cancel_signal: CancelSignal, tracker) -> Path:
        command = self.build_command(input_path, output_path)
        log = logger.bind(input=str(input_path), output=str(output_path))
        log.info("encoder_starting", encoder=self.encoder, codec=self.codec, bitrate=self.bitrate)

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise OptimizationError(f"Failed to start audio encoder '{self.encoder}': {e}")
        except OSError as e:
            raise OptimizationError(f"Failed to start audio encoder: {e}")

        if tracker is not None:
            tracker.register(process)

        try:
            _, stderr = await cancel_signal.guard(process.communicate())
        except (PipelineCancelled, asyncio.CancelledError):
            log.info("encoder_cancelled", pid=process.pid)
            await self._terminate(process)
            raise

        if process.returncode != 0:
            detail = stderr.decode('utf-8', errors='ignore').strip()[-STDERR_TAIL_CHARS:]
            log.warning("encoder_failed", returncode=process.returncode, stderr=detail)
            raise OptimizationError(
                f"Audio encoder exited with code {process.returncode}: {detail or 'no diagnostic output'}"
            )

        if not output_path.is_file() or output_path.stat().st_size == 0:
            raise OptimizationError("Audio encoder produced no output")

        log.info("encoder_finished", size_bytes=output_path.stat().st_size)
        return output_path

    async def _terminate(self, process: asyncio.subprocess.Process):
        if process.returncode is not None:
            return
        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
        except ProcessLookupError:
            pass
        except asyncio.TimeoutError:
            logger.warning("encoder_kill", pid=process.pid)
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()
