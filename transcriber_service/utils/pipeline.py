"""
Main audio transcription pipeline with streamed progress

One run walks Uploading -> (Optimizing) -> Transcribing -> (Improving) and
ends with exactly one Complete or Error event. Every resource the run creates
is registered with its own TempResourceTracker and released when the run ends,
including when the client goes away mid-stage.
"""
import asyncio
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional, Type

from transcriber_service.core.config import Config
from transcriber_service.core.exceptions import (
    AudioTranscriptionError,
    ConfigurationError,
    InvalidInputError,
    OptimizationError,
    PipelineCancelled,
    RefinementError,
    TranscriptionError,
)
from transcriber_service.core.logging import get_logger
from transcriber_service.core.models import PipelineRequest, PipelineResult, Stage, StageEvent
from transcriber_service.services.normalizer import AudioNormalizer
from transcriber_service.services.refiner import TranscriptRefiner
from transcriber_service.services.transcriber import TranscriptionClient
from transcriber_service.utils.tracker import TempResourceTracker

logger = get_logger(__name__)

UPLOAD_PROGRESS = 20
COMPLETE_PROGRESS = 100


class StageOutcome(Enum):
    """What a stage failure means for the run"""

    FATAL = 'fatal'
    RECOVERABLE = 'recoverable'


@dataclass(frozen=True)
class StagePolicy:
    stage: Stage
    progress: int
    outcome: StageOutcome
    failure: Type[AudioTranscriptionError]
    timing_key: str


OPTIMIZE = StagePolicy(Stage.OPTIMIZING, 40, StageOutcome.FATAL, OptimizationError, 'optimization')
TRANSCRIBE = StagePolicy(Stage.TRANSCRIBING, 60, StageOutcome.FATAL, TranscriptionError, 'transcription')
# transcription takes the optimization checkpoint when that stage is skipped
TRANSCRIBE_DIRECT = StagePolicy(Stage.TRANSCRIBING, 40, StageOutcome.FATAL, TranscriptionError, 'transcription')
IMPROVE = StagePolicy(Stage.IMPROVING, 80, StageOutcome.RECOVERABLE, RefinementError, 'refinement')


class _RunState:
    """Progress bookkeeping for one run"""

    def __init__(self):
        self.progress = 0
        self.terminal_emitted = False
        self.timings: Dict[str, float] = {}
        self.started = time.monotonic()

    def emit(self, stage: Stage, progress: int, **payload) -> StageEvent:
        if self.terminal_emitted:
            raise RuntimeError("terminal event already emitted for this run")
        progress = max(progress, self.progress)
        self.progress = progress
        if stage.is_terminal:
            self.terminal_emitted = True
        return StageEvent(stage=stage, progress=progress, **payload)

    def complete(self, result: PipelineResult) -> StageEvent:
        return self.emit(Stage.COMPLETE, COMPLETE_PROGRESS, result=result)

    def fail(self, error: AudioTranscriptionError) -> StageEvent:
        # keep the last checkpoint so progress never goes backwards
        return self.emit(Stage.ERROR, self.progress, error=str(error), error_kind=error.kind)


class TranscriptionPipeline:
    """Orchestrates one request end-to-end"""

    def __init__(
        self,
        normalizer: Optional[AudioNormalizer] = None,
        transcriber: Optional[TranscriptionClient] = None,
        refiner: Optional[TranscriptRefiner] = None,
        tracker_factory: Callable[[], TempResourceTracker] = TempResourceTracker
    ):
        """
        Args:
            normalizer: Audio normalizer adapter
            transcriber: Speech-to-text adapter
            refiner: Transcript refinement adapter
            tracker_factory: Builds the per-run resource tracker
        """
        self.normalizer = normalizer or AudioNormalizer()
        self.transcriber = transcriber or TranscriptionClient()
        self.refiner = refiner or TranscriptRefiner()
        self.tracker_factory = tracker_factory

    @classmethod
    def from_config(cls) -> 'TranscriptionPipeline':
        """Build the production pipeline, failing fast on bad configuration"""
        is_valid, errors = Config.validate()
        if not is_valid:
            raise ConfigurationError(
                "Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            )

        pipeline = cls()
        logger.info(
            "pipeline_initialized",
            encoder=pipeline.normalizer.encoder,
            transcription_model=pipeline.transcriber.model,
            refinement_available=pipeline.refiner.is_available()
        )
        return pipeline

    async def run(self, request: PipelineRequest) -> AsyncIterator[StageEvent]:
        """
        Execute one request

        Yields StageEvents in stage order with non-decreasing progress; the
        last one is Complete or Error. Nothing is yielded after the cancel
        signal fires. Consume to exhaustion (or aclose) so cleanup runs.
        """
        state = _RunState()
        signal = request.cancel_signal
        log = logger.bind(request_id=request.request_id)
        log.info(
            "pipeline_started",
            source=str(request.source_path),
            optimize_audio=request.optimize_audio,
            improve_transcription=request.improve_transcription
        )

        outcome = 'complete'
        async with self.tracker_factory() as tracker:
            try:
                # the run owns the upload even when it turns out to be unusable
                tracker.register(request.source_path)
                self._check_source(request)

                signal.raise_if_cancelled()
                yield state.emit(Stage.UPLOADING, UPLOAD_PROGRESS)

                audio_path = request.source_path
                if request.optimize_audio:
                    yield self._enter(state, OPTIMIZE, signal)
                    audio_path = await self._execute(
                        state, OPTIMIZE, log,
                        self.normalizer.normalize(audio_path, signal, tracker=tracker)
                    )
                    tracker.register(audio_path)

                transcribe = TRANSCRIBE if request.optimize_audio else TRANSCRIBE_DIRECT
                yield self._enter(state, transcribe, signal)
                original = await self._execute(
                    state, transcribe, log,
                    self.transcriber.transcribe(audio_path, signal, language=request.language)
                )

                improved = None
                if request.improve_transcription:
                    yield self._enter(state, IMPROVE, signal)
                    improved = await self._execute(
                        state, IMPROVE, log,
                        self.refiner.improve(original, signal, language=request.language)
                    )

                signal.raise_if_cancelled()
                terminal = state.complete(PipelineResult(original=original, improved=improved))

            except PipelineCancelled as e:
                outcome = 'cancelled'
                log.info("pipeline_cancelled", reason=str(e), progress=state.progress)
                return
            except (GeneratorExit, asyncio.CancelledError):
                # consumer stopped listening or the task was torn down
                outcome = 'abandoned'
                raise
            except AudioTranscriptionError as e:
                outcome = e.kind.value
                log.warning("pipeline_failed", kind=e.kind.value, error=str(e), progress=state.progress)
                terminal = state.fail(e)
            finally:
                log.info(
                    "pipeline_finished",
                    outcome=outcome,
                    timings={key: round(value, 2) for key, value in state.timings.items()},
                    total=round(time.monotonic() - state.started, 2)
                )

            yield terminal

    @staticmethod
    def _check_source(request: PipelineRequest):
        path = request.source_path
        if not path.is_file():
            raise InvalidInputError("No audio file uploaded")
        if not os.access(path, os.R_OK):
            raise InvalidInputError("Uploaded audio file is not readable")

    @staticmethod
    def _enter(state: _RunState, policy: StagePolicy, signal) -> StageEvent:
        signal.raise_if_cancelled()
        return state.emit(policy.stage, policy.progress)

    @staticmethod
    async def _execute(state: _RunState, policy: StagePolicy, log, operation: Awaitable):
        """
        Await one stage's adapter call and apply the stage's failure policy

        Fatal stages re-raise (unexpected exceptions are wrapped in the stage's
        failure type); recoverable stages log and return None.
        """
        started = time.monotonic()
        try:
            return await operation
        except PipelineCancelled:
            raise
        except Exception as e:
            if policy.outcome is StageOutcome.RECOVERABLE:
                log.warning(
                    "stage_failed_recovered",
                    stage=policy.stage.value,
                    kind=getattr(e, 'kind', policy.failure.kind).value,
                    error=str(e)
                )
                return None
            if isinstance(e, AudioTranscriptionError):
                raise
            log.exception("stage_crashed", stage=policy.stage.value)
            raise policy.failure(f"{policy.stage.value} failed unexpectedly: {e}") from e
        finally:
            state.timings[policy.timing_key] = time.monotonic() - started
