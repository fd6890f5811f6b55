"""
Data model shared by the pipeline, its adapters and the HTTP layer
"""
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from transcriber_service.core.cancellation import CancelSignal
from transcriber_service.core.exceptions import ErrorKind


class Stage(str, Enum):
    """Status values pushed to the client"""

    UPLOADING = 'Uploading'
    OPTIMIZING = 'Optimizing'
    TRANSCRIBING = 'Transcribing'
    IMPROVING = 'Improving'
    COMPLETE = 'Complete'
    ERROR = 'Error'

    @property
    def is_terminal(self) -> bool:
        return self in (Stage.COMPLETE, Stage.ERROR)


@dataclass
class PipelineRequest:
    """Input to one pipeline run"""

    source_path: Path
    optimize_audio: bool = False
    improve_transcription: bool = False
    cancel_signal: CancelSignal = field(default_factory=CancelSignal)
    language: Optional[str] = None
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self):
        self.source_path = Path(self.source_path)


@dataclass(frozen=True)
class PipelineResult:
    """Terminal success payload"""

    original: str
    improved: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {'original': self.original, 'improved': self.improved}


@dataclass(frozen=True)
class StageEvent:
    """One progress notification"""

    stage: Stage
    progress: int
    result: Optional[PipelineResult] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    def __post_init__(self):
        if not 0 <= self.progress <= 100:
            raise ValueError(f"progress must be within 0-100, got {self.progress}")

    @property
    def is_terminal(self) -> bool:
        return self.stage.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        """Wire schema: {status, progress, result?, error?, code?}"""
        data: Dict[str, Any] = {'status': self.stage.value, 'progress': self.progress}
        if self.result is not None:
            data['result'] = self.result.to_dict()
        if self.error is not None:
            data['error'] = self.error
        if self.error_kind is not None:
            data['code'] = self.error_kind.value
        return data
