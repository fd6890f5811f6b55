"""
Core - Configuration, errors, logging, data model
"""

from .config import Config
from .cancellation import CancelSignal
from .models import PipelineRequest, PipelineResult, Stage, StageEvent

__all__ = ['Config', 'CancelSignal', 'PipelineRequest', 'PipelineResult', 'Stage', 'StageEvent']
