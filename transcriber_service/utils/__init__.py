"""
Utilities - Resource tracking, pipeline orchestration
"""

from .tracker import TempResourceTracker
from .pipeline import TranscriptionPipeline

__all__ = ['TempResourceTracker', 'TranscriptionPipeline']
