"""
Streaming Audio Transcription Service
"""

__version__ = "1.0.0"
__author__ = "Audio Transcription Team"

from .core import Config
from .utils import TranscriptionPipeline

__all__ = ['TranscriptionPipeline', 'Config']
