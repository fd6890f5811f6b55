"""
Adapters - Audio normalization, Transcription, Refinement
"""

from .normalizer import AudioNormalizer, EncoderGate
from .transcriber import TranscriptionClient
from .refiner import TranscriptRefiner

__all__ = ['AudioNormalizer', 'EncoderGate', 'TranscriptionClient', 'TranscriptRefiner']
