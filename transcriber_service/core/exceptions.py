"""
Custom exceptions for the Audio Transcription Service
"""
from enum import Enum


class ErrorKind(str, Enum):
    """Classified failure kinds reported on the progress stream"""

    INVALID_INPUT = 'InvalidInput'
    OPTIMIZATION_FAILED = 'OptimizationFailed'
    TRANSCRIPTION_FAILED = 'TranscriptionFailed'
    RATE_LIMITED = 'RateLimited'
    AUTH_FAILED = 'AuthFailed'
    PAYLOAD_TOO_LARGE = 'PayloadTooLarge'
    REFINEMENT_FAILED = 'RefinementFailed'
    CANCELLED = 'Cancelled'
    CONFIGURATION = 'Configuration'


class AudioTranscriptionError(Exception):
    """Base exception for audio transcription errors"""
    kind = ErrorKind.TRANSCRIPTION_FAILED


class InvalidInputError(AudioTranscriptionError):
    """Exception raised when the uploaded audio is missing or unreadable"""
    kind = ErrorKind.INVALID_INPUT


class OptimizationError(AudioTranscriptionError):
    """Exception raised when the audio encoder fails"""
    kind = ErrorKind.OPTIMIZATION_FAILED


class TranscriptionError(AudioTranscriptionError):
    """Exception raised during transcription process"""
    kind = ErrorKind.TRANSCRIPTION_FAILED


class RateLimitedError(TranscriptionError):
    """Exception raised when the speech-to-text backend throttles us"""
    kind = ErrorKind.RATE_LIMITED


class AuthenticationFailedError(TranscriptionError):
    """Exception raised when the speech-to-text backend rejects our credentials"""
    kind = ErrorKind.AUTH_FAILED


class PayloadTooLargeError(TranscriptionError):
    """Exception raised when the backend refuses the audio payload size"""
    kind = ErrorKind.PAYLOAD_TOO_LARGE


class RefinementError(AudioTranscriptionError):
    """Exception raised during AI transcript refinement"""
    kind = ErrorKind.REFINEMENT_FAILED


class PipelineCancelled(AudioTranscriptionError):
    """Raised inside a run once its cancel signal has fired"""
    kind = ErrorKind.CANCELLED


class ConfigurationError(AudioTranscriptionError):
    """Exception raised for configuration errors"""
    kind = ErrorKind.CONFIGURATION
