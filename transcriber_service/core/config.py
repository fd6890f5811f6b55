"""
Configuration module for the Audio Transcription Service
Values come from the environment (optionally a .env file) and are read-only after startup
"""
import os
import tempfile
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_list(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(',') if item.strip()]


class Config:
    """Application configuration"""

    # Base directory
    BASE_DIR = Path(__file__).parent.parent.parent

    # Upload settings
    MAX_AUDIO_SIZE_MB = int(os.getenv('MAX_AUDIO_SIZE_MB', 25))
    ALLOWED_MIME_TYPES = set(_env_list(
        'ALLOWED_MIME_TYPES',
        'audio/mpeg,audio/wav,audio/x-m4a,audio/ogg,application/ogg'
    ))
    UPLOAD_DIR = Path(os.getenv('UPLOAD_DIR', Path(tempfile.gettempdir()) / 'transcriber-uploads'))

    # Audio encoder settings (speech-optimized Opus, mono)
    ENCODER_BINARY = os.getenv('ENCODER_BINARY', '')
    ENCODER_CODEC = os.getenv('ENCODER_CODEC', 'libopus')
    ENCODER_BITRATE = os.getenv('ENCODER_BITRATE', '12k')
    ENCODER_CHANNELS = int(os.getenv('ENCODER_CHANNELS', 1))
    ENCODER_FORMAT = os.getenv('ENCODER_FORMAT', 'ogg')
    ENCODER_KILL_TIMEOUT = float(os.getenv('ENCODER_KILL_TIMEOUT', 5.0))
    MAX_PARALLEL_ENCODERS = int(os.getenv('MAX_PARALLEL_ENCODERS', 4))

    # Model settings
    TRANSCRIPTION_MODEL = os.getenv('TRANSCRIPTION_MODEL', 'whisper-1')
    REFINEMENT_MODEL = os.getenv('REFINEMENT_MODEL', 'claude-sonnet-4-20250514')
    LANGUAGE = os.getenv('LANGUAGE', 'fa')
    # longer transcripts are refined in pieces of at most this many characters
    REFINEMENT_CHUNK_CHARS = int(os.getenv('REFINEMENT_CHUNK_CHARS', 8000))

    # API Keys
    OPENAI_API_KEY = os.getenv('OPENAI_API_KEY', '')
    ANTHROPIC_API_KEY = os.getenv('ANTHROPIC_API_KEY', '')

    # Request lifetime
    REQUEST_TIMEOUT_SECONDS = float(os.getenv('REQUEST_TIMEOUT_SECONDS', 600))
    BACKEND_TIMEOUT_SECONDS = float(os.getenv('BACKEND_TIMEOUT_SECONDS', 300))
    HEARTBEAT_SECONDS = float(os.getenv('HEARTBEAT_SECONDS', 15))

    # Server settings
    CORS_ORIGINS = _env_list(
        'CORS_ORIGINS',
        'https://arashmohsenijam.github.io,http://localhost:5173,https://farsitranscriber.onrender.com'
    )
    API_HOST = os.getenv('API_HOST', '0.0.0.0')
    API_PORT = int(os.getenv('API_PORT', os.getenv('PORT', 10000)))
    API_DEBUG = os.getenv('API_DEBUG', 'false').lower() == 'true'

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'json')

    @classmethod
    def validate(cls) -> tuple[bool, list[str]]:
        """
        Validate configuration

        Returns:
            Tuple of (is_valid, error_messages)
        """
        errors = []

        # Transcription backend is mandatory, refinement is optional
        if not cls.OPENAI_API_KEY:
            errors.append("OPENAI_API_KEY is required for transcription")

        if cls.MAX_AUDIO_SIZE_MB <= 0:
            errors.append("MAX_AUDIO_SIZE_MB must be positive")

        if cls.MAX_PARALLEL_ENCODERS < 1:
            errors.append("MAX_PARALLEL_ENCODERS must be at least 1")

        if cls.ENCODER_CHANNELS not in {1, 2}:
            errors.append("ENCODER_CHANNELS must be 1 or 2")

        if cls.REQUEST_TIMEOUT_SECONDS <= 0:
            errors.append("REQUEST_TIMEOUT_SECONDS must be positive")

        if cls.REFINEMENT_CHUNK_CHARS <= 0:
            errors.append("REFINEMENT_CHUNK_CHARS must be positive")

        return len(errors) == 0, errors
