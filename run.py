#!/usr/bin/env python3
"""
Run Audio Transcription API Server - DEVELOPMENT MODE
Builds the pipeline and injects it into the Flask app before starting the dev server
"""
import sys

from transcriber_service.core.config import Config
from transcriber_service.core.logging import get_logger, setup_logging

setup_logging('transcriber-service', Config.LOG_LEVEL, 'dev')
logger = get_logger('run')

try:
    from transcriber_service.utils.pipeline import TranscriptionPipeline
    pipeline = TranscriptionPipeline.from_config()
except Exception as e:
    logger.error("startup_failed", error=str(e))
    sys.exit(1)

import transcriber_service.api.api as api_module
api_module.pipeline = pipeline

from transcriber_service.api.api import main

if __name__ == '__main__':
    main()
