#!/usr/bin/env python3
"""
WSGI Entry Point - builds the pipeline once per process and exposes the Flask app
"""
from transcriber_service.core.config import Config
from transcriber_service.core.logging import get_logger, setup_logging

setup_logging('transcriber-service', Config.LOG_LEVEL, Config.LOG_FORMAT)
logger = get_logger('wsgi')

from transcriber_service.utils.pipeline import TranscriptionPipeline

# Adapters hold read-only configuration, so one instance serves every worker thread
global_pipeline = TranscriptionPipeline.from_config()

import transcriber_service.api.api as api_module
api_module.pipeline = global_pipeline

from transcriber_service.api.api import app

logger.info("wsgi_ready", upload_dir=str(Config.UPLOAD_DIR))
