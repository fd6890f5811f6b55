"""
REST API for the Audio Transcription Service
Uploads are streamed through the pipeline; progress is pushed as server-sent events
"""
import os
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

from flask import Flask, Response, jsonify, request
from flask_cors import CORS
from flask_swagger_ui import get_swaggerui_blueprint
from werkzeug.datastructures import FileStorage
from werkzeug.exceptions import RequestEntityTooLarge

from transcriber_service import __version__
from transcriber_service.api.streaming import EventStream, run_to_completion
from transcriber_service.core.cancellation import CancelSignal
from transcriber_service.core.config import Config
from transcriber_service.core.exceptions import ErrorKind, InvalidInputError
from transcriber_service.core.logging import get_logger
from transcriber_service.core.models import PipelineRequest, Stage

logger = get_logger(__name__)

SERVICE_NAME = 'Audio Transcription Service'

# Initialize Flask app
app = Flask(__name__)
app.config['MAX_CONTENT_LENGTH'] = Config.MAX_AUDIO_SIZE_MB * 1024 * 1024

# Enable CORS for the known frontends only
CORS(
    app,
    origins=Config.CORS_ORIGINS,
    methods=['GET', 'POST'],
    allow_headers=['Content-Type', 'Authorization'],
    supports_credentials=True
)

# Swagger UI setup
SWAGGER_URL = '/docs'
API_URL = '/api/swagger.json'

swaggerui_blueprint = get_swaggerui_blueprint(
    SWAGGER_URL,
    API_URL,
    config={
        'app_name': SERVICE_NAME,
        'defaultModelsExpandDepth': -1,
        'docExpansion': 'none'
    }
)

app.register_blueprint(swaggerui_blueprint, url_prefix=SWAGGER_URL)

# ============================================================================
# PIPELINE INITIALIZATION
# ============================================================================
# Pipeline is injected by wsgi.py (production) or run.py (dev)
pipeline = None

HTTP_STATUS_BY_KIND = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.PAYLOAD_TOO_LARGE: 413,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.AUTH_FAILED: 502,
    ErrorKind.OPTIMIZATION_FAILED: 500,
    ErrorKind.TRANSCRIPTION_FAILED: 500,
}

RETRY_AFTER_SECONDS = 60


def get_pipeline():
    """
    Get pipeline instance

    Raises:
        RuntimeError: If pipeline not initialized
    """
    global pipeline
    if pipeline is None:
        raise RuntimeError(
            "Pipeline not initialized! "
            "Run via 'gunicorn -c gunicorn.py wsgi:app' (production) or 'python run.py' (development)"
        )
    return pipeline


def _error(message: str, status: int, data=None):
    return jsonify({
        'success': False,
        'message': message,
        'data': data
    }), status


def _form_flag(name: str, default: bool = False) -> bool:
    value = request.form.get(name)
    if value is None:
        return default
    return value.strip().lower() in {'true', '1', 'yes', 'on'}


def _is_audio(upload: FileStorage) -> bool:
    mimetype = (upload.mimetype or '').lower()
    return mimetype.startswith('audio/') or mimetype in Config.ALLOWED_MIME_TYPES


def _save_upload(upload: FileStorage) -> Path:
    """
    Buffer the upload into a fresh temp file

    Ownership of the file passes to the pipeline run that receives it.

    Raises:
        InvalidInputError: Empty upload
    """
    Config.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    suffix = Path(upload.filename or '').suffix.lower()[:10]
    fd, temp_name = tempfile.mkstemp(prefix='upload-', suffix=suffix, dir=Config.UPLOAD_DIR)
    path = Path(temp_name)
    try:
        with os.fdopen(fd, 'wb') as out:
            upload.save(out)
        if path.stat().st_size == 0:
            raise InvalidInputError('Empty file')
    except Exception:
        path.unlink(missing_ok=True)
        raise
    return path


def _discard(path: Path):
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("upload_discard_failed", path=str(path), error=str(e))


def _build_request() -> Tuple[Optional[PipelineRequest], Optional[tuple]]:
    """Validate the multipart upload; returns (request, None) or (None, error_response)"""
    if 'file' not in request.files:
        return None, _error('No file uploaded', 400)

    upload = request.files['file']
    if upload.filename == '':
        return None, _error('No file selected', 400)

    if not _is_audio(upload):
        return None, _error('Invalid file type. Please upload an audio file.', 400)

    try:
        source_path = _save_upload(upload)
    except InvalidInputError as e:
        return None, _error(str(e), 400)

    pipeline_request = PipelineRequest(
        source_path=source_path,
        optimize_audio=_form_flag('optimizeAudio'),
        improve_transcription=_form_flag('improveTranscription'),
        cancel_signal=CancelSignal.with_timeout(Config.REQUEST_TIMEOUT_SECONDS),
        language=request.form.get('language') or None,
        request_id=request.headers.get('X-Request-ID') or uuid.uuid4().hex
    )

    logger.info(
        "upload_received",
        request_id=pipeline_request.request_id,
        name=upload.filename,
        type=upload.mimetype,
        size_bytes=source_path.stat().st_size
    )
    return pipeline_request, None


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/swagger.json')
def swagger_spec():
    """Serve Swagger specification - embedded"""
    upload_schema = {
        "type": "object",
        "required": ["file"],
        "properties": {
            "file": {
                "type": "string",
                "format": "binary",
                "description": "Audio file (mp3, wav, m4a, ogg, webm, ...)"
            },
            "optimizeAudio": {
                "type": "boolean",
                "description": "Re-encode to mono low-bitrate speech audio before transcription",
                "default": False
            },
            "improveTranscription": {
                "type": "boolean",
                "description": "Run AI refinement on the raw transcript",
                "default": False
            },
            "language": {
                "type": "string",
                "description": "Language hint (ISO-639-1)",
                "example": Config.LANGUAGE
            }
        }
    }
    spec = {
        "openapi": "3.0.0",
        "info": {
            "title": SERVICE_NAME,
            "description": "Upload audio and receive transcription progress as server-sent events.",
            "version": __version__
        },
        "servers": [{"url": "/", "description": "Current server"}],
        "paths": {
            "/health": {
                "get": {
                    "summary": "Health Check",
                    "tags": ["System"],
                    "responses": {"200": {"description": "Service is healthy"}}
                }
            },
            "/api/transcribe": {
                "post": {
                    "summary": "Transcribe Audio (streamed)",
                    "description": (
                        "Each event is `data: {status, progress, result?, error?, code?}`. "
                        "status is one of Uploading, Optimizing, Transcribing, Improving, Complete, Error."
                    ),
                    "tags": ["Transcription"],
                    "requestBody": {
                        "required": True,
                        "content": {"multipart/form-data": {"schema": upload_schema}}
                    },
                    "responses": {
                        "200": {"description": "Event stream", "content": {"text/event-stream": {}}},
                        "400": {"description": "Bad request"},
                        "413": {"description": "File too large"}
                    }
                }
            },
            "/api/transcribe/sync": {
                "post": {
                    "summary": "Transcribe Audio (single JSON response)",
                    "tags": ["Transcription"],
                    "requestBody": {
                        "required": True,
                        "content": {"multipart/form-data": {"schema": upload_schema}}
                    },
                    "responses": {
                        "200": {"description": "Transcription successful"},
                        "400": {"description": "Bad request"},
                        "413": {"description": "File too large"},
                        "429": {"description": "Transcription backend rate limit, retry later"},
                        "500": {"description": "Internal server error"},
                        "502": {"description": "Transcription backend rejected credentials"}
                    }
                }
            }
        }
    }
    return jsonify(spec)


@app.route('/', methods=['GET'])
def index():
    """Liveness probe"""
    return jsonify({'status': 'ok', 'message': f'{SERVICE_NAME} is running'})


@app.route('/health', methods=['GET'])
def health():
    """Health check endpoint"""
    try:
        pipe = get_pipeline()

        health_data = {
            'status': 'healthy',
            'service': SERVICE_NAME,
            'version': __version__,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'dependencies': {
                'pipeline': 'loaded',
                'encoder': pipe.normalizer.encoder,
                'transcription': 'configured' if pipe.transcriber.is_available() else 'missing credentials',
                'refinement': 'configured' if pipe.refiner.is_available() else 'disabled'
            }
        }

        return jsonify(health_data), 200

    except Exception as e:
        return jsonify({
            'status': 'unhealthy',
            'service': SERVICE_NAME,
            'version': __version__,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'error': str(e)
        }), 500


@app.route('/api/transcribe', methods=['POST'])
def transcribe():
    """
    Transcribe audio, streaming progress as server-sent events
    """
    pipe = get_pipeline()

    pipeline_request, error_response = _build_request()
    if error_response is not None:
        return error_response

    stream = EventStream(
        pipe.run(pipeline_request),
        pipeline_request.cancel_signal,
        heartbeat_seconds=Config.HEARTBEAT_SECONDS,
        on_unstarted_close=lambda: _discard(pipeline_request.source_path),
        request_id=pipeline_request.request_id
    )

    response = Response(stream, mimetype='text/event-stream')
    response.headers['Cache-Control'] = 'no-cache'
    response.headers['X-Accel-Buffering'] = 'no'
    response.headers['X-Request-ID'] = pipeline_request.request_id
    return response


@app.route('/api/transcribe/sync', methods=['POST'])
def transcribe_sync():
    """
    Transcribe audio and return the final result as one JSON response
    """
    pipe = get_pipeline()

    pipeline_request, error_response = _build_request()
    if error_response is not None:
        return error_response

    terminal = run_to_completion(
        pipe.run(pipeline_request),
        request_id=pipeline_request.request_id
    )

    if terminal is None:
        return _error('Request cancelled', 503)

    if terminal.stage is Stage.COMPLETE:
        return jsonify({
            'success': True,
            'message': 'Transcription completed successfully',
            'data': terminal.result.to_dict()
        }), 200

    status = HTTP_STATUS_BY_KIND.get(terminal.error_kind, 500)
    body, status = _error(terminal.error, status, {'code': terminal.error_kind.value})
    if terminal.error_kind is ErrorKind.RATE_LIMITED:
        body.headers['Retry-After'] = str(RETRY_AFTER_SECONDS)
    return body, status


@app.errorhandler(RequestEntityTooLarge)
def too_large(e):
    """Handle file too large error"""
    return _error(f'File too large. Maximum size: {Config.MAX_AUDIO_SIZE_MB}MB', 413)


@app.errorhandler(500)
def internal_error(e):
    """Handle internal server error"""
    return _error('Internal server error', 500)


def main():
    """
    Run Flask development server
    This is used by run.py for local development
    """
    is_valid, errors = Config.validate()
    if not is_valid:
        logger.error("configuration_invalid", errors=errors)
        return

    logger.info(
        "server_starting",
        host=Config.API_HOST,
        port=Config.API_PORT,
        transcription_model=Config.TRANSCRIPTION_MODEL,
        language=Config.LANGUAGE,
        max_upload_mb=Config.MAX_AUDIO_SIZE_MB
    )

    app.run(
        host=Config.API_HOST,
        port=Config.API_PORT,
        debug=Config.API_DEBUG,
        threaded=True
    )


if __name__ == '__main__':
    main()
