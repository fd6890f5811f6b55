"""
Gunicorn Configuration - threaded workers for long-lived event streams
"""
import os

# Server socket
bind = f"0.0.0.0:{os.getenv('PORT', os.getenv('API_PORT', '10000'))}"

# Worker processes; each streamed request holds a thread for its whole run
workers = int(os.getenv('GUNICORN_WORKERS', 2))
worker_class = "gthread"
threads = int(os.getenv('GUNICORN_THREADS', 8))
worker_tmp_dir = "/dev/shm"

# Timeouts
timeout = 900
graceful_timeout = 30
keepalive = 5

# Worker lifecycle
max_requests = 200
max_requests_jitter = 20

# Logging
accesslog = "-"
errorlog = "-"
loglevel = "info"
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'


def post_worker_init(worker):
    """Called just after a worker has been forked"""
    from transcriber_service.core.logging import get_logger
    get_logger('gunicorn').info("worker_ready", pid=worker.pid)


def worker_exit(server, worker):
    """Called just after a worker has been exited"""
    from transcriber_service.core.logging import get_logger
    get_logger('gunicorn').info("worker_exit", pid=worker.pid)


def on_exit(server):
    """Called just before the master process exits"""
    server.log.info("Gunicorn master shutting down...")
