"""
Gunicorn configuration for the account merge service.

Run with: gunicorn -c gunicorn.conf.py wsgi:application
All values are config-driven via environment variables.
"""

import logging
import multiprocessing
import os

# =============================================================================
# WORKERS
# =============================================================================

# gthread: requests mostly wait on the database
worker_class = os.environ.get("GUNICORN_WORKER_CLASS", "gthread")


def get_workers():
    env_workers = os.environ.get("GUNICORN_WORKERS")
    if env_workers:
        return int(env_workers)
    # 2*cores + 1, capped so small hosts keep database connections in check
    return max(min(2 * multiprocessing.cpu_count() + 1, 8), 2)


workers = get_workers()
threads = int(os.environ.get("GUNICORN_THREADS", "4"))

# =============================================================================
# TIMEOUTS & LIMITS
# =============================================================================

timeout = int(os.environ.get("GUNICORN_TIMEOUT", "30"))
graceful_timeout = int(os.environ.get("GUNICORN_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.environ.get("GUNICORN_KEEPALIVE", "5"))

# Worker recycling
max_requests = int(os.environ.get("GUNICORN_MAX_REQUESTS", "1000"))
max_requests_jitter = int(os.environ.get("GUNICORN_MAX_REQUESTS_JITTER", "50"))

limit_request_line = int(os.environ.get("GUNICORN_LIMIT_REQUEST_LINE", "4094"))

# =============================================================================
# NETWORK
# =============================================================================

bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:5000")
forwarded_allow_ips = os.environ.get("GUNICORN_FORWARDED_ALLOW_IPS", "*")

# Off by default: each worker opens its own database pool
preload_app = os.environ.get("GUNICORN_PRELOAD_APP", "false").lower() == "true"

# =============================================================================
# LOGGING
# =============================================================================

loglevel = os.environ.get("GUNICORN_LOGLEVEL", "info")
accesslog = os.environ.get("GUNICORN_ACCESS_LOG", "-")
errorlog = os.environ.get("GUNICORN_ERROR_LOG", "-")
capture_output = os.environ.get("GUNICORN_CAPTURE_OUTPUT", "true").lower() == "true"

# =============================================================================
# HOOKS
# =============================================================================


def on_starting(server):
    """Called just before master process starts."""
    logging.getLogger("gunicorn").info(
        f"Starting account merge service with {workers} workers, "
        f"worker_class={worker_class}, threads={threads}"
    )


def worker_abort(worker):
    """Called when worker receives SIGABRT (timeout)."""
    logging.getLogger("gunicorn").error(f"Worker {worker.pid} aborted (timeout?)")
