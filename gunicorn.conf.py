"""
Gunicorn configuration for the acknowledgement engine.

Env vars that override defaults:
  PORT     — TCP port to bind
  WORKERS  — number of worker processes (default: 2)
  TIMEOUT  — worker timeout in seconds (default: 120)
"""
import os

# Bind to the port the platform injects via $PORT
bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"

# Each worker holds its own DB pool and search-client pool.
workers = int(os.environ.get("WORKERS", "2"))

# Each worker runs Uvicorn's ASGI event loop inside Gunicorn's process manager.
worker_class = "uvicorn.workers.UvicornWorker"

# Large range acknowledgements page through the search cluster; allow time.
timeout = int(os.environ.get("TIMEOUT", "120"))

# App logs are JSON via structlog; access log stays off (uvicorn.access is WARNING).
loglevel = "info"
accesslog = None
errorlog = "-"

# Graceful restart: wait up to 30 s for in-flight requests to finish.
graceful_timeout = 30
