"""
Gunicorn configuration.
"""
import os

# Bind to the platform's PORT or default
bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

# Worker configuration
# Threads share the in-process customer locks; workers rely on the row lock
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
worker_class = 'gthread'
threads = int(os.getenv('GUNICORN_THREADS', '4'))
timeout = 60
keepalive = 5

# Logging
accesslog = '-'  # stdout
errorlog = '-'   # stderr
loglevel = os.getenv('LOG_LEVEL', 'info')
capture_output = True

# Process naming
proc_name = 'loyalty'

# Preload app for better memory usage
preload_app = True

# Graceful restart
graceful_timeout = 30


def on_starting(server):
    print("[Gunicorn] Starting loyalty server...")


def on_exit(server):
    print("[Gunicorn] Loyalty server shutting down...")
