"""
Gunicorn configuration for the loyalty back-end.
"""
import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

# Stripe webhooks and checkout are short requests; a few sync workers suffice
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
worker_class = 'sync'
timeout = 60
keepalive = 5

# Logging
accesslog = '-'  # stdout
errorlog = '-'   # stderr
loglevel = os.getenv('LOG_LEVEL', 'info')
capture_output = True

proc_name = 'nailcare-loyalty'

preload_app = True

graceful_timeout = 30


def on_starting(server):
    print("[Gunicorn] Starting loyalty server...")


def on_exit(server):
    print("[Gunicorn] Loyalty server shutting down...")
