"""
Gunicorn configuration for production deployment.

Usage:
    gunicorn -c gunicorn.conf.py wsgi:app

The login security guard keeps its counters in process memory, so the
app runs as ONE worker process with threads. More workers would give each
its own counters and multiply the allowed attempts; moving to several
workers needs a shared AttemptStore first.
"""

import os

# --- Bind ---
bind = os.environ.get('GUNICORN_BIND', '0.0.0.0:8000')

# --- Workers ---
workers = 1
worker_class = 'gthread'
threads = int(os.environ.get('GUNICORN_THREADS', '8'))

# --- Timeouts ---
# bcrypt takes ~250ms; the rest is network overhead.
timeout = 30
graceful_timeout = 10
keepalive = 2

# --- Worker Recycling ---
# Disabled: a recycled worker forgets every lockout and IP block.
max_requests = 0

# --- Security ---
limit_request_line = 8190
limit_request_fields = 50
limit_request_field_size = 8190

# --- Server Identity ---
server_software = ''

# --- Logging ---
# Excludes request bodies, cookies and authorization headers.
accesslog = '-'
errorlog = '-'
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" %(L)s'
loglevel = os.environ.get('LOG_LEVEL', 'info')

proc_name = 'bourbon-auth'

# --- Forwarded Headers ---
# Only trust X-Forwarded-* from the reverse proxy; ProxyFix in the app
# resolves the client address the IP guard keys on.
forwarded_allow_ips = os.environ.get('FORWARDED_ALLOW_IPS', '127.0.0.1')
