"""Serving the Flask app over TLS (gunicorn or the development server)."""

from certomat.server.gunicorn_app import run_gunicorn
from certomat.server.tls import write_placeholder_certificate

__all__ = ["run_gunicorn", "write_placeholder_certificate"]
