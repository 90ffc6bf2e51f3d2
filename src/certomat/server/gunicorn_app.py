"""Programmatic gunicorn runner for certomat.

Starts gunicorn with settings derived from the certomat config rather
than requiring a separate gunicorn config file.  The listener is TLS
only: gunicorn's default SSL context is handed to
:meth:`CertificateManager.install`, which attaches the SNI callback that
swaps in the per-host certificate during each handshake.

A single worker process is used so the serialization token and the
in-memory certificate state are shared by every request thread.

Usage::

    from certomat.server.gunicorn_app import run_gunicorn

    run_gunicorn(flask_app, settings.server, manager.install, cert, key)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import ssl
    from collections.abc import Callable
    from pathlib import Path

    from flask import Flask

    from certomat.config.settings import ServerSettings

log = logging.getLogger(__name__)


def run_gunicorn(
    app: Flask,
    settings: ServerSettings,
    install_sni: Callable[[ssl.SSLContext], ssl.SSLContext],
    certfile: Path,
    keyfile: Path,
) -> None:
    """Start a gunicorn TLS server from certomat :class:`ServerSettings`.

    Parameters
    ----------
    app:
        The WSGI application.
    settings:
        The ``server`` configuration section.
    install_sni:
        Called with gunicorn's default SSL context; returns the context
        to serve with.
    certfile, keyfile:
        Placeholder certificate gunicorn loads before the SNI callback
        takes over.

    Raises :class:`RuntimeError` if gunicorn is not installed (e.g. on
    Windows).
    """
    try:
        from gunicorn.app.base import BaseApplication
    except ImportError:
        msg = (
            "gunicorn is not installed.  Install it with:\n"
            "    pip install gunicorn\n\n"
            "gunicorn only runs on Unix.  Use --dev for the Flask "
            "development server on Windows."
        )
        raise RuntimeError(
            msg,
        )

    def _ssl_context(_conf, default_ssl_context_factory):
        return install_sni(default_ssl_context_factory())

    class _App(BaseApplication):
        def __init__(self, flask_app: Flask, server: ServerSettings) -> None:
            self.application = flask_app
            self._server = server
            super().__init__()

        def load_config(self) -> None:
            s = self._server
            self.cfg.set("bind", f"{s.bind}:{s.port}")
            self.cfg.set("workers", 1)
            self.cfg.set("worker_class", "gthread")
            self.cfg.set("threads", s.threads)
            self.cfg.set("timeout", s.timeout)
            self.cfg.set("graceful_timeout", s.graceful_timeout)
            self.cfg.set("keepalive", s.keepalive)
            self.cfg.set("certfile", str(certfile))
            self.cfg.set("keyfile", str(keyfile))
            self.cfg.set("ssl_context", _ssl_context)
            # Silence gunicorn's own access log; certomat.access covers it
            self.cfg.set("accesslog", None)

        def load(self) -> Flask:
            return self.application

    log.info(
        "Starting gunicorn on %s:%s (1 worker, %d threads)",
        settings.bind,
        settings.port,
        settings.threads,
    )
    _App(app, settings).run()
