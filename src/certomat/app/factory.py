"""Flask application factory for certomat.

Usage::

    from certomat.app import create_app

    app = create_app(settings, issuer)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from flask import Flask

if TYPE_CHECKING:
    from certomat.config.settings import CertomatSettings
    from certomat.issuance.orchestrator import CsrIssuer

log = logging.getLogger(__name__)

_TEMPLATE_DIR = Path(__file__).parent / "templates"


def create_app(settings: CertomatSettings, issuer: CsrIssuer) -> Flask:
    """Create and configure the certomat Flask application.

    Parameters
    ----------
    settings:
        The typed settings tree.
    issuer:
        The CSR issuer the issuance endpoint delegates to.

    Returns
    -------
    Flask
        Fully configured WSGI application.

    """
    app = Flask("certomat", template_folder=str(_TEMPLATE_DIR), static_folder=None)
    app.config["CERTOMAT_SETTINGS"] = settings
    app.config["MAX_CONTENT_LENGTH"] = settings.issuance.max_csr_bytes
    app.extensions["certomat_issuer"] = issuer

    # -- Error handlers ------------------------------------------------------
    from certomat.app.errors import register_error_handlers  # noqa: PLC0415

    register_error_handlers(app)

    # -- Request lifecycle hooks --------------------------------------------
    from certomat.app.middleware import register_request_hooks  # noqa: PLC0415

    register_request_hooks(app)

    # -- Routes --------------------------------------------------------------
    from certomat.app.routes import register_routes  # noqa: PLC0415

    register_routes(app, settings.issuance.path)

    log.info("certomat application created for %s", settings.server.hostname)
    return app
