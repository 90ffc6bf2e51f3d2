"""HTTP routes: the CSR issuance endpoint and the informational pages."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from flask import Flask, Response, current_app, render_template, request
from werkzeug.exceptions import ClientDisconnected

from certomat.errors import PLAIN_TEXT_CONTENT_TYPE, BodyReadError, MethodNotAllowed

if TYPE_CHECKING:
    from certomat.issuance.orchestrator import CsrIssuer

log = logging.getLogger(__name__)


def _request_host() -> str:
    """The ``Host`` header without its port, lower-cased."""
    host = request.host.lower()
    if host.startswith("["):
        return host.split("]", 1)[0] + "]"
    return host.rsplit(":", 1)[0] if ":" in host else host


def issue_certificate():
    """Sign the CSR in the request body and return the certificate chain."""
    if request.method != "POST":
        raise MethodNotAllowed("post only")

    try:
        csr = request.get_data(cache=False)
    except (ClientDisconnected, OSError) as exc:
        msg = f"cannot read body: {exc}"
        raise BodyReadError(msg) from exc

    issuer: CsrIssuer = current_app.extensions["certomat_issuer"]
    cert = issuer.issue(csr)
    return Response(cert, status=200, content_type=PLAIN_TEXT_CONTENT_TYPE)


def info_page(path: str = ""):
    """Explain what this host is, depending on which name it was reached by."""
    settings = current_app.config["CERTOMAT_SETTINGS"]
    if _request_host() == settings.server.hostname:
        return render_template("certomat.html")
    return render_template("other.html")


def _add_any_method_rule(app: Flask, rule: str, endpoint: str, view_func) -> None:
    # Flask's add_url_rule always restricts methods; a rule without a
    # method set matches every verb, including TRACE and extension verbs.
    app.url_map.add(app.url_rule_class(rule, endpoint=endpoint))
    app.view_functions[endpoint] = view_func


def register_routes(app: Flask, issuance_path: str) -> None:
    """Mount the issuance endpoint at *issuance_path* and the catch-all page."""
    _add_any_method_rule(app, issuance_path, "issue_certificate", issue_certificate)
    _add_any_method_rule(app, "/", "info_page", info_page)
    app.url_map.add(app.url_rule_class("/<path:path>", endpoint="info_page"))
    log.info("CSR issuance endpoint registered at %s", issuance_path)
