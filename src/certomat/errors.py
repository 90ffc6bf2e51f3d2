"""Error taxonomy for the certomat gateway.

Per-request failures derive from :class:`GatewayError`, which carries
the HTTP status it maps to and renders itself as a plain-text response.
:class:`StartupFatal` is raised only while bootstrapping the process and
is turned into a non-zero exit by the CLI.

Usage::

    raise PolicyDenied(f"certomat: domain {dom} not allowed")
"""

from __future__ import annotations

from http import HTTPStatus

PLAIN_TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"


class GatewayError(Exception):
    """A per-request failure that doubles as an HTTP error response.

    Parameters
    ----------
    detail:
        Human-readable description, sent verbatim as the response body.
    status:
        HTTP status code; defaults to the class-level :attr:`status`.

    """

    status: int = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, detail: str, status: int | None = None) -> None:
        self.detail = detail
        if status is not None:
            self.status = status
        super().__init__(detail)

    def to_response(self):
        """Build a plain-text Flask :class:`~flask.Response`."""
        from flask import Response  # noqa: PLC0415

        return Response(
            self.detail,
            status=self.status,
            content_type=PLAIN_TEXT_CONTENT_TYPE,
        )


class MalformedHost(GatewayError, ValueError):
    """The host name has no base domain (fewer than two labels)."""

    status = HTTPStatus.BAD_REQUEST


class PolicyDenied(GatewayError):
    """The host's base domain is not in the authorized domain set."""

    status = HTTPStatus.FORBIDDEN


class MethodNotAllowed(GatewayError):
    """The issuance endpoint was called with a verb other than POST."""

    status = HTTPStatus.METHOD_NOT_ALLOWED


class BodyReadError(GatewayError):
    """Reading the CSR from the request body failed."""


class ResultReadError(GatewayError):
    """The agent reported success but its certificate file is unreadable."""


class IssuanceFailed(GatewayError):
    """The external issuance agent exited with a failure."""


class CertificateError(GatewayError):
    """Obtaining the gateway's own certificate over ACME failed."""


class StartupFatal(Exception):
    """The gateway cannot start (agent missing, registration or bind failure)."""
