"""Tests for the certomat Flask application: routes, errors and hooks."""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import pytest
from werkzeug.exceptions import ClientDisconnected

from certomat.app import create_app
from certomat.config import build_settings
from certomat.errors import IssuanceFailed, PolicyDenied, ResultReadError

ISSUE_PATH = "/get-cert-from-csr"


@pytest.fixture()
def issuer():
    issuer = MagicMock()
    issuer.issue.return_value = b"-----BEGIN CERTIFICATE-----\nabc\n-----END CERTIFICATE-----\n"
    return issuer


@pytest.fixture()
def app(settings, issuer):
    app = create_app(settings, issuer)
    app.config["TESTING"] = True
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


# ---------------------------------------------------------------------------
# Issuance endpoint
# ---------------------------------------------------------------------------


class TestIssueEndpoint:
    def test_post_returns_certificate(self, client, issuer, csr_pem):
        resp = client.post(ISSUE_PATH, data=csr_pem)
        assert resp.status_code == 200
        assert resp.mimetype == "text/plain"
        assert resp.get_data() == issuer.issue.return_value
        issuer.issue.assert_called_once_with(csr_pem)

    @pytest.mark.parametrize("method", ["get", "put", "delete", "patch"])
    def test_other_verbs_rejected(self, client, issuer, method):
        resp = getattr(client, method)(ISSUE_PATH)
        assert resp.status_code == 405
        assert resp.get_data(as_text=True) == "post only"
        assert resp.mimetype == "text/plain"
        issuer.issue.assert_not_called()

    @pytest.mark.parametrize("method", ["TRACE", "OPTIONS", "PROPFIND"])
    def test_unusual_verbs_rejected(self, client, issuer, method):
        resp = client.open(ISSUE_PATH, method=method)
        assert resp.status_code == 405
        assert resp.get_data(as_text=True) == "post only"
        issuer.issue.assert_not_called()

    def test_issuance_failure(self, client, issuer, csr_pem):
        issuer.issue.side_effect = IssuanceFailed("certbot result code: exit status 1")
        resp = client.post(ISSUE_PATH, data=csr_pem)
        assert resp.status_code == 500
        assert resp.get_data(as_text=True) == "certbot result code: exit status 1"

    def test_result_read_failure(self, client, issuer, csr_pem):
        issuer.issue.side_effect = ResultReadError("cannot read cert: missing")
        resp = client.post(ISSUE_PATH, data=csr_pem)
        assert resp.status_code == 500
        assert "cannot read cert" in resp.get_data(as_text=True)

    def test_policy_denied(self, client, issuer, csr_pem):
        issuer.issue.side_effect = PolicyDenied("certomat: domain evil.com not allowed")
        resp = client.post(ISSUE_PATH, data=csr_pem)
        assert resp.status_code == 403

    def test_body_read_failure(self, client, issuer, monkeypatch):
        def _broken(*args, **kwargs):
            raise ClientDisconnected()

        monkeypatch.setattr("flask.wrappers.Request.get_data", _broken)
        resp = client.post(ISSUE_PATH, data=b"x")
        assert resp.status_code == 500
        assert resp.get_data(as_text=True).startswith("cannot read body")
        issuer.issue.assert_not_called()

    def test_oversized_body(self, settings, issuer):
        data = {"domain": "example.com", "issuance": {"max_csr_bytes": 16}}
        client = create_app(build_settings(data), issuer).test_client()
        resp = client.post(ISSUE_PATH, data=b"x" * 64)
        assert resp.status_code == 413
        issuer.issue.assert_not_called()

    def test_unexpected_error_body_is_exception_text(self, client, issuer, csr_pem):
        issuer.issue.side_effect = RuntimeError("disk on fire")
        resp = client.post(ISSUE_PATH, data=csr_pem)
        assert resp.status_code == 500
        assert resp.get_data(as_text=True) == "disk on fire"

    def test_errors_are_logged(self, client, issuer, csr_pem, caplog):
        issuer.issue.side_effect = IssuanceFailed("certbot result code: exit status 2")
        with caplog.at_level(logging.WARNING, logger="certomat.app.errors"):
            client.post(ISSUE_PATH, data=csr_pem)
        assert "err 500 because: certbot result code: exit status 2" in caplog.text

    def test_custom_path(self, issuer, csr_pem):
        data = {"domain": "example.com", "issuance": {"path": "/csr"}}
        client = create_app(build_settings(data), issuer).test_client()
        assert client.post("/csr", data=csr_pem).status_code == 200


# ---------------------------------------------------------------------------
# Informational pages
# ---------------------------------------------------------------------------


class TestInfoPages:
    def test_gateway_host(self, client):
        resp = client.get("/", headers={"Host": "certomat.example.com"})
        assert resp.status_code == 200
        assert resp.mimetype == "text/html"
        assert "<h1>Certomat</h1>" in resp.get_data(as_text=True)

    def test_gateway_host_with_port_and_case(self, client):
        resp = client.get("/anything", headers={"Host": "Certomat.Example.com:443"})
        assert "<h1>Certomat</h1>" in resp.get_data(as_text=True)

    def test_other_host(self, client):
        resp = client.get("/", headers={"Host": "server1.example.com"})
        assert resp.status_code == 200
        assert "Local DNS is not configured" in resp.get_data(as_text=True)

    @pytest.mark.parametrize("method", ["get", "post", "put", "delete"])
    def test_any_path_any_verb(self, client, method):
        resp = getattr(client, method)("/some/deep/path", headers={"Host": "x.example.com"})
        assert resp.status_code == 200

    @pytest.mark.parametrize("method", ["TRACE", "CONNECT", "OPTIONS", "PROPFIND"])
    def test_any_path_unusual_verb(self, client, method):
        resp = client.open("/some/deep/path", method=method, headers={"Host": "x.example.com"})
        assert resp.status_code == 200
        assert "Local DNS is not configured" in resp.get_data(as_text=True)

    def test_no_static_route(self, client):
        resp = client.get("/static/style.css", headers={"Host": "certomat.example.com"})
        assert "<h1>Certomat</h1>" in resp.get_data(as_text=True)

    def test_issue_prefix_is_not_the_endpoint(self, client, issuer):
        resp = client.post(ISSUE_PATH + "/extra", data=b"x")
        assert resp.status_code == 200
        issuer.issue.assert_not_called()


# ---------------------------------------------------------------------------
# Request hooks
# ---------------------------------------------------------------------------


class TestRequestHooks:
    def test_request_id_generated(self, client):
        resp = client.get("/")
        assert len(resp.headers["X-Request-ID"]) == 32

    def test_request_id_passthrough(self, client):
        resp = client.get("/", headers={"X-Request-ID": "abc-123"})
        assert resp.headers["X-Request-ID"] == "abc-123"

    def test_nosniff(self, client):
        assert client.get("/").headers["X-Content-Type-Options"] == "nosniff"

    def test_no_hsts_by_default(self, client):
        assert "Strict-Transport-Security" not in client.get("/").headers

    def test_hsts_when_configured(self, issuer):
        data = {"domain": "example.com", "server": {"hsts_max_age_seconds": 3600}}
        client = create_app(build_settings(data), issuer).test_client()
        assert client.get("/").headers["Strict-Transport-Security"] == "max-age=3600"

    def test_access_log(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="certomat.access"):
            client.get("/hello", headers={"Host": "certomat.example.com"})
        records = [r for r in caplog.records if r.name == "certomat.access"]
        assert len(records) == 1
        assert records[0].status == 200
        assert "GET certomat.example.com /hello 200" in records[0].getMessage()
