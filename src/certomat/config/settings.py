"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
JSON Schema defaults exist only for documentation; these builders
are what the application actually reads.

Several defaults are derived from the required top-level ``domain``
(e.g. the canonical hostname ``certomat.<domain>``), so every builder
receives the normalised domain alongside its section.

Access pattern::

    from certomat.config.settings import build_settings

    settings = build_settings({"domain": "example.com"})
    settings.server.hostname      # "certomat.example.com"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

PRODUCTION_DIRECTORY_URL = "https://acme-v02.api.letsencrypt.org/directory"
STAGING_DIRECTORY_URL = "https://acme-staging-v02.api.letsencrypt.org/directory"

# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ServerSettings:
    """HTTPS listener configuration (canonical hostname, bind, threads)."""

    hostname: str
    bind: str
    port: int
    threads: int
    timeout: int
    graceful_timeout: int
    keepalive: int
    hsts_max_age_seconds: int


def _build_server(data: dict | None, domain: str) -> ServerSettings:
    d = data or {}
    hostname = (d.get("hostname") or f"certomat.{domain}").lower()
    return ServerSettings(
        hostname=hostname,
        bind=d.get("bind") or hostname,
        port=d.get("port", 443),
        threads=d.get("threads", 8),
        timeout=d.get("timeout", 600),
        graceful_timeout=d.get("graceful_timeout", 30),
        keepalive=d.get("keepalive", 2),
        hsts_max_age_seconds=d.get("hsts_max_age_seconds", 0),
    )


# ---------------------------------------------------------------------------
# ACME (gateway's own certificate)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AcmeSettings:
    """ACME client settings for the gateway's own TLS certificate."""

    prod: bool
    directory_url: str
    email: str
    cache_dir: str
    renew_before_days: int
    challenge_type: str
    challenge_handler: str
    challenge_handler_config: dict[str, Any] = field(hash=False)
    http_port: int = 80


def _build_acme(data: dict | None, domain: str) -> AcmeSettings:
    d = data or {}
    prod = bool(d.get("prod", False))
    default_url = PRODUCTION_DIRECTORY_URL if prod else STAGING_DIRECTORY_URL
    return AcmeSettings(
        prod=prod,
        directory_url=d.get("directory_url") or default_url,
        email=d.get("email") or f"hostmaster@{domain}",
        cache_dir=d.get("cache_dir", "cache"),
        renew_before_days=d.get("renew_before_days", 30),
        challenge_type=d.get("challenge_type", "http-01"),
        challenge_handler=d.get("challenge_handler", "standalone_http"),
        challenge_handler_config=dict(d.get("challenge_handler_config") or {}),
        http_port=d.get("http_port", 80),
    )


# ---------------------------------------------------------------------------
# External issuance agent (certbot)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AgentSettings:
    """Paths and flags for the external certbot issuance agent."""

    executable: str
    email: str
    prod: bool
    config_dir: str
    work_dir: str
    logs_dir: str
    output_dir: str
    http01_address: str
    http01_port: int
    preferred_challenges: str
    timeout_seconds: int
    result_file: str


def _build_agent(
    data: dict | None,
    *,
    hostname: str,
    email: str,
    prod: bool,
) -> AgentSettings:
    d = data or {}
    return AgentSettings(
        executable=d.get("executable", "certbot"),
        email=d.get("email") or email,
        prod=prod,
        config_dir=d.get("config_dir", "./config"),
        work_dir=d.get("work_dir", "./work"),
        logs_dir=d.get("logs_dir", "./logs"),
        output_dir=d.get("output_dir", "."),
        http01_address=d.get("http01_address") or hostname,
        http01_port=d.get("http01_port", 80),
        preferred_challenges=d.get("preferred_challenges", "http"),
        timeout_seconds=d.get("timeout_seconds", 300),
        result_file=d.get("result_file", "fullchain"),
    )


# ---------------------------------------------------------------------------
# Issuance endpoint
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IssuanceSettings:
    """CSR issuance endpoint configuration."""

    path: str
    max_csr_bytes: int
    enforce_domain_policy: bool


def _build_issuance(data: dict | None) -> IssuanceSettings:
    d = data or {}
    return IssuanceSettings(
        path=d.get("path", "/get-cert-from-csr"),
        max_csr_bytes=d.get("max_csr_bytes", 65536),
        enforce_domain_policy=d.get("enforce_domain_policy", False),
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingSettings:
    """Application logging configuration (level, format)."""

    level: str
    format: str


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "text"),
    )


# ---------------------------------------------------------------------------
# Root settings aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CertomatSettings:
    domain: str
    server: ServerSettings
    acme: AcmeSettings
    agent: AgentSettings
    issuance: IssuanceSettings
    logging: LoggingSettings


def build_settings(data: dict) -> CertomatSettings:
    """Build the full typed settings tree from raw config data.

    Raises :class:`KeyError` when ``domain`` is missing or empty; the CLI
    checks for it first and prints a usage message instead.
    """
    domain = (data.get("domain") or "").strip().lower().removesuffix(".")
    if not domain:
        msg = "domain"
        raise KeyError(msg)

    server = _build_server(data.get("server"), domain)
    acme = _build_acme(data.get("acme"), domain)
    return CertomatSettings(
        domain=domain,
        server=server,
        acme=acme,
        agent=_build_agent(
            data.get("agent"),
            hostname=server.hostname,
            email=acme.email,
            prod=acme.prod,
        ),
        issuance=_build_issuance(data.get("issuance")),
        logging=_build_logging(data.get("logging")),
    )
