"""Certomat command-line entry point.

Usage::

    certomat --domain example.com
    certomat --domain example.com --prod --cache /var/lib/certomat/cache
    certomat -c /etc/certomat/config.yaml
    certomat -c config.yaml --validate-only
    certomat --domain example.com --dev
    python -m certomat --domain example.com
"""

from __future__ import annotations

import argparse
import logging
import sys

log = logging.getLogger(__name__)


def _get_version() -> str:
    from certomat import __revision__, __version__

    return f"{__version__} ({__revision__})"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="certomat",
        description="Certomat: HTTPS gateway that turns CSRs into certificates",
    )
    parser.add_argument(
        "--domain",
        metavar="DOMAIN",
        help="Base domain served by this gateway (required, here or in the config file).",
    )
    parser.add_argument(
        "--prod",
        action="store_true",
        default=None,
        help="Use the production CA (default: staging).",
    )
    parser.add_argument(
        "--cache",
        metavar="DIR",
        help="Directory for the gateway's own certificate cache (default: cache).",
    )
    parser.add_argument(
        "--email",
        metavar="ADDRESS",
        help="Contact address for ACME registration (default: hostmaster@DOMAIN).",
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="PATH",
        help="Optional configuration file (YAML or JSON).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug output (full tracebacks, verbose logging).",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        default=False,
        help="Validate the configuration and exit.",
    )
    parser.add_argument(
        "--dev",
        action="store_true",
        default=False,
        help="Use Flask's development server instead of gunicorn.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )
    return parser


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    sys.stderr.write(f"certomat: error: {message}\n")


def _overrides_from_args(args: argparse.Namespace) -> dict:
    """Map CLI flags onto the config tree; unset flags are ``None``."""
    return {
        "domain": args.domain,
        "acme": {
            "prod": args.prod,
            "cache_dir": args.cache,
            "email": args.email,
        },
        "logging": {"level": "DEBUG" if args.debug else None},
    }


def _load_data(args: argparse.Namespace) -> dict:
    """Return the merged raw config, exiting with status 1 on invalid input."""
    from certomat.config import ConfigValidationError, merge_overrides, validate_data

    overrides = _overrides_from_args(args)

    if args.config is None:
        data = merge_overrides({}, overrides)
        errors = validate_data(data)
        if errors:
            _print_error(str(ConfigValidationError(errors)))
            sys.exit(1)
        return data

    try:
        from certomat.config.certomat_config import CertomatConfig

        config = CertomatConfig(config_file=args.config, schema_file="bundled")
        return config.apply_overrides(overrides)
    except ConfigValidationError as exc:
        _print_error(str(exc))
        sys.exit(1)
    except Exception as exc:
        if args.debug:
            raise
        _print_error(f"failed to load configuration: {exc}")
        sys.exit(1)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Parses arguments, loads config, starts server."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # -- bootstrap logging early (basic stderr until config is loaded) ---
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    data = _load_data(args)
    if not (data.get("domain") or "").strip():
        parser.error("the --domain argument is required")

    from certomat.config import build_settings

    settings = build_settings(data)

    # -- replace bootstrap logging with structured logging ---
    from certomat.logging import configure_logging

    configure_logging(settings.logging)

    _print_settings_summary(settings)
    if args.validate_only:
        sys.exit(0)

    _run_serve(settings, args)


def _run_serve(settings, args) -> None:
    """Wire the components together, run startup checks, and serve."""
    from certomat.errors import StartupFatal
    from certomat.issuance import CertbotAgent, CsrIssuer, SerializationToken
    from certomat.policy import DomainPolicy
    from certomat.selfcert import CertificateManager, DirCache

    policy = DomainPolicy([settings.domain])
    token = SerializationToken()
    agent = CertbotAgent(settings.agent)
    cache = DirCache(settings.acme.cache_dir)
    manager = CertificateManager(settings.acme, policy, cache, token)
    issuer = CsrIssuer(
        agent,
        token,
        policy,
        enforce_domain_policy=settings.issuance.enforce_domain_policy,
    )

    try:
        agent.startup_check()
        manager.startup_check()
    except StartupFatal as exc:
        log.critical("%s", exc)
        _print_error(str(exc))
        sys.exit(1)

    from certomat.app import create_app

    app = create_app(settings, issuer)
    server = settings.server

    if args.dev:
        log.info("Starting development server (not for production)")
        try:
            app.run(
                host=server.bind,
                port=server.port,
                debug=args.debug,
                use_reloader=False,
                threaded=True,
                ssl_context=manager.server_context(),
            )
        except OSError as exc:
            _print_error(f"cannot listen on {server.bind}:{server.port}: {exc}")
            sys.exit(1)
    else:
        from certomat.server import run_gunicorn, write_placeholder_certificate

        try:
            certfile, keyfile = write_placeholder_certificate(
                cache.directory,
                server.hostname,
            )
            run_gunicorn(app, server, manager.install, certfile, keyfile)
        except (RuntimeError, OSError) as exc:
            _print_error(str(exc))
            sys.exit(1)


def _print_settings_summary(settings) -> None:
    """Log a short summary of the effective configuration."""
    log.info(
        "certomat %s: domain=%s hostname=%s listen=%s:%d",
        _get_version(),
        settings.domain,
        settings.server.hostname,
        settings.server.bind,
        settings.server.port,
    )
    log.info(
        "ACME directory %s (%s), cache %s",
        settings.acme.directory_url,
        "production" if settings.acme.prod else "staging",
        settings.acme.cache_dir,
    )
    log.info(
        "CSR endpoint %s via %s (timeout %ds, result %s)",
        settings.issuance.path,
        settings.agent.executable,
        settings.agent.timeout_seconds,
        settings.agent.result_file,
    )
