"""Raw-data helpers shared by flag-only and file-based configuration.

Everything here works on the plain ``dict`` form of the configuration,
before :func:`~certomat.config.settings.build_settings` turns it into
the typed tree.
"""

from __future__ import annotations

import os
import re
from typing import Any

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

_KNOWN_CHALLENGE_TYPES = frozenset({"http-01", "dns-01"})
_HTTP_ONLY_HANDLERS = frozenset({"standalone_http"})
_KNOWN_RESULT_FILES = frozenset({"cert", "chain", "fullchain"})
_MAX_PORT = 65535


class ConfigValidationError(Exception):
    """Raised when cross-field validation finds one or more problems."""

    def __init__(self, errors: list[str]) -> None:
        """Store *errors* and build a human-readable message."""
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def _resolve_value(value: str, path: str) -> str:
    """Replace ``${VAR}`` or ``${VAR:-default}`` with env var value."""
    match = _ENV_RE.match(value)
    if match is None:
        return value
    var_name = match.group(1)
    fallback = match.group(2)
    resolved = os.environ.get(var_name)
    if resolved is not None:
        return resolved
    if fallback is not None:
        return fallback
    raise ConfigValidationError(
        [
            f"Environment variable '${{{var_name}}}' referenced "
            f"at '{path}' is not set and has no default",
        ],
    )


def resolve_env_vars(
    data: Any,  # noqa: ANN401
    path: str = "",
) -> None:
    """Walk *data* in-place and resolve ``${VAR}``/``${VAR:-default}`` strings."""
    if isinstance(data, dict):
        for key in data:
            child_path = f"{path}.{key}" if path else key
            if isinstance(data[key], str):
                data[key] = _resolve_value(data[key], child_path)
            elif isinstance(data[key], (dict, list)):
                resolve_env_vars(data[key], child_path)
    elif isinstance(data, list):
        for idx, item in enumerate(data):
            child_path = f"{path}[{idx}]"
            if isinstance(item, str):
                data[idx] = _resolve_value(item, child_path)
            elif isinstance(item, (dict, list)):
                resolve_env_vars(item, child_path)


# ---------------------------------------------------------------------------
# Merging CLI flags over file values
# ---------------------------------------------------------------------------


def merge_overrides(base: dict, overrides: dict) -> dict:
    """Recursively merge *overrides* into *base*; ``None`` values are skipped."""
    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(value, dict):
            current = base.get(key)
            base[key] = merge_overrides(
                dict(current) if isinstance(current, dict) else {},
                value,
            )
        else:
            base[key] = value
    return base


# ---------------------------------------------------------------------------
# Cross-field checks
# ---------------------------------------------------------------------------


def validate_data(data: dict) -> list[str]:  # noqa: C901
    """Return the semantic problems found in raw config *data*.

    The presence of ``domain`` is not checked here: the CLI reports a
    missing domain with a usage message rather than a validation error.
    """
    errors: list[str] = []

    domain = (data.get("domain") or "").strip()
    if domain and "." not in domain.removesuffix("."):
        errors.append(
            f"domain '{domain}' must contain at least one dot (e.g. 'example.com')",
        )

    server = data.get("server") or {}
    port = server.get("port", 443)
    if not 0 < port <= _MAX_PORT:
        errors.append(f"server.port ({port}) must be between 1 and {_MAX_PORT}")
    if server.get("threads", 8) < 1:
        errors.append("server.threads must be >= 1")

    acme = data.get("acme") or {}
    ctype = acme.get("challenge_type", "http-01")
    if ctype not in _KNOWN_CHALLENGE_TYPES:
        errors.append(
            f"acme.challenge_type '{ctype}' is not one of {sorted(_KNOWN_CHALLENGE_TYPES)}",
        )
    handler = acme.get("challenge_handler", "standalone_http")
    if ctype == "dns-01" and handler in _HTTP_ONLY_HANDLERS:
        errors.append(
            f"acme.challenge_handler '{handler}' cannot answer dns-01 challenges",
        )
    if acme.get("renew_before_days", 30) < 1:
        errors.append("acme.renew_before_days must be >= 1")

    agent = data.get("agent") or {}
    if agent.get("timeout_seconds", 300) <= 0:
        errors.append("agent.timeout_seconds must be > 0")
    result_file = agent.get("result_file", "fullchain")
    if result_file not in _KNOWN_RESULT_FILES:
        errors.append(
            f"agent.result_file '{result_file}' is not one of {sorted(_KNOWN_RESULT_FILES)}",
        )

    issuance = data.get("issuance") or {}
    path = issuance.get("path", "/get-cert-from-csr")
    if not path.startswith("/") or path == "/":
        errors.append(
            f"issuance.path must start with '/' and not be the root (got '{path}')",
        )

    return errors
