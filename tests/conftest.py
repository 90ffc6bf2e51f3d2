"""Root conftest for the certomat test suite."""

from __future__ import annotations

import logging
import stat
import sys
from pathlib import Path

import pytest
import yaml
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)


# ---------------------------------------------------------------------------
# CSR helpers
# ---------------------------------------------------------------------------


def make_csr(common_name: str | None = "www.example.com", *, pem: bool = True) -> bytes:
    """Return a freshly signed P-256 CSR for *common_name*."""
    key = ec.generate_private_key(ec.SECP256R1())
    attrs = []
    if common_name is not None:
        attrs.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
    builder = x509.CertificateSigningRequestBuilder().subject_name(x509.Name(attrs))
    if common_name is not None:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(common_name)]),
            critical=False,
        )
    csr = builder.sign(key, hashes.SHA256())
    encoding = serialization.Encoding.PEM if pem else serialization.Encoding.DER
    return csr.public_bytes(encoding)


@pytest.fixture()
def csr_pem() -> bytes:
    return make_csr("www.example.com")


# ---------------------------------------------------------------------------
# Stub issuance agent
# ---------------------------------------------------------------------------

# Parses the options CertbotAgent passes, echoes the CSR back as the
# full chain and writes fixed cert/chain files.
_AGENT_PRELUDE = """#!/bin/sh
cmd="$1"
while [ $# -gt 0 ]; do
  case "$1" in
    --csr) csr="$2"; shift ;;
    --cert-path) cert="$2"; shift ;;
    --chain-path) chain="$2"; shift ;;
    --fullchain-path) fullchain="$2"; shift ;;
    --config-dir) confdir="$2"; shift ;;
  esac
  shift
done
if [ "$cmd" = "register" ]; then
  mkdir -p "$confdir"
  echo "registered"
  exit 0
fi
"""

AGENT_SUCCESS = """
echo "issuing from $csr"
cat "$csr" > "$fullchain"
printf 'CERT\\n' > "$cert"
printf 'CHAIN\\n' > "$chain"
"""

AGENT_FAILURE = """
echo "challenge failed"
exit 3
"""

AGENT_HANG = """
exec sleep 30
"""

AGENT_NO_OUTPUT = """
echo "claims success without writing anything"
"""


def write_agent(directory: Path, body: str, name: str = "certbot") -> Path:
    """Write an executable stub agent script and return its path."""
    path = directory / name
    path.write_text(_AGENT_PRELUDE + body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture()
def config_data(tmp_path: Path) -> dict:
    """Raw config with every agent and cache path inside *tmp_path*."""
    return {
        "domain": "example.com",
        "acme": {"cache_dir": str(tmp_path / "cache")},
        "agent": {
            "executable": str(tmp_path / "bin" / "certbot"),
            "config_dir": str(tmp_path / "agent" / "config"),
            "work_dir": str(tmp_path / "agent" / "work"),
            "logs_dir": str(tmp_path / "agent" / "logs"),
            "output_dir": str(tmp_path / "out"),
            "timeout_seconds": 20,
        },
    }


@pytest.fixture()
def settings(config_data):
    from certomat.config import build_settings

    return build_settings(config_data)


@pytest.fixture()
def agent_dir(tmp_path: Path) -> Path:
    d = tmp_path / "bin"
    d.mkdir()
    return d


@pytest.fixture()
def tmp_config_file(tmp_path: Path, config_data: dict) -> Path:
    """Write *config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


# ---------------------------------------------------------------------------
# Global state cleanup (autouse, runs around every test)
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fresh_config():
    """Reset the CertomatConfig singleton before and after every test."""
    from certomat.config.certomat_config import CertomatConfig

    CertomatConfig.reset()
    yield
    CertomatConfig.reset()


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo configure_logging() so caplog keeps seeing certomat records."""
    names = ("certomat", "certomat.access", "certomat.agent")
    saved = {
        n: (logging.getLogger(n).level, list(logging.getLogger(n).handlers), logging.getLogger(n).propagate)
        for n in names
    }
    yield
    for n, (level, handlers, propagate) in saved.items():
        lg = logging.getLogger(n)
        lg.setLevel(level)
        lg.handlers[:] = handlers
        lg.propagate = propagate
