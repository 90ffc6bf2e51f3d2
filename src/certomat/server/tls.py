"""Bootstrap certificate for the TLS listener.

gunicorn refuses to start TLS without a certificate file on disk, even
though every real handshake is answered by the SNI callback.  A
short-lived self-signed certificate for the gateway's own hostname is
written next to the certificate cache to satisfy that check.
"""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime, timedelta
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

log = logging.getLogger(__name__)

PLACEHOLDER_CERT_NAME = "_placeholder.crt"
PLACEHOLDER_KEY_NAME = "_placeholder.key"


def write_placeholder_certificate(directory: str | Path, hostname: str) -> tuple[Path, Path]:
    """Write a self-signed certificate and key for *hostname*.

    Returns ``(cert_path, key_path)``.  Existing files are overwritten.
    """
    directory = Path(directory)
    directory.mkdir(mode=0o700, parents=True, exist_ok=True)

    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hostname)])
    now = datetime.now(UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=1))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(hostname)]), critical=False)
        .sign(key, hashes.SHA256())
    )

    cert_path = directory / PLACEHOLDER_CERT_NAME
    key_path = directory / PLACEHOLDER_KEY_NAME
    key_bytes = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(key_bytes)
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    log.debug("Wrote placeholder certificate for %s to %s", hostname, cert_path)
    return cert_path, key_path
