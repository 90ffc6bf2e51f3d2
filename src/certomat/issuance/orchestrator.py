"""CSR issuance orchestrator.

Turns a client-supplied CSR into a signed certificate chain by running
the external agent, one issuance at a time.  For each call:

1. recover the subject common name from the CSR (best effort; an
   unparseable CSR yields an empty name and the agent rejects it);
2. stage the raw CSR bytes in a temporary file that is removed on every
   exit path;
3. hold the process-wide serialization token while the agent runs and
   its result file is read;
4. clear the agent's result artifacts before releasing the token.

The CSR's name is *not* checked against the domain policy unless
``issuance.enforce_domain_policy`` is enabled; by default the CA's own
domain validation is the only gate for CSR-submitted names.
"""

from __future__ import annotations

import contextlib
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.x509.oid import NameOID

from certomat.errors import GatewayError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from certomat.issuance.agent import CertbotAgent
    from certomat.issuance.serialization import SerializationToken
    from certomat.policy import DomainPolicy

log = logging.getLogger(__name__)

_PEM_PREFIX = b"-----BEGIN"


@dataclass(frozen=True)
class IssuanceRequest:
    """One inbound CSR and the name it asks for; never persisted."""

    host: str
    csr: bytes


def csr_common_name(csr: bytes) -> str:
    """Return the subject CN of a PEM or DER CSR, or ``""`` if unparseable."""
    try:
        if csr.lstrip().startswith(_PEM_PREFIX):
            parsed = x509.load_pem_x509_csr(csr)
        else:
            parsed = x509.load_der_x509_csr(csr)
        attrs = parsed.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    except ValueError:
        log.debug("CSR could not be parsed; continuing without a name")
        return ""
    if not attrs:
        return ""
    return str(attrs[0].value)


@contextlib.contextmanager
def staged_csr(csr: bytes, directory: str | None = None) -> Iterator[Path]:
    """Write *csr* to a fresh temp file and yield its path.

    The file is deleted when the ``with`` block exits, whether it
    returns normally or raises.
    """
    try:
        handle = tempfile.NamedTemporaryFile(  # noqa: SIM115
            prefix="csr",
            suffix=".csr",
            dir=directory,
            delete=False,
        )
    except OSError as exc:
        msg = f"cannot stage CSR: {exc}"
        raise GatewayError(msg) from exc

    path = Path(handle.name)
    try:
        try:
            with handle:
                handle.write(csr)
        except OSError as exc:
            msg = f"cannot stage CSR: {exc}"
            raise GatewayError(msg) from exc
        yield path
    finally:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            log.warning("Could not remove staged CSR %s: %s", path, exc)


class CsrIssuer:
    """Single-flight bridge between HTTP requests and the issuance agent.

    Parameters
    ----------
    agent:
        The certbot wrapper.
    token:
        Process-wide serialization token, shared with the
        self-certificate manager.
    policy:
        Domain policy; consulted only when *enforce_domain_policy* is set.
    enforce_domain_policy:
        Reject CSRs whose common name is outside the authorized domains.
    staging_dir:
        Directory for staged CSR files (system temp dir when ``None``).

    """

    def __init__(
        self,
        agent: CertbotAgent,
        token: SerializationToken,
        policy: DomainPolicy | None = None,
        *,
        enforce_domain_policy: bool = False,
        staging_dir: str | None = None,
    ) -> None:
        if enforce_domain_policy and policy is None:
            msg = "enforce_domain_policy requires a DomainPolicy"
            raise ValueError(msg)
        self._agent = agent
        self._token = token
        self._policy = policy
        self._enforce = enforce_domain_policy
        self._staging_dir = staging_dir

    def issue(self, csr: bytes) -> bytes:
        """Obtain a certificate chain for *csr* from the agent.

        Returns
        -------
        bytes
            The agent's result file, byte for byte.

        Raises
        ------
        IssuanceFailed
            The agent could not be started, failed, or timed out.
        ResultReadError
            The agent succeeded but its result file is unreadable.
        MalformedHost, PolicyDenied
            Only with ``enforce_domain_policy``.

        """
        request = IssuanceRequest(host=csr_common_name(csr), csr=csr)
        log.info("certificate requested for %s", request.host or "(no name)")

        if self._enforce:
            self._policy.check(request.host)  # type: ignore[union-attr]

        with staged_csr(request.csr, self._staging_dir) as csr_path:
            with self._token.hold(f"csr:{request.host or '-'}"):
                try:
                    self._agent.obtain(request.host, csr_path)
                    cert = self._agent.read_result()
                finally:
                    self._agent.clear_results()

        log.info(
            "certificate issued for %s (%d bytes)",
            request.host or "(no name)",
            len(cert),
        )
        return cert
