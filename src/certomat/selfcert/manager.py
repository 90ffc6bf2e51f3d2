"""Self-certificate manager for the gateway's TLS listener.

Supplies a certificate for every TLS handshake, obtaining it over ACME
(via ACMEOW) the first time a host is seen and renewing it when it
enters the renewal window.  Certificates are kept in memory and
persisted through a narrow get/put cache so restarts do not force
re-issuance.

The directory URL (production or staging) is fixed when the manager is
built and never changes for the life of the process.

ACME work is done while holding the process-wide
:class:`~certomat.issuance.serialization.SerializationToken`, the same
one the CSR issuer holds around certbot, so the two never run at once.
"""

from __future__ import annotations

import logging
import os
import ssl
import tempfile
import threading
import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from certomat.errors import CertificateError, GatewayError, StartupFatal
from certomat.policy import normalize_host
from certomat.selfcert.handlers import load_challenge_handler

if TYPE_CHECKING:
    from certomat.config.settings import AcmeSettings
    from certomat.issuance.serialization import SerializationToken
    from certomat.policy import DomainPolicy

log = logging.getLogger(__name__)

_CERT_MARKER = b"-----BEGIN CERTIFICATE-----"

# Pause between renewal attempts while a failed renewal falls back to the
# still-valid certificate.
RENEWAL_RETRY_SECONDS = 600


class CertificateCache(Protocol):
    """The persistence interface the manager needs."""

    def get(self, key: str) -> bytes | None: ...

    def put(self, key: str, data: bytes) -> None: ...


@dataclass(frozen=True)
class CertificateState:
    """The gateway's certificate and key for one host name."""

    host: str
    cert_pem: bytes
    key_pem: bytes
    not_after: datetime

    def needs_renewal(self, renew_before: timedelta, now: datetime | None = None) -> bool:
        """Return ``True`` once *now* is within *renew_before* of expiry."""
        now = now or datetime.now(UTC)
        return now + renew_before >= self.not_after

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        return now >= self.not_after

    def to_bytes(self) -> bytes:
        """Serialise as one PEM blob: private key, then the chain."""
        return self.key_pem + self.cert_pem

    @classmethod
    def from_bytes(cls, host: str, data: bytes) -> CertificateState:
        """Parse a blob written by :meth:`to_bytes`.

        Raises
        ------
        ValueError
            If the blob is malformed or the key does not match the leaf.

        """
        idx = data.find(_CERT_MARKER)
        if idx <= 0:
            msg = "cache entry does not contain a key followed by a certificate"
            raise ValueError(msg)
        key_pem, cert_pem = data[:idx], data[idx:]
        key = serialization.load_pem_private_key(key_pem, password=None)
        leaf = x509.load_pem_x509_certificate(cert_pem)
        pub = serialization.PublicFormat.SubjectPublicKeyInfo
        enc = serialization.Encoding.DER
        if key.public_key().public_bytes(enc, pub) != leaf.public_key().public_bytes(enc, pub):
            msg = "cached private key does not match certificate"
            raise ValueError(msg)
        return cls(
            host=host,
            cert_pem=cert_pem,
            key_pem=key_pem,
            not_after=leaf.not_valid_after_utc,
        )


def build_csr(host: str) -> tuple[bytes, bytes]:
    """Generate a P-256 key and a CSR for *host*.

    Returns ``(key_pem, csr_der)``.
    """
    key = ec.generate_private_key(ec.SECP256R1())
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, host)]))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(host)]), critical=False)
        .sign(key, hashes.SHA256())
    )
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    return key_pem, csr.public_bytes(serialization.Encoding.DER)


def new_server_context() -> ssl.SSLContext:
    """Return a bare TLS server context with the gateway's protocol floor."""
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    return ctx


class CertificateManager:
    """Obtains and renews the listener certificate on demand.

    Parameters
    ----------
    settings:
        The ``acme`` configuration section.
    policy:
        Domain policy consulted for every SNI host.
    cache:
        Persistent store for issued certificates.
    token:
        Process-wide serialization token shared with the CSR issuer.
    client:
        Pre-built ACMEOW client (testing); created by
        :meth:`startup_check` otherwise.
    handler:
        Pre-built challenge handler (testing).

    """

    def __init__(  # noqa: PLR0913
        self,
        settings: AcmeSettings,
        policy: DomainPolicy,
        cache: CertificateCache,
        token: SerializationToken,
        *,
        client: Any = None,
        handler: Any = None,
    ) -> None:
        self._settings = settings
        self._policy = policy
        self._cache = cache
        self._token = token
        self._client = client
        self._handler = handler
        self._directory_url = settings.directory_url
        self._renew_before = timedelta(days=settings.renew_before_days)
        self._states: dict[str, CertificateState] = {}
        self._contexts: dict[str, ssl.SSLContext] = {}
        self._retry_at: dict[str, float] = {}
        self._state_lock = threading.Lock()

    @property
    def directory_url(self) -> str:
        return self._directory_url

    @property
    def is_production(self) -> bool:
        return self._settings.prod

    # -- startup ------------------------------------------------------------

    def startup_check(self) -> None:
        """Prepare the cache, challenge handler and ACME account.

        Raises
        ------
        StartupFatal
            If any of them cannot be set up.

        """
        ensure = getattr(self._cache, "ensure_directory", None)
        if ensure is not None:
            try:
                ensure()
            except OSError as exc:
                msg = f"Failed to create certificate cache directory: {exc}"
                raise StartupFatal(msg) from exc

        if self._handler is None:
            config = {"port": self._settings.http_port, **self._settings.challenge_handler_config}
            try:
                self._handler = load_challenge_handler(self._settings.challenge_handler, config)
            except CertificateError as exc:
                raise StartupFatal(exc.detail) from exc

        if self._client is not None:
            return

        try:
            from acmeow import AcmeClient  # noqa: PLC0415
        except ImportError as exc:
            msg = "ACMEOW is not installed. Install with: pip install acmeow"
            raise StartupFatal(msg) from exc

        storage = Path(self._settings.cache_dir) / "acme-account"
        try:
            storage.mkdir(parents=True, exist_ok=True)
            self._client = AcmeClient(
                directory_url=self._directory_url,
                storage_path=str(storage),
            )
            self._client.create_account(email=self._settings.email)
        except Exception as exc:  # noqa: BLE001
            msg = f"ACME account registration with {self._directory_url} failed: {exc}"
            raise StartupFatal(msg) from exc
        log.info(
            "ACME account ready with %s (%s)",
            self._directory_url,
            "production" if self.is_production else "staging",
        )

    # -- certificate lookup -------------------------------------------------

    def _fresh(self, host: str) -> CertificateState | None:
        """Return the remembered state if it can be served without ACME work."""
        with self._state_lock:
            state = self._states.get(host)
            retry_at = self._retry_at.get(host, 0.0)
        if state is None:
            return None
        if not state.needs_renewal(self._renew_before):
            return state
        # a renewal failed recently; keep serving until the next attempt is due
        if time.monotonic() < retry_at and not state.is_expired():
            return state
        return None

    def _remember(self, state: CertificateState) -> None:
        with self._state_lock:
            if self._states.get(state.host) is not state:
                self._states[state.host] = state
                self._contexts.pop(state.host, None)
            self._retry_at.pop(state.host, None)

    def _defer_renewal(self, state: CertificateState) -> None:
        self._remember(state)
        with self._state_lock:
            self._retry_at[state.host] = time.monotonic() + RENEWAL_RETRY_SECONDS

    def get_certificate(self, host: str) -> CertificateState:
        """Return a valid certificate for *host*, issuing one if needed.

        When renewal of a certificate that has not yet expired fails, the
        old certificate keeps being served and renewal is retried after
        :data:`RENEWAL_RETRY_SECONDS`.

        Raises
        ------
        MalformedHost, PolicyDenied
            If *host* is not authorized.
        CertificateError
            If ACME issuance fails and no unexpired certificate exists.

        """
        self._policy.check(host)
        host = normalize_host(host)

        state = self._fresh(host)
        if state is not None:
            return state

        with self._token.hold(f"self:{host}"):
            # another handshake may have finished the job while we waited
            state = self._fresh(host)
            if state is not None:
                return state

            current = self._current(host)
            if current is not None and not current.needs_renewal(self._renew_before):
                self._remember(current)
                return current

            try:
                state = self._issue(host)
            except CertificateError as exc:
                if current is None:
                    raise
                log.warning(
                    "Renewal for %s failed; serving certificate valid until %s: %s",
                    host,
                    current.not_after,
                    exc.detail,
                )
                self._defer_renewal(current)
                return current
            self._store(state)
            self._remember(state)
            return state

    def _current(self, host: str) -> CertificateState | None:
        """Return the unexpired certificate held in memory or the cache."""
        with self._state_lock:
            state = self._states.get(host)
        if state is None:
            state = self._load_cached(host)
        if state is not None and state.is_expired():
            log.info("Certificate for %s expired at %s", host, state.not_after)
            return None
        return state

    def _load_cached(self, host: str) -> CertificateState | None:
        data = self._cache.get(host)
        if data is None:
            return None
        try:
            state = CertificateState.from_bytes(host, data)
        except ValueError as exc:
            log.warning("Ignoring unusable cached certificate for %s: %s", host, exc)
            return None
        if state.needs_renewal(self._renew_before):
            log.info("Cached certificate for %s expires %s; renewing", host, state.not_after)
        else:
            log.info("Loaded cached certificate for %s (expires %s)", host, state.not_after)
        return state

    def _store(self, state: CertificateState) -> None:
        try:
            self._cache.put(state.host, state.to_bytes())
        except OSError as exc:
            log.warning("Could not persist certificate for %s: %s", state.host, exc)

    def _issue(self, host: str) -> CertificateState:
        """Run the ACME order-challenge-finalize flow for *host*."""
        if self._client is None or self._handler is None:
            msg = "ACME client not initialised; call startup_check() first"
            raise CertificateError(msg)

        key_pem, csr_der = build_csr(host)
        log.info("ACME: requesting certificate for %s from %s", host, self._directory_url)
        try:
            self._client.create_order([host])
            self._client.complete_challenges(
                self._handler,
                challenge_type=self._settings.challenge_type,
            )
            self._client.finalize_order(csr=csr_der)
            cert_pem, _ = self._client.get_certificate()
        except GatewayError:
            raise
        except Exception as exc:  # noqa: BLE001
            msg = f"ACME issuance for {host} failed ({type(exc).__name__}): {exc}"
            raise CertificateError(msg) from exc

        if isinstance(cert_pem, str):
            cert_pem = cert_pem.encode("ascii")
        try:
            state = CertificateState.from_bytes(host, key_pem + cert_pem)
        except ValueError as exc:
            msg = f"ACME returned an unusable certificate for {host}: {exc}"
            raise CertificateError(msg) from exc
        log.info("ACME: certificate for %s issued (expires %s)", host, state.not_after)
        return state

    # -- TLS integration ----------------------------------------------------

    def get_context(self, host: str) -> ssl.SSLContext:
        """Return an SSL context serving the certificate for *host*."""
        state = self.get_certificate(host)
        with self._state_lock:
            ctx = self._contexts.get(state.host)
            if ctx is not None and self._states.get(state.host) is state:
                return ctx
        ctx = _context_for(state)
        with self._state_lock:
            self._contexts[state.host] = ctx
        return ctx

    def sni_callback(
        self,
        sslobj: ssl.SSLObject | ssl.SSLSocket,
        server_name: str | None,
        _ctx: ssl.SSLContext,
    ) -> int | None:
        """``SSLContext.sni_callback`` that swaps in the host's context.

        Returns a TLS alert code to abort the handshake when the host is
        missing, unauthorized, or its certificate cannot be obtained.
        """
        if not server_name:
            log.warning("TLS handshake without server name rejected")
            return ssl.ALERT_DESCRIPTION_UNRECOGNIZED_NAME
        try:
            sslobj.context = self.get_context(server_name)
        except CertificateError as exc:
            log.error("No certificate for %s: %s", server_name, exc.detail)
            return ssl.ALERT_DESCRIPTION_INTERNAL_ERROR
        except GatewayError as exc:
            log.warning("TLS handshake for %s rejected: %s", server_name, exc.detail)
            return ssl.ALERT_DESCRIPTION_UNRECOGNIZED_NAME
        except ValueError as exc:
            # names the cache cannot key on, e.g. containing "/"
            log.warning("TLS handshake for %r rejected: %s", server_name, exc)
            return ssl.ALERT_DESCRIPTION_UNRECOGNIZED_NAME
        except OSError as exc:
            log.error("No certificate for %s: %s", server_name, exc)
            return ssl.ALERT_DESCRIPTION_INTERNAL_ERROR
        return None

    def install(self, ctx: ssl.SSLContext) -> ssl.SSLContext:
        """Attach :meth:`sni_callback` to an existing server context."""
        ctx.minimum_version = ssl.TLSVersion.TLSv1_2
        ctx.sni_callback = self.sni_callback
        return ctx

    def server_context(self) -> ssl.SSLContext:
        """Return a listener context whose certificates come from this manager."""
        return self.install(new_server_context())


def _context_for(state: CertificateState) -> ssl.SSLContext:
    """Build a server context holding *state*'s key and chain."""
    ctx = new_server_context()
    # load_cert_chain only reads from files; mkstemp creates them 0600
    fd, path = tempfile.mkstemp(suffix=".pem")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(state.to_bytes())
        ctx.load_cert_chain(path)
    finally:
        Path(path).unlink(missing_ok=True)
    return ctx
