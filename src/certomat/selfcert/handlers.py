"""ACME challenge handlers for the gateway's own certificate.

Provide a factory abstraction for creating ACMEOW
:class:`ChallengeHandler` instances from configuration.

The built-in ``standalone_http`` factory answers HTTP-01 from a transient
in-process listener that is bound only while a challenge is deployed.

Custom factories, for example DNS-01 against a provider API, are loaded
via the ``ext:`` prefix (e.g. ``ext:mypackage.handlers.MyFactory``).
"""

from __future__ import annotations

import abc
import importlib
import logging
import socket
import threading
from typing import Any

from werkzeug.serving import make_server
from werkzeug.wrappers import Request, Response

from certomat.errors import CertificateError

log = logging.getLogger(__name__)

CHALLENGE_PATH_PREFIX = "/.well-known/acme-challenge/"


class ChallengeHandlerFactory(abc.ABC):
    """Create an ACMEOW ChallengeHandler from config."""

    @abc.abstractmethod
    def create(self, config: dict[str, Any]) -> Any:
        """Build and return a ChallengeHandler instance.

        Parameters
        ----------
        config:
            The ``acme.challenge_handler_config`` dict from settings.

        Returns
        -------
        acmeow.ChallengeHandler
            A ready-to-use challenge handler.

        """


# ---------------------------------------------------------------------------
# Standalone HTTP-01 responder
# ---------------------------------------------------------------------------


class Http01Responder:
    """WSGI app serving key authorizations for deployed HTTP-01 tokens.

    The listening socket exists only between the first :meth:`deploy`
    and the last :meth:`cleanup`, so port 80 stays free for the
    certbot agent the rest of the time.
    """

    def __init__(self, bind: str, port: int) -> None:
        self._bind = bind
        self._port = port
        self._tokens: dict[str, str] = {}
        self._lock = threading.Lock()
        self._server: Any = None
        self._thread: threading.Thread | None = None

    @property
    def is_listening(self) -> bool:
        return self._server is not None

    def deploy(self, domain: str, token: str, key_authorization: str) -> None:
        log.info("HTTP-01 deploy: token %s for %s", token, domain)
        with self._lock:
            self._tokens[token] = key_authorization
            if self._server is None:
                self._start()

    def cleanup(self, domain: str, token: str) -> None:
        log.info("HTTP-01 cleanup: token %s for %s", token, domain)
        with self._lock:
            self._tokens.pop(token, None)
            if not self._tokens and self._server is not None:
                self._stop()

    def _start(self) -> None:
        # werkzeug exits the process on bind errors, so bind here first
        try:
            sock = socket.create_server((self._bind, self._port))
        except OSError as exc:
            msg = f"cannot bind HTTP-01 responder on {self._bind}:{self._port}: {exc}"
            raise CertificateError(msg) from exc
        with sock:
            self._server = make_server(
                self._bind,
                self._port,
                self,
                threaded=True,
                fd=sock.fileno(),
            )
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="http01-responder",
            daemon=True,
        )
        self._thread.start()
        log.info("HTTP-01 responder listening on %s:%d", self._bind, self._port)

    def _stop(self) -> None:
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join()
        self._server = None
        self._thread = None
        log.info("HTTP-01 responder stopped")

    def __call__(self, environ, start_response):
        request = Request(environ)
        path = request.path
        key_auth = None
        if path.startswith(CHALLENGE_PATH_PREFIX):
            key_auth = self._tokens.get(path[len(CHALLENGE_PATH_PREFIX) :])
        if key_auth is None:
            response = Response("not found", status=404, content_type="text/plain")
        else:
            response = Response(key_auth, status=200, content_type="text/plain")
        return response(environ, start_response)


class StandaloneHttpFactory(ChallengeHandlerFactory):
    """Factory wiring :class:`Http01Responder` into ACMEOW's CallbackHttpHandler.

    Optional config keys:

    - ``bind``: listen address (default ``0.0.0.0``)
    - ``port``: listen port (default: ``acme.http_port``)

    """

    def create(self, config: dict[str, Any]) -> Any:
        """Build a CallbackHttpHandler backed by a transient responder."""
        from acmeow.handlers import CallbackHttpHandler  # noqa: PLC0415

        responder = Http01Responder(
            bind=config.get("bind", "0.0.0.0"),  # noqa: S104
            port=int(config.get("port", 80)),
        )
        return CallbackHttpHandler(
            deploy=responder.deploy,
            cleanup=responder.cleanup,
        )


_BUILTIN_FACTORIES: dict[str, ChallengeHandlerFactory] = {
    "standalone_http": StandaloneHttpFactory(),
}


def load_challenge_handler(handler_name: str, config: dict[str, Any]) -> Any:
    """Load and create a challenge handler.

    Parameters
    ----------
    handler_name:
        Built-in name or ``ext:fully.qualified.FactoryClass`` for custom
        factories.
    config:
        The ``acme.challenge_handler_config`` dict from settings.

    Raises
    ------
    CertificateError
        If the handler cannot be loaded or created.

    """
    if handler_name in _BUILTIN_FACTORIES:
        return _BUILTIN_FACTORIES[handler_name].create(config)

    if handler_name.startswith("ext:"):
        return _load_external_handler(handler_name[4:], config)

    msg = (
        f"Unknown challenge handler '{handler_name}'; "
        f"built-in options: {sorted(_BUILTIN_FACTORIES)}. "
        "Use 'ext:mypackage.module.FactoryClass' for custom handlers."
    )
    raise CertificateError(msg)


def _load_external_handler(fqn: str, config: dict[str, Any]) -> Any:
    """Load and instantiate an external handler factory by FQN."""
    module_path, _, cls_name = fqn.rpartition(".")
    if not module_path:
        msg = (
            f"Invalid external handler factory '{fqn}': must be "
            "fully qualified (e.g. 'mypackage.module.FactoryClass')"
        )
        raise CertificateError(msg)
    try:
        module = importlib.import_module(module_path)
        cls = getattr(module, cls_name)
    except (ImportError, AttributeError) as exc:
        msg = f"Failed to load external handler factory '{fqn}': {exc}"
        raise CertificateError(msg) from exc

    if not (isinstance(cls, type) and issubclass(cls, ChallengeHandlerFactory)):
        msg = f"External handler factory '{fqn}' must be a subclass of ChallengeHandlerFactory"
        raise CertificateError(msg)

    return cls().create(config)
