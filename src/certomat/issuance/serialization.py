"""Process-wide serialization of work against the external issuance agent.

certbot keeps its accounts, locks and scratch files in shared working
directories and cannot tolerate concurrent invocations; the gateway's
own ACME renewal competes for the same HTTP-01 port.  A single
:class:`SerializationToken` is created at startup and handed to both
the CSR issuer and the self-certificate manager, so at most one of them
talks to a certificate authority at any instant.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

log = logging.getLogger(__name__)


class SerializationToken:
    """Mutual-exclusion marker held for the full duration of one issuance.

    Blocking and non-reentrant: a holder that tries to acquire again
    deadlocks, which is a programming error rather than a runtime
    condition.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._holder: str | None = None

    @property
    def holder(self) -> str | None:
        """Purpose string of the current holder, or ``None`` when free."""
        return self._holder

    def locked(self) -> bool:
        """Return ``True`` while some caller holds the token."""
        return self._lock.locked()

    @contextlib.contextmanager
    def hold(self, purpose: str) -> Iterator[None]:
        """Block until the token is free, then hold it for the ``with`` body.

        Parameters
        ----------
        purpose:
            Short description used in log lines (e.g. ``"csr:host"``).

        """
        waited_from = time.monotonic()
        if self._lock.locked():
            log.info(
                "Waiting for issuance token (held by %s) for %s",
                self._holder,
                purpose,
            )
        self._lock.acquire()
        acquired_at = time.monotonic()
        self._holder = purpose
        log.debug(
            "Issuance token acquired for %s after %.1fms",
            purpose,
            (acquired_at - waited_from) * 1000,
        )
        try:
            yield
        finally:
            self._holder = None
            self._lock.release()
            log.debug(
                "Issuance token released by %s after %.1fms",
                purpose,
                (time.monotonic() - acquired_at) * 1000,
            )
