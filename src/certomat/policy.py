"""Domain policy gate.

Decides whether a host name belongs to the administrative domain the
gateway is responsible for.  A single :class:`DomainPolicy` instance is
built at startup and shared by the TLS certificate manager and, when
enabled, the CSR issuance path, so both apply the same rule.

Rule: strip one trailing ``.`` (FQDNs may end in a dot), lower-case,
then drop the leftmost label.  What remains is the *base domain*, which
must be in the configured set::

    policy = DomainPolicy(["example.com"])
    policy.authorize("Sub.Example.com.")   # True
    policy.authorize("evil.com")           # False
    policy.authorize("nodots")             # raises MalformedHost
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from certomat.errors import MalformedHost, PolicyDenied

if TYPE_CHECKING:
    from collections.abc import Iterable

log = logging.getLogger(__name__)


def normalize_host(host: str) -> str:
    """Strip a single trailing dot and lower-case *host*."""
    # Let's Encrypt rejects trailing dots, so one is always dropped here.
    host = host.removesuffix(".")
    return host.lower()


def base_domain(host: str) -> str:
    """Return *host* with its leftmost label removed.

    ``a.b.example.com`` → ``b.example.com``.

    Raises
    ------
    MalformedHost
        If *host* has fewer than two labels.

    """
    labels = normalize_host(host).split(".")
    if len(labels) < 2:  # noqa: PLR2004
        msg = f"host {host} has no dots"
        raise MalformedHost(msg)
    return ".".join(labels[1:])


class DomainPolicy:
    """Whitelist of base domains allowed to receive certificates.

    Parameters
    ----------
    domains:
        Base domains (e.g. ``["example.com"]``).  Normalised the same way
        as hosts; must not be empty.

    """

    def __init__(self, domains: Iterable[str]) -> None:
        normalized = frozenset(normalize_host(d.strip()) for d in domains if d and d.strip())
        if not normalized:
            msg = "DomainPolicy requires at least one domain"
            raise ValueError(msg)
        self._domains = normalized

    @property
    def domains(self) -> frozenset[str]:
        """The immutable set of authorized base domains."""
        return self._domains

    def authorize(self, host: str) -> bool:
        """Return ``True`` when *host* falls under an authorized domain.

        The apex itself (``example.com`` or ``example.com.``) is also
        accepted. Its base domain is ``com``, which is never in the set, so
        the base-domain rule alone would refuse the very domain the gateway
        serves; the apex check keeps the documented
        ``authorize("example.com.") -> True`` behaviour.

        Raises
        ------
        MalformedHost
            If *host* has fewer than two labels.

        """
        dom = base_domain(host)
        if dom in self._domains:
            return True
        return normalize_host(host) in self._domains

    def check(self, host: str) -> None:
        """Raise :class:`PolicyDenied` unless :meth:`authorize` accepts *host*."""
        if not self.authorize(host):
            dom = base_domain(host)
            log.info("Policy denied host %s (base domain %s)", host, dom)
            msg = f"certomat: domain {dom} not allowed"
            raise PolicyDenied(msg)

    def __repr__(self) -> str:
        return f"<DomainPolicy domains={sorted(self._domains)}>"
