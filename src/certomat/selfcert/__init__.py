"""The gateway's own TLS certificate, obtained and renewed over ACME."""

from certomat.selfcert.cache import DirCache
from certomat.selfcert.handlers import ChallengeHandlerFactory, load_challenge_handler
from certomat.selfcert.manager import CertificateManager, CertificateState

__all__ = [
    "CertificateManager",
    "CertificateState",
    "ChallengeHandlerFactory",
    "DirCache",
    "load_challenge_handler",
]
