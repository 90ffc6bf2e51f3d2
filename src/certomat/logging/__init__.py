"""Logging subsystem for certomat.

Public API::

    from certomat.logging import configure_logging

    configure_logging(settings.logging)
"""

from certomat.logging.setup import configure_logging

__all__ = ["configure_logging"]
