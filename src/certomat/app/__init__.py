"""Flask application package for certomat.

Public API::

    from certomat.app import create_app
"""

from certomat.app.factory import create_app

__all__ = ["create_app"]
