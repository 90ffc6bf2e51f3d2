"""Certomat: HTTPS gateway that turns CSRs into publicly trusted certificates."""

__version__ = "1.0.0"

# Replaced by the release build with the git commit hash.
__revision__ = "dev"
