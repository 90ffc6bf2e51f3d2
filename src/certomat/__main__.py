"""Allow ``python -m certomat``."""

from certomat.cli.main import main

main()
