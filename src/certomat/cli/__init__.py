"""Command-line interface for certomat."""
