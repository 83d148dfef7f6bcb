"""
Main entry point for running onionrc as a module.

Usage:
    python -m onionrc generate --stdout
    python -m onionrc bridges --type obfs4
    python -m onionrc check-port 9050
"""

from .cli import cli

if __name__ == "__main__":
    cli()
