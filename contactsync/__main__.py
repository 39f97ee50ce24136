"""
Entry point for running contactsync as a module.

Usage:
    python -m contactsync --help
    python -m contactsync sources list
    python -m contactsync sync --all
"""

from contactsync.cli import cli

if __name__ == "__main__":
    cli()
