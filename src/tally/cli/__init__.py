"""
CLI layer for tally.

Provides a Typer application whose commands delegate to
:mod:`tally.deploy` and :mod:`tally.service`. This package handles only
terminal transport: argument parsing, coloured output and exit codes.

Entry point::

    tally --help
"""

from tally.cli.app import app

__all__ = ["app"]
