"""
CLI layer for convoy.

A Typer application whose commands delegate to :mod:`convoy.workflow`,
:mod:`convoy.render` and :mod:`convoy.readiness`. This package handles only
terminal transport: argument parsing, coloured output, and table formatting.

Entry point::

    convoy --help
"""

from convoy.cli.app import app

__all__ = ["app"]
