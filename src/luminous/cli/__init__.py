"""CLI package for Luminous."""

from luminous.cli.app import app

__all__ = ["app"]
