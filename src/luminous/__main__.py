"""Luminous CLI entry point."""

from luminous.cli import app

if __name__ == "__main__":
    app()
