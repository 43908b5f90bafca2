"""relspine CLI -- Typer-based command line interface."""

from relspine.cli.app import app

__all__ = ["app"]
