"""
Root Typer application for the relspine CLI.

Transition commands are registered at the top level (``relspine upgrade``,
``relspine rollback``); logging is configured once in the root callback so
every command logs the same way.
"""

from __future__ import annotations

import typer
from typer import Typer

from relspine.core.logging import configure_logging

app = Typer(
    name="relspine",
    help="relspine: risk-aware upgrade and rollback of Helm releases.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("relspine")
        except PackageNotFoundError:
            from relspine import __version__ as v
        typer.echo(f"relspine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str = typer.Option(
        "INFO", "--log-level", envvar="RELSPINE_LOG_LEVEL", help="DEBUG, INFO, WARNING or ERROR.",
    ),
    log_json: bool | None = typer.Option(
        None, "--log-json/--log-console", help="Force JSON or console logs (default: JSON unless a terminal).",
    ),
) -> None:
    """relspine CLI: classify, upgrade, roll back and watch a release."""
    configure_logging(level=log_level, json_format=log_json, service="relspine")


# ── Command registration ─────────────────────────────────────────────────

from relspine.cli.transition import classify_cmd, rollback, status, upgrade  # noqa: E402

app.command("upgrade", help="Upgrade a release to a newer app version.")(upgrade)
app.command("rollback", help="Roll a release back to an earlier revision.")(rollback)
app.command("classify", help="Classify a version move (MAJOR / MINOR / PATCH).")(classify_cmd)
app.command("status", help="One-shot readiness table for a namespace.")(status)
