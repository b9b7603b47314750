# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""TMAForm CLI - main entry point with subcommand registration."""

import logging

import typer

from app.cli import __version__, forms, keys

app = typer.Typer(
    name="tmaform",
    help="TMAForm tools - signed Telegram Mini App form links.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"tmaform version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log to stderr at DEBUG level."),
) -> None:
    """TMAForm tools - signed Telegram Mini App form links.

    Output is JSON by default for easy piping between commands.

    Examples:
        tmaform keys generate -o ./keys
        tmaform form link -t Survey --fields fields.json -c https://x/cb -k keys/private.pem
        tmaform form decode "$LINK" | jq .fields
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


app.add_typer(keys.app, name="keys", help="Generate signing keys and verify signatures")
app.add_typer(forms.app, name="form", help="Build, decode and submit form deep links")


if __name__ == "__main__":
    app()
