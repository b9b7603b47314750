# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Output formatting for TMAForm CLI tools.

Supports three output formats:
- json: Machine-readable JSON (default, for piping)
- pretty: Indented JSON for human reading
- table: Rich tables for list data
"""

import json
import sys
from enum import Enum
from typing import Any, Optional, Sequence

import typer
from rich.console import Console
from rich.table import Table


class OutputFormat(str, Enum):
    """Output format options."""

    json = "json"
    pretty = "pretty"
    table = "table"


def output_json(data: Any, pretty: bool = False) -> None:
    """Output data as JSON to stdout."""
    indent = 2 if pretty else None
    try:
        typer.echo(json.dumps(data, indent=indent, default=str, ensure_ascii=False))
    except TypeError as e:
        typer.echo(f"Error serializing output: {e}", err=True)
        raise typer.Exit(2) from e


def output_table(
    data: Sequence[dict[str, Any]],
    columns: Optional[list[str]] = None,
    title: Optional[str] = None,
) -> None:
    """Output data as a rich table."""
    if not data:
        typer.echo("No data to display.", err=True)
        return

    if columns is None:
        columns = list(data[0].keys())

    console = Console()
    table = Table(title=title, show_header=True, header_style="bold")
    for col in columns:
        table.add_column(col)
    for row in data:
        table.add_row(*[str(row.get(col, "")) for col in columns])

    console.print(table)


def output(
    data: Any,
    format: OutputFormat = OutputFormat.json,
    table_columns: Optional[list[str]] = None,
    table_title: Optional[str] = None,
) -> None:
    """Output data in the specified format."""
    if format == OutputFormat.json:
        output_json(data, pretty=False)
    elif format == OutputFormat.pretty:
        output_json(data, pretty=True)
    elif isinstance(data, list):
        output_table(data, columns=table_columns, title=table_title)
    elif isinstance(data, dict):
        items = [{"key": k, "value": str(v)} for k, v in data.items()]
        output_table(items, columns=["key", "value"], title=table_title)
    else:
        typer.echo("Table format requires list or dict data. Falling back to JSON.", err=True)
        output_json(data, pretty=True)


def output_error(
    code: str,
    message: str,
    details: Optional[dict[str, Any]] = None,
    exit_code: int = 1,
) -> None:
    """Write an error as JSON to stderr and exit with *exit_code*."""
    error_data: dict[str, Any] = {
        "error": True,
        "code": code,
        "message": message,
    }
    if details:
        error_data["details"] = details

    print(json.dumps(error_data, ensure_ascii=False), file=sys.stderr)
    raise typer.Exit(exit_code)
