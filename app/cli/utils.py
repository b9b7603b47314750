# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Shared helpers for TMAForm CLI tools."""

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, Coroutine, TypeVar

import typer

# Exit codes
EXIT_VALIDATION_FAILURE = 1
EXIT_PARSE_ERROR = 2
EXIT_IO_ERROR = 3

T = TypeVar("T")


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run an async function from the sync CLI context."""
    return asyncio.run(coro)


def read_input(source: str) -> str:
    """Read text from stdin ("-"), a file path, or the literal argument."""
    try:
        if source == "-":
            return sys.stdin.read()
        # Long literals (deep links) can exceed the OS path length limit.
        if os.path.isfile(source):
            return Path(source).read_text(encoding="utf-8")
        return source
    except OSError as e:
        typer.echo(f"Error reading input: {e}", err=True)
        raise typer.Exit(EXIT_IO_ERROR) from e


def read_json_input(source: str) -> Any:
    """Read and parse JSON from stdin, a file path, or the literal argument."""
    content = read_input(source)
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        typer.echo(f"Invalid JSON: {e}", err=True)
        raise typer.Exit(EXIT_PARSE_ERROR) from e


def parse_assignment(value: str) -> tuple[str, str]:
    """Split a ``key=value`` option."""
    key, sep, raw = value.partition("=")
    if not sep or not key:
        raise typer.BadParameter(f"expected key=value, got {value!r}")
    return key, raw
