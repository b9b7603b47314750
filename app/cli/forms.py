# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Form link commands.

Commands:
    tmaform form link      Build a (signed) deep link
    tmaform form decode    Decode and validate a deep link
    tmaform form submit    Fill in a form and POST it to its callback
"""

import json
from pathlib import Path
from typing import Any, List, Optional

import typer

from app.cli.output import OutputFormat, output, output_error
from app.cli.utils import (
    EXIT_PARSE_ERROR,
    EXIT_VALIDATION_FAILURE,
    parse_assignment,
    read_input,
    read_json_input,
    run_async,
)
from app.config import DEFAULT_FORM_BASE_URL, DEFAULT_SUBMIT_TIMEOUT_SECONDS
from app.teleform.decoder import FormEnvelope, decode_form_url
from app.teleform.exceptions import KeyLoadError, ParamError, SchemaError, TeleFormError
from app.teleform.link import FormIssuer
from app.teleform.result import Err
from app.teleform.schema import FieldDefinition, FieldType
from app.teleform.session import FormSession
from app.teleform.signing import load_private_key

app = typer.Typer(
    name="form",
    help="Build, decode and submit form deep links.",
    no_args_is_help=True,
)


def envelope_to_dict(envelope: FormEnvelope) -> dict[str, Any]:
    return {
        "title": envelope.title,
        "description": envelope.description,
        "callbackUrl": envelope.callback_url,
        "fields": [f.to_dict() for f in envelope.fields],
        "metadata": envelope.metadata,
        "metadata_token": envelope.metadata_token,
        "signature_token": envelope.signature_token,
    }


def _cli_value(field: FieldDefinition, raw: str) -> Any:
    """Interpret a command-line string for *field*."""
    if field.type is FieldType.BOOLEAN:
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if field.type is FieldType.MULTISELECT:
        if raw.strip().startswith("["):
            try:
                return json.loads(raw)
            except json.JSONDecodeError as e:
                raise typer.BadParameter(f"{field.key}: {e}") from e
        return [item.strip() for item in raw.split(",") if item.strip()]
    return raw


@app.command("link")
def link_cmd(
    title: str = typer.Option(..., "--title", "-t", help="Form title"),
    fields: str = typer.Option(..., "--fields", help="Field definitions: JSON, file path or '-'"),
    callback_url: str = typer.Option(..., "--callback-url", "-c", help="Submission URL"),
    metadata: Optional[str] = typer.Option(
        None, "--metadata", "-m", help="Metadata object: JSON or file path"
    ),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Subtitle"),
    base_url: str = typer.Option(DEFAULT_FORM_BASE_URL, "--base-url", help="Mini App URL"),
    private_key: Optional[Path] = typer.Option(
        None, "--private-key", "-k", help="Issuer private key PEM; omit for an unsigned link"
    ),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """Encode a form and sign its metadata into a Mini App deep link.

    Examples:
        tmaform form link -t "Survey" --fields fields.json -c https://bot.example/submitForm
        tmaform form link -t "Survey" --fields fields.json -c https://x/cb \\
            -m '{"userid": 42}' -k private.pem
    """
    key = None
    if private_key is not None:
        try:
            key = load_private_key(read_input(str(private_key)))
        except KeyLoadError as e:
            output_error(e.code, e.message, exit_code=EXIT_PARSE_ERROR)
            return

    field_list = read_json_input(fields)
    if not isinstance(field_list, list):
        output_error("FORM_NOT_ARRAY", "--fields must be a JSON array", exit_code=EXIT_PARSE_ERROR)
        return
    meta = read_json_input(metadata) if metadata is not None else None
    if meta is not None and not isinstance(meta, dict):
        output_error("METADATA_INVALID", "--metadata must be a JSON object", exit_code=EXIT_PARSE_ERROR)
        return

    try:
        link = FormIssuer(base_url, key).issue(
            title, field_list, callback_url, metadata=meta, description=description
        )
    except SchemaError as e:
        output_error(e.code, e.message, {"index": e.index, "key": e.key}, EXIT_VALIDATION_FAILURE)
        return
    except ParamError as e:
        output_error(e.code, e.message, {"param": e.param}, EXIT_VALIDATION_FAILURE)
        return

    output(
        {"url": link.url, "signed": link.tokens.signature is not None},
        format,
        table_title="Form link",
    )


@app.command("decode")
def decode_cmd(
    url: str = typer.Argument(..., help="Deep link URL, file path, or '-' for stdin"),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """Decode a deep link exactly as the Mini App would.

    Exits 2 with the paramError diagnostic when the link is unusable.

    Examples:
        tmaform form decode "https://tmaform.example/?title=VGVzdA&form=..."
    """
    result = decode_form_url(read_input(url).strip())
    if isinstance(result, Err):
        error = result.error
        output_error(
            error.code,
            error.message,
            {"param": error.param, "missing": list(error.missing)} if error.param or error.missing else None,
            EXIT_PARSE_ERROR,
        )
        return
    output(envelope_to_dict(result.value), format, table_title="Form")


@app.command("submit")
def submit_cmd(
    url: str = typer.Argument(..., help="Deep link URL, file path, or '-' for stdin"),
    values: List[str] = typer.Option([], "--value", "-v", help="Field value as key=value"),
    timeout: float = typer.Option(DEFAULT_SUBMIT_TIMEOUT_SECONDS, "--timeout", help="Seconds"),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """Fill in a form from the command line and POST it to its callback.

    Multiselect values take a comma list or a JSON array.

    Examples:
        tmaform form submit "$LINK" -v username=alice -v libraries=@grammyjs/runner
    """
    session = FormSession.from_url(read_input(url).strip(), timeout=timeout)
    if session.envelope is None:
        output_error(session.error.code, session.error.message, exit_code=EXIT_PARSE_ERROR)
        return

    for assignment in values:
        key, raw = parse_assignment(assignment)
        try:
            field = session.envelope.field(key)
        except KeyError:
            output_error("UNKNOWN_FIELD", f"Form has no field {key!r}", exit_code=EXIT_VALIDATION_FAILURE)
            return
        session.set_value(key, _cli_value(field, raw))

    try:
        response = run_async(session.submit())
    except TeleFormError as e:
        details = getattr(e, "errors", None)
        output_error(e.code, e.message, details, EXIT_VALIDATION_FAILURE)
        return

    output(
        {"state": session.state.value, "status_code": response.status_code, "payload": session.payload()},
        format,
        table_title="Submission",
    )
