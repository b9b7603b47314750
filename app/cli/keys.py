# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Key commands.

Commands:
    tmaform keys generate         Create an RSA keypair
    tmaform keys verify           Verify a metadata token signature
"""

import base64
from pathlib import Path
from typing import Optional

import typer

from app.cli.output import OutputFormat, output, output_error
from app.cli.utils import EXIT_IO_ERROR, EXIT_PARSE_ERROR, EXIT_VALIDATION_FAILURE, read_input
from app.teleform import codec
from app.teleform.exceptions import DecodeError, KeyLoadError
from app.teleform.signing import (
    DEFAULT_KEY_SIZE,
    generate_private_key,
    load_public_key,
    private_key_pem,
    public_key_pem,
    verify_token,
)

app = typer.Typer(
    name="keys",
    help="Generate signing keys and verify signatures.",
    no_args_is_help=True,
)


@app.command("generate")
def generate_cmd(
    bits: int = typer.Option(DEFAULT_KEY_SIZE, "--bits", help="RSA modulus size"),
    out_dir: Optional[Path] = typer.Option(
        None,
        "--out-dir",
        "-o",
        help="Write private.pem and public.pem into this directory",
    ),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """Generate an RSA keypair for signing form metadata.

    Prints the base64-wrapped PEMs for the TMAFORM_B64_PRIVATE_KEY and
    TMAFORM_B64_PUBLIC_KEY environment variables.

    Examples:
        tmaform keys generate
        tmaform keys generate --bits 3072 -o ./keys
    """
    key = generate_private_key(bits)
    private_pem = private_key_pem(key)
    public_pem = public_key_pem(key)

    result = {
        "TMAFORM_B64_PRIVATE_KEY": base64.b64encode(private_pem).decode("ascii"),
        "TMAFORM_B64_PUBLIC_KEY": base64.b64encode(public_pem).decode("ascii"),
    }

    if out_dir is not None:
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
            (out_dir / "private.pem").write_bytes(private_pem)
            (out_dir / "public.pem").write_bytes(public_pem)
        except OSError as e:
            output_error("IO_ERROR", str(e), exit_code=EXIT_IO_ERROR)
        result["private_pem_path"] = str(out_dir / "private.pem")
        result["public_pem_path"] = str(out_dir / "public.pem")

    output(result, format, table_title="Signing keypair")


@app.command("verify")
def verify_cmd(
    metadata: str = typer.Option(..., "--metadata", "-m", help="Metadata token (base64url)"),
    signature: str = typer.Option(..., "--signature", "-s", help="Signature token (base64url)"),
    public_key: Path = typer.Option(..., "--public-key", "-k", help="Issuer public key PEM file"),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """Check that a metadata token was signed by the issuer.

    Exits 0 when the signature is valid and 1 otherwise.

    Examples:
        tmaform keys verify -m eyJ1c2VyaWQiOjQyfQ -s AbC... -k public.pem
    """
    try:
        key = load_public_key(read_input(str(public_key)))
    except KeyLoadError as e:
        output_error(e.code, e.message, exit_code=EXIT_PARSE_ERROR)
        return

    valid = verify_token(key, metadata.strip(), signature.strip())
    result: dict = {"valid": valid}
    if valid:
        try:
            result["metadata"] = codec.decode(metadata.strip())
        except DecodeError as e:
            result["metadata_error"] = e.reason

    output(result, format, table_title="Signature")
    if not valid:
        raise typer.Exit(EXIT_VALIDATION_FAILURE)
