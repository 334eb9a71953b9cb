"""
Command-line interface for didjwt.

Usage:
    didjwt decode eyJhbGciOi...
    didjwt verify token.jwt --did-document issuer.json --audience did:example:me
    cat token.jwt | didjwt verify - --resolver-url https://dev.uniresolver.io
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from didjwt.codec import JWS_PATTERN, Envelope, decode_jwt
from didjwt.did_resolver import PROOF_PURPOSES, StaticResolver, UniversalResolver
from didjwt.errors import DIDJWTError
from didjwt.jwt import VerificationResult, verify_jwt
from didjwt.log import configure_logging
from didjwt.options import JWTVerifyPolicies, verify_options

console = Console()

EXIT_VALID = 0
EXIT_INVALID = 1
EXIT_ERROR = 2


def load_token(source: str) -> str:
    """Load a token given literally, from a file, or from stdin ("-")."""
    if source == "-":
        return sys.stdin.read().strip()

    if JWS_PATTERN.fullmatch(source):
        return source

    path = Path(source)
    if not path.is_file():
        raise click.ClickException(f"File not found: {source}")
    return path.read_text().strip()


def load_did_documents(paths: tuple[str, ...]) -> StaticResolver:
    """Build a resolver from DID document (or resolution result) JSON files."""
    resolver = StaticResolver()
    for source in paths:
        with open(source) as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise click.ClickException(f"{source} does not contain a JSON object")
        document = data.get("didDocument", data)
        if not isinstance(document, dict) or "id" not in document:
            raise click.ClickException(f"{source} does not contain a DID document with an id")
        resolver.add(document)
    return resolver


def _claims_table(claims: dict[str, Any]) -> Table:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Claim", style="dim")
    table.add_column("Value")
    for key, value in claims.items():
        table.add_row(key, Text(value if isinstance(value, str) else json.dumps(value)))
    return table


def format_envelope(envelope: Envelope) -> None:
    """Print a decoded JWT."""
    console.print(Panel(_claims_table(envelope.header), title="Header", border_style="blue"))
    console.print(Panel(_claims_table(envelope.claims), title="Payload", border_style="blue"))


def format_result(result: VerificationResult, alg: str | None) -> None:
    """Format and print a successful verification."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="dim")
    table.add_column("Value")

    table.add_row("Status", "[bold green]VALID[/]")
    table.add_row("Issuer", result.issuer)
    table.add_row("Signer", result.signer.id)
    table.add_row("Key Type", result.signer.type)
    if alg:
        table.add_row("Algorithm", alg)

    console.print(Panel(table, title="Verification Result", border_style="green"))
    console.print(Panel(_claims_table(result.claims), title="Claims", border_style="dim"))


def format_failure(error: DIDJWTError) -> None:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Status", "[bold red]INVALID[/]")
    table.add_row("Code", error.code)
    table.add_row("Reason", Text(error.message))
    console.print(Panel(table, title="Verification Result", border_style="red"))


def _print_error(message: str, json_output: bool) -> None:
    if json_output:
        console.print_json(data={"error": message})
    else:
        console.print(f"[red]Error:[/] {message}")


@click.group()
@click.option("--log-level", default=None, help="Minimum log level (DEBUG, INFO, WARNING, ERROR)")
@click.option(
    "--log-format",
    type=click.Choice(["console", "json"]),
    default=None,
    help="Log output format",
)
@click.version_option(package_name="didjwt")
def main(log_level: str | None, log_format: str | None) -> None:
    """Decode and verify DID-signed JWTs."""
    configure_logging(log_format=log_format, log_level=log_level, force=True)


@main.command()
@click.argument("token", required=True)
@click.option("--no-recurse", is_flag=True, help="Do not unwrap nested JWTs")
@click.option("--json-output", is_flag=True, help="Output result as JSON")
def decode(token: str, no_recurse: bool, json_output: bool) -> None:
    """Decode a JWT without verifying it.

    TOKEN can be the token itself, a file containing it, or "-" for stdin.
    """
    try:
        envelope = decode_jwt(load_token(token), recurse=not no_recurse)
    except DIDJWTError as e:
        if json_output:
            console.print_json(data={"error": e.to_dict()})
        else:
            console.print(f"[red]Invalid JWT:[/] {e}")
        sys.exit(EXIT_INVALID)
    except Exception as e:
        _print_error(str(e), json_output)
        sys.exit(EXIT_ERROR)

    if json_output:
        console.print_json(
            data={"header": envelope.header, "payload": envelope.claims, "signature": envelope.signature}
        )
    else:
        format_envelope(envelope)
    sys.exit(EXIT_VALID)


@main.command()
@click.argument("token", required=True)
@click.option(
    "--did-document",
    "did_documents",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False),
    help="DID document JSON file to resolve against (repeatable)",
)
@click.option("--resolver-url", default=None, help="Base URL of a DID resolution endpoint")
@click.option("--audience", default=None, help="Expected aud value")
@click.option("--callback-url", default=None, help="Accepted callback URL in aud")
@click.option(
    "--proof-purpose",
    type=click.Choice(list(PROOF_PURPOSES)),
    default=None,
    help="Verification relationship the signing key must belong to",
)
@click.option("--skew", type=int, default=None, help="Clock skew allowance in seconds")
@click.option("--no-exp", is_flag=True, help="Skip the exp check")
@click.option("--no-nbf", is_flag=True, help="Skip the nbf check")
@click.option("--no-iat", is_flag=True, help="Skip the iat check")
@click.option("--no-aud", is_flag=True, help="Skip the aud check")
@click.option("--timeout", type=float, default=30.0, help="HTTP request timeout in seconds")
@click.option("--no-ssl-verify", is_flag=True, help="Disable SSL certificate verification")
@click.option("--json-output", is_flag=True, help="Output result as JSON")
def verify(
    token: str,
    did_documents: tuple[str, ...],
    resolver_url: str | None,
    audience: str | None,
    callback_url: str | None,
    proof_purpose: str | None,
    skew: int | None,
    no_exp: bool,
    no_nbf: bool,
    no_iat: bool,
    no_aud: bool,
    timeout: float,
    no_ssl_verify: bool,
    json_output: bool,
) -> None:
    """Verify a DID-signed JWT.

    TOKEN can be the token itself, a file containing it, or "-" for stdin.
    Issuer DIDs are resolved from --did-document files or a resolution
    endpoint given with --resolver-url.

    Examples:

        didjwt verify token.jwt --did-document issuer.json

        didjwt verify eyJ0eXAi... --resolver-url https://dev.uniresolver.io
    """
    if not did_documents and not resolver_url:
        raise click.UsageError("one of --did-document or --resolver-url is required")

    try:
        jwt = load_token(token)
        if did_documents:
            resolver = load_did_documents(did_documents)
        else:
            resolver = UniversalResolver(resolver_url, timeout=timeout, verify_ssl=not no_ssl_verify)
    except json.JSONDecodeError as e:
        _print_error(f"Invalid JSON: {e}", json_output)
        sys.exit(EXIT_ERROR)
    except (click.ClickException, OSError) as e:
        _print_error(str(e), json_output)
        sys.exit(EXIT_ERROR)

    options = verify_options(
        resolver=resolver,
        audience=audience,
        callback_url=callback_url,
        proof_purpose=proof_purpose,
        skew_time=skew,
        policies=JWTVerifyPolicies(exp=not no_exp, nbf=not no_nbf, iat=not no_iat, aud=not no_aud),
    )

    try:
        result = asyncio.run(verify_jwt(jwt, options))
    except DIDJWTError as e:
        if json_output:
            console.print_json(data={"verified": False, "error": e.to_dict()})
        else:
            format_failure(e)
        sys.exit(EXIT_INVALID)
    except Exception as e:
        _print_error(str(e), json_output)
        sys.exit(EXIT_ERROR)

    if json_output:
        console.print_json(data=result.to_dict())
    else:
        format_result(result, decode_jwt(jwt, recurse=False).header.get("alg"))
    sys.exit(EXIT_VALID)


if __name__ == "__main__":
    main()
