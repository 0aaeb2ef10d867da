# mcp_ledger/cli/utils_cli.py
import json
from typing import Any, Dict, List, Optional, Union

import requests
import typer

from . import config
from ..utils.security import FernetEncryptor, generate_fernet_key, generate_signing_secret

app = typer.Typer(
    name="utils",
    help="Key generation and configuration checks.",
    no_args_is_help=True
)


def make_api_request(
    method: str,
    endpoint: str,
    json_payload: Optional[Dict[str, Any]] = None,
    params_payload: Optional[Dict[str, Any]] = None,
    expected_status: Union[int, List[int]] = 200,
) -> Any:
    """
    Call the gateway's admin API and print the JSON response.

    Sends the admin API key when configured. Any unexpected status or
    connection failure prints the error and exits with code 1.
    """
    full_url = f"{config.LEDGER_CLI_API_BASE_URL.rstrip('/')}{endpoint}"
    headers: Dict[str, str] = {}

    if config.LEDGER_CLI_ADMIN_API_KEY:
        headers["X-Admin-API-Key"] = config.LEDGER_CLI_ADMIN_API_KEY
    elif endpoint.startswith("/admin"):
        typer.secho(
            "CLI: Warning - ADMIN_API_KEY not set in .env for CLI. Admin API calls will be rejected.",
            fg=typer.colors.YELLOW
        )

    typer.echo(f"CLI: {method.upper()} {full_url}")
    if json_payload:
        typer.echo(f"CLI: JSON Payload: {json.dumps(json_payload, indent=2)}")
    if params_payload:
        typer.echo(f"CLI: Query Params: {params_payload}")

    try:
        response = requests.request(
            method,
            full_url,
            json=json_payload,
            params=params_payload,
            headers=headers,
            timeout=config.LEDGER_CLI_TIMEOUT_SECONDS
        )
    except requests.exceptions.ConnectionError as e:
        typer.secho(
            f"CLI: Connection Error - Could not connect to API at {full_url}. Is the server running? Error: {e}",
            fg=typer.colors.RED
        )
        raise typer.Exit(code=1)
    except requests.exceptions.RequestException as e:
        typer.secho(f"CLI: Request Error - {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(f"CLI: Response Status: {response.status_code}")
    expected_statuses = [expected_status] if isinstance(expected_status, int) else expected_status

    if response.status_code not in expected_statuses:
        err_msg = f"CLI: API Error - Expected status {expected_status}, got {response.status_code}."
        try:
            err_msg += f" Detail: {response.json().get('detail', response.text)}"
        except ValueError:
            err_msg += f" Raw response: {response.text}"
        typer.secho(err_msg, fg=typer.colors.RED)
        raise typer.Exit(code=1)

    if not response.content:
        typer.secho(f"CLI: Success (Status {response.status_code}, No Content).", fg=typer.colors.GREEN)
        return None
    try:
        data = response.json()
    except ValueError:
        typer.secho(f"CLI: Error - Could not decode JSON response. Raw text: {response.text}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(typer.style("CLI: Response JSON:", fg=typer.colors.CYAN))
    typer.echo(json.dumps(data, indent=2))
    return data


@app.command("generate-secret")
def generate_secret(
    num_bytes: int = typer.Option(48, "--bytes", min=32, help="Random bytes before encoding.")
):
    """Generate a value for BEARER_SIGNING_SECRET, OAUTH_CLIENT_SECRET or ADMIN_API_KEY."""
    typer.echo(generate_signing_secret(num_bytes))


@app.command("generate-fernet-key")
def generate_fernet_key_command():
    """Generate a CREDENTIAL_ENCRYPTION_KEY for encrypting stored Xero tokens."""
    typer.echo(generate_fernet_key())
    typer.echo("Add this to your .env file as CREDENTIAL_ENCRYPTION_KEY", err=True)


@app.command("check-config")
def check_config():
    """Report missing required secrets and an unusable encryption key."""
    from ..settings import Settings

    current = Settings()
    problems = 0
    for env_name in current.missing_required_secrets():
        typer.secho(f"Missing: {env_name}", fg=typer.colors.RED)
        problems += 1

    if not current.credential_encryption_key:
        typer.secho(
            "Warning: CREDENTIAL_ENCRYPTION_KEY not set; Xero tokens will be stored unencrypted.",
            fg=typer.colors.YELLOW
        )
    elif not FernetEncryptor(current.credential_encryption_key).key_valid:
        typer.secho("Invalid: CREDENTIAL_ENCRYPTION_KEY is not a valid Fernet key.", fg=typer.colors.RED)
        problems += 1

    if not current.admin_api_key:
        typer.secho("Warning: ADMIN_API_KEY not set; the admin API is disabled.", fg=typer.colors.YELLOW)

    if problems:
        raise typer.Exit(code=1)
    typer.secho("Configuration OK.", fg=typer.colors.GREEN)
