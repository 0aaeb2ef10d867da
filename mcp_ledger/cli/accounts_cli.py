# mcp_ledger/cli/accounts_cli.py
import typer
from typing import Optional
from typing_extensions import Annotated

from .utils_cli import make_api_request

invite_app = typer.Typer(
    name="invite",
    help="Manage registration invite codes via Admin API.",
    no_args_is_help=True
)

users_app = typer.Typer(
    name="users",
    help="Inspect gateway users via Admin API.",
    no_args_is_help=True
)


@invite_app.command("create")
def create_invite(
    max_uses: Annotated[
        int,
        typer.Option("--max-uses", min=1, help="How many registrations the code allows.")
    ] = 1,
    expires_in_days: Annotated[
        Optional[int],
        typer.Option("--expires-in-days", min=1, help="Days until the code stops working.")
    ] = None,
    created_by: Annotated[
        Optional[str],
        typer.Option("--created-by", help="Free-text note of who issued the code.")
    ] = None,
):
    """Create a new invite code."""
    payload = {"max_uses": max_uses}
    if expires_in_days is not None:
        payload["expires_in_days"] = expires_in_days
    if created_by:
        payload["created_by"] = created_by
    make_api_request("POST", "/admin/invites", json_payload=payload, expected_status=201)


@invite_app.command("list")
def list_invites():
    """List invite codes and how often they were used."""
    make_api_request("GET", "/admin/invites")


@users_app.command("list")
def list_users():
    """List registered users."""
    make_api_request("GET", "/admin/users")
