# mcp_ledger/cli/permissions_cli.py
import typer
from datetime import datetime
from typing import Optional
from typing_extensions import Annotated

from .utils_cli import make_api_request

permissions_app = typer.Typer(
    name="permissions",
    help="Manage user permission tiers via Admin API.",
    no_args_is_help=True
)

snapshots_app = typer.Typer(
    name="snapshots",
    help="Read the operation audit trail via Admin API.",
    no_args_is_help=True
)

UserIdArg = Annotated[str, typer.Argument(help="The gateway user id.")]
LevelArg = Annotated[
    int,
    typer.Argument(min=0, max=3, help="0 read-only, 1 create drafts, 2 approve/update, 3 delete/void.")
]


@permissions_app.command("show")
def show_permissions(user_id: UserIdArg):
    """Show the level, overrides and vacation mode of a user."""
    make_api_request("GET", f"/admin/permissions/{user_id}")


@permissions_app.command("set-level")
def set_level(user_id: UserIdArg, level: LevelArg):
    """Set a user's global permission level."""
    make_api_request("PUT", f"/admin/permissions/{user_id}/level", json_payload={"permission_level": level})


@permissions_app.command("set-override")
def set_override(
    user_id: UserIdArg,
    capability_group: Annotated[str, typer.Argument(help="Capability group, e.g. 'invoices'.")],
    level: LevelArg,
):
    """Cap one capability group below the user's global level."""
    make_api_request(
        "PUT",
        f"/admin/permissions/{user_id}/overrides",
        json_payload={"capability_group": capability_group, "permission_level": level},
    )


@permissions_app.command("clear-override")
def clear_override(
    user_id: UserIdArg,
    capability_group: Annotated[str, typer.Argument(help="Capability group to clear.")],
):
    """Remove a capability group override."""
    make_api_request("DELETE", f"/admin/permissions/{user_id}/overrides/{capability_group}")


@permissions_app.command("vacation")
def vacation(
    user_id: UserIdArg,
    until: Annotated[
        Optional[datetime],
        typer.Option("--until", help="Read-only until this time (ISO 8601). Omit to end vacation mode.")
    ] = None,
):
    """Turn vacation mode on until a given time, or off."""
    payload = {"until": until.isoformat() if until else None}
    make_api_request("PUT", f"/admin/permissions/{user_id}/vacation", json_payload=payload)


@snapshots_app.command("list")
def list_snapshots(
    user_id: UserIdArg,
    limit: Annotated[int, typer.Option("--limit", min=1, max=500, help="Maximum snapshots to show.")] = 50,
):
    """List a user's most recent write operations, newest first."""
    make_api_request("GET", f"/admin/snapshots/{user_id}", params_payload={"limit": limit})
