# mcp_ledger/cli/admin_cli.py
import typer
from . import accounts_cli
from . import permissions_cli

app = typer.Typer(
    name="admin",
    help="MCP Ledger Administrative Commands.",
    no_args_is_help=True
)

app.add_typer(accounts_cli.invite_app, name="invite")
app.add_typer(accounts_cli.users_app, name="users")
app.add_typer(permissions_cli.permissions_app, name="permissions")
app.add_typer(permissions_cli.snapshots_app, name="snapshots")


@app.callback()
def admin_callback():
    """
    Administrative commands. They call the running gateway's /admin API
    with ADMIN_API_KEY from the environment or .env.
    """
    pass


if __name__ == "__main__":
    app()
