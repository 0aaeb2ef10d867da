# mcp_ledger/cli/main_cli.py
import typer
from . import admin_cli
from . import utils_cli

app = typer.Typer(
    name="ledger",
    help="MCP Ledger Command Line Interface.",
    no_args_is_help=True
)

app.add_typer(admin_cli.app, name="admin")
app.add_typer(utils_cli.app, name="utils")


@app.callback()
def main_callback():
    """
    MCP Ledger main CLI application.
    Use 'ledger admin --help' for admin commands.
    """
    pass


def cli_entry_point():
    """Entry point for the `ledger` console script."""
    app()


if __name__ == "__main__":
    cli_entry_point()
