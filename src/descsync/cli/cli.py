"""CLI application for catalog description sync."""

import typer
from dotenv import load_dotenv

from descsync.cli.commands.sync import assets, sync

load_dotenv()

app = typer.Typer(
    help="descsync - write data catalog descriptions back to source systems",
    no_args_is_help=True,
)

app.command("sync", help="Reconcile catalog descriptions into BigQuery, Athena or Denodo.")(sync)
app.command("assets", help="Preview the catalog assets a sync would reconcile.")(assets)


if __name__ == "__main__":
    app()
