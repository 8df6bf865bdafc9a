"""Common CLI options for the CLI.

Run settings fall back to the environment variables the agent was
historically configured with, so an existing `.env` keeps working.
"""

import typer

SystemOpt = typer.Option(
    ...,
    "--system",
    "-s",
    envvar="SYSTEM_NAME",
    help="Target system to write descriptions to (bigquery, athena, denodo)",
    case_sensitive=False,
)

OverwriteModeOpt = typer.Option(
    "OVERWRITE_IF_EMPTY",
    "--overwrite-mode",
    envvar="OVERWRITE_MODE",
    help="OVERWRITE_IF_EMPTY keeps user-written descriptions; OVERWRITE_ALL replaces them",
)

PrefixOpt = typer.Option(
    "",
    "--prefix",
    envvar="PREFIX_FOR_UPDATE",
    help="Marker prepended to every managed description (default: 【QDIC】)",
    show_default=False,
)

CreatedByOpt = typer.Option(
    None,
    "--created-by",
    envvar="QDC_ASSET_CREATED_BY",
    help="Only sync catalog assets created by this principal",
)

TargetDbOpt = typer.Option(
    [],
    "--target-db",
    envvar="DENODO_QUERY_TARGET_DB",
    help="Database allow-list. This is reusable. Empty means every database.",
    show_default=False,
)

ParallelOpt = typer.Option(
    1,
    "--parallel",
    "-n",
    envvar="MAX_PARALLEL",
    help="Number of schemas to reconcile in parallel",
)

RewriteUnchangedOpt = typer.Option(
    False,
    "--rewrite-unchanged",
    help="Write descriptions even when the target already holds the same text",
)

DryRunOpt = typer.Option(
    False,
    "--dry-run",
    help="Show which descriptions would change, but don't write anything",
)

YesOpt = typer.Option(
    False,
    "--yes",
    "-y",
    help="Skip confirmation prompt",
)

LogLevelOpt = typer.Option(
    "INFO",
    "--log-level",
    envvar="LOG_LEVEL",
    help="Logging level (DEBUG, INFO, WARNING, ERROR)",
)
