from __future__ import annotations

import threading

import httpx
import typer
from rich.markup import escape

from descsync.cli.common.context import (
    SyncAppContext,
    build_catalog_context,
    build_sync_context,
    hierarchy_shape,
)
from descsync.cli.common.exits import exit_from_exc
from descsync.cli.common.logs import setup_logging
from descsync.cli.common.options import (
    CreatedByOpt,
    DryRunOpt,
    LogLevelOpt,
    OverwriteModeOpt,
    ParallelOpt,
    PrefixOpt,
    RewriteUnchangedOpt,
    SystemOpt,
    TargetDbOpt,
    YesOpt,
)
from descsync.cli.common.output import out
from descsync.core.config import ReconcileConfig, SourceSystem
from descsync.core.decision import OverwriteMode
from descsync.core.errors import DescsyncError, ReconcileAborted
from descsync.core.hierarchy import assemble_tree
from descsync.core.reconcile import Outcome, Reconciler, ReconcileSummary, SkipReason
from descsync.core.selectors import DatabaseAllowListSelector

# Skips worth listing next to updates and failures.
_NOTABLE_SKIPS = {
    SkipReason.NOT_FOUND.value,
    SkipReason.PERMISSION_DENIED.value,
    SkipReason.UNADDRESSABLE.value,
}


def _build_config_or_exit(
    system: SourceSystem,
    *,
    overwrite_mode: str,
    prefix: str,
    created_by: str | None,
    target_db: list[str],
    parallel: int,
    rewrite_unchanged: bool,
    dry_run: bool,
) -> ReconcileConfig:
    """Validate run options and convert invalid values into CLI input errors."""
    try:
        return ReconcileConfig(
            service_name=system.value,
            overwrite_mode=OverwriteMode.parse(overwrite_mode),
            prefix=prefix,
            created_by=created_by or None,
            database_allow_list=tuple(target_db),
            skip_unchanged=not rewrite_unchanged,
            dry_run=dry_run,
            max_parallel=parallel,
        )
    except ValueError as exc:
        out.error(f"Invalid configuration: {exc}")
        raise typer.Exit(2) from exc


def _print_summaries(summaries: list[ReconcileSummary]) -> None:
    for summary in summaries:
        notable = [
            r
            for r in summary.results
            if r.outcome != Outcome.SKIPPED or r.reason in _NOTABLE_SKIPS
        ]
        if notable:
            out.reconcile_results_table(notable, title=f"Results: {summary.system}")
        out.reconcile_summary_table(summary)


def _run_sync(appctx: SyncAppContext, config: ReconcileConfig, *, yes: bool) -> None:
    out.header(f"Sync catalog descriptions to {appctx.system.value}")
    out.kv(
        {
            "Targets": ", ".join(a.system for a in appctx.adapters),
            "Overwrite mode": config.overwrite_mode.value,
            "Prefix": config.prefix,
            "Created by": config.created_by or "-",
            "Databases": ", ".join(config.database_allow_list) or "all",
            "Parallel": config.max_parallel,
        }
    )
    if config.dry_run:
        out.warn("DRY RUN: no changes will be made.")

    if not yes and not config.dry_run:
        if not out.confirm("Proceed with writing descriptions to the target system?"):
            out.warn("Cancelled.")
            raise typer.Exit(0)

    cancel = threading.Event()
    reconcilers = [
        Reconciler(appctx.catalog, adapter, config, cancel_event=cancel)
        for adapter in appctx.adapters
    ]
    summaries: list[ReconcileSummary] = []

    try:
        with out.status("Listing catalog assets..."):
            tree = reconcilers[0].assemble()
        out.info(f"Schemas: {len(tree.schemas)} | Tables: {len(tree.tables)}")

        status_msg = "Planning description updates" if config.dry_run else "Writing descriptions"
        for reconciler in reconcilers:
            with out.status(f"{status_msg} ({reconciler.adapter.system})..."):
                summaries.append(reconciler.run(tree))
    except ReconcileAborted as exc:
        if exc.summary is not None:
            summaries.append(exc.summary)
        _print_summaries(summaries)
        exit_from_exc(
            exc,
            message=escape(f"Sync aborted during {exc.phase} at '{exc.entity}': {exc.cause}"),
            code=1,
        )
    except KeyboardInterrupt as exc:
        cancel.set()
        _print_summaries(summaries)
        out.warn("Interrupted. Remaining entities were not reconciled.")
        raise typer.Exit(130) from exc

    _print_summaries(summaries)

    if any(s.cancelled for s in summaries):
        out.warn("Run was cancelled before every entity was reconciled.")
    updated = sum(s.updated for s in summaries)
    if config.dry_run:
        out.success(f"Dry-run complete: {updated} description(s) would be updated.")
    else:
        out.success(f"Updated {updated} description(s).")


def sync(
    system: SourceSystem = SystemOpt,
    overwrite_mode: str = OverwriteModeOpt,
    prefix: str = PrefixOpt,
    created_by: str | None = CreatedByOpt,
    target_db: list[str] = TargetDbOpt,
    parallel: int = ParallelOpt,
    rewrite_unchanged: bool = RewriteUnchangedOpt,
    dry_run: bool = DryRunOpt,
    yes: bool = YesOpt,
    log_level: str = LogLevelOpt,
):
    """Write catalog descriptions into the target system's metadata."""
    setup_logging(log_level)
    config = _build_config_or_exit(
        system,
        overwrite_mode=overwrite_mode,
        prefix=prefix,
        created_by=created_by,
        target_db=target_db,
        parallel=parallel,
        rewrite_unchanged=rewrite_unchanged,
        dry_run=dry_run,
    )

    appctx = build_sync_context(system)
    try:
        _run_sync(appctx, config, yes=yes)
    finally:
        appctx.close()


def assets(
    system: SourceSystem = SystemOpt,
    created_by: str | None = CreatedByOpt,
    target_db: list[str] = TargetDbOpt,
    show_tables: bool = typer.Option(
        False, "--tables", help="List table assets as well as schemas"
    ),
    log_level: str = LogLevelOpt,
):
    """Preview the catalog hierarchy a sync would reconcile."""
    setup_logging(log_level)
    shape = hierarchy_shape(system)
    allow_list = [name for name in target_db if name]

    appctx = build_catalog_context(system)
    try:
        with out.status("Listing catalog assets..."):
            tree = assemble_tree(
                appctx.catalog,
                system.value,
                created_by or None,
                nested_roots=shape.nested_roots,
                prefetch_columns=False,
                schema_selector=DatabaseAllowListSelector(allow_list) if allow_list else None,
            )
    except (DescsyncError, httpx.HTTPError) as exc:
        exit_from_exc(exc, message=escape(f"Failed to list catalog assets: {exc}"), code=1)
    finally:
        appctx.close()

    if not tree.schemas:
        out.warn(f"No {system.value} schemas found in the catalog.")
        raise typer.Exit(0)

    out.header(f"Catalog assets for {system.value}")
    out.info(f"Schemas: {len(tree.schemas)} | Tables: {len(tree.tables)}")
    out.assets_table(tree.schemas, title="Schemas")
    if show_tables:
        out.assets_table(tree.tables, title="Tables")
