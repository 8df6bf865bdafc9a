"""Reconciliation driver.

Runs one system end to end: assemble the catalog hierarchy, reconcile every
schema, then every table together with its columns. The driver owns the
skip-or-abort policy; adapters only classify their own failures.

Phases run in a fixed order (LIST_ASSETS -> RECONCILE_SCHEMAS ->
RECONCILE_TABLES -> DONE). Tables are grouped by schema and the groups may
be reconciled concurrently, since every entity update is independent.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum

from descsync.core.assets import CatalogAsset
from descsync.core.config import ReconcileConfig
from descsync.core.decision import apply_prefix, is_unchanged, should_update
from descsync.core.errors import ErrorKind, ReconcileAborted
from descsync.core.hierarchy import AssetIndex, AssetTree, CatalogSource, assemble_tree
from descsync.core.selectors import DatabaseAllowListSelector
from descsync.core.targets import TableWrite, TargetAdapter, TargetEntity, has_multibyte_script

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    LIST_ASSETS = "LIST_ASSETS"
    RECONCILE_SCHEMAS = "RECONCILE_SCHEMAS"
    RECONCILE_TABLES = "RECONCILE_TABLES"
    DONE = "DONE"
    ABORTED = "ABORTED"


class Level(str, Enum):
    SCHEMA = "schema"
    TABLE = "table"
    COLUMN = "column"


class Outcome(str, Enum):
    UPDATED = "UPDATED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


class SkipReason(str, Enum):
    """Why an entity was left untouched."""

    LOST = "lost"
    NO_DESCRIPTION = "no_description"
    NOT_ALLOWED = "not_in_allow_list"
    UNADDRESSABLE = "unaddressable_name"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    USER_OWNED = "user_owned"
    UNCHANGED = "unchanged"
    READ_ONLY = "read_only"


_SKIP_FOR_KIND = {
    ErrorKind.NOT_FOUND: SkipReason.NOT_FOUND,
    ErrorKind.PERMISSION_DENIED: SkipReason.PERMISSION_DENIED,
}


@dataclass(frozen=True)
class EntityResult:
    """
    Outcome of reconciling one entity.

    Attributes:
        level: schema, table or column.
        key: Target-side name of the entity.
        outcome: UPDATED, SKIPPED or FAILED.
        reason: SkipReason value for skipped entities, error text for failures.
        dry_run: True when the update was computed but not written.
        description: The text written (or that would have been written).
    """

    level: Level
    key: str
    outcome: Outcome
    reason: str = ""
    dry_run: bool = False
    description: str | None = None


@dataclass
class ReconcileSummary:
    """Collected results of one run."""

    system: str
    dry_run: bool = False
    results: list[EntityResult] = field(default_factory=list)
    cancelled: bool = False

    def extend(self, results: list[EntityResult]) -> None:
        self.results.extend(results)

    def count(self, outcome: Outcome, level: Level | None = None) -> int:
        return sum(
            1
            for r in self.results
            if r.outcome == outcome and (level is None or r.level == level)
        )

    @property
    def updated(self) -> int:
        return self.count(Outcome.UPDATED)

    @property
    def skipped(self) -> int:
        return self.count(Outcome.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(Outcome.FAILED)


class Reconciler:
    """
    Reconcile catalog descriptions into one target system.

    Args:
        source: Catalog read client.
        adapter: Target system adapter.
        config: Run configuration.
        cancel_event: Optional event; once set, no further entity is started.
    """

    def __init__(
        self,
        source: CatalogSource,
        adapter: TargetAdapter,
        config: ReconcileConfig,
        *,
        cancel_event: threading.Event | None = None,
    ):
        self.source = source
        self.adapter = adapter
        self.config = config
        self.cancel_event = cancel_event or threading.Event()
        self.phase = Phase.LIST_ASSETS
        self._allow_list = DatabaseAllowListSelector(config.database_allow_list)
        self._halt = threading.Event()

    def run(self, tree: AssetTree | None = None) -> ReconcileSummary:
        """
        Run the reconciliation.

        Args:
            tree: Pre-assembled hierarchy; assembled from the catalog when None.

        Returns:
            The run summary.

        Raises:
            ReconcileAborted: On the first fatal error. The partial summary is
                attached as `summary`.
        """
        summary = ReconcileSummary(system=self.adapter.system, dry_run=self.config.dry_run)
        try:
            self._run(tree, summary)
        except ReconcileAborted as exc:
            self.phase = Phase.ABORTED
            exc.summary = summary
            raise
        return summary

    def _run(self, tree: AssetTree | None, summary: ReconcileSummary) -> None:
        self.phase = Phase.LIST_ASSETS
        if tree is None:
            tree = self.assemble()

        self.phase = Phase.RECONCILE_SCHEMAS
        logger.info("Reconcile %d %s schemas", len(tree.schemas), self.adapter.system)
        schema_results: list[EntityResult] = []
        try:
            for schema in tree.schemas:
                if self._stopping():
                    break
                self.reconcile_schema(schema, schema_results)
        finally:
            summary.extend(schema_results)

        if self._stopping():
            summary.cancelled = True
            return

        self.phase = Phase.RECONCILE_TABLES
        groups = [tree.tables_of(schema) for schema in tree.schemas]
        logger.info(
            "Reconcile %d %s tables", sum(len(g) for g in groups), self.adapter.system
        )
        self._reconcile_groups(tree, groups, summary)

        if self.cancel_event.is_set():
            summary.cancelled = True
            return
        self.phase = Phase.DONE
        logger.info(
            "Finished %s reconciliation. updated: %d, skipped: %d",
            self.adapter.system,
            summary.updated,
            summary.skipped,
        )

    def assemble(self) -> AssetTree:
        """Assemble the catalog hierarchy for the configured service."""
        try:
            return assemble_tree(
                self.source,
                self.config.service_name,
                self.config.created_by,
                nested_roots=self.adapter.nested_roots,
                prefetch_columns=self.adapter.prefetch_columns,
                schema_selector=self._allow_list,
            )
        except Exception as exc:
            raise ReconcileAborted(Phase.LIST_ASSETS.value, self.config.service_name, exc) from exc

    def _reconcile_groups(
        self,
        tree: AssetTree,
        groups: list[list[CatalogAsset]],
        summary: ReconcileSummary,
    ) -> None:
        buckets: list[list[EntityResult]] = [[] for _ in groups]

        if self.config.max_parallel == 1 or len(groups) <= 1:
            try:
                for group, bucket in zip(groups, buckets):
                    self._reconcile_group(tree, group, bucket)
            finally:
                for bucket in buckets:
                    summary.extend(bucket)
            return

        failure: ReconcileAborted | None = None
        with ThreadPoolExecutor(max_workers=self.config.max_parallel) as pool:
            futures = [
                pool.submit(self._reconcile_group, tree, group, bucket)
                for group, bucket in zip(groups, buckets)
            ]
            try:
                for f in as_completed(futures):
                    try:
                        f.result()
                    except ReconcileAborted as exc:
                        if failure is None:
                            failure = exc
                            self._halt.set()
            except KeyboardInterrupt:
                # Let running groups finish their current table, then stop.
                self.cancel_event.set()
                raise

        for bucket in buckets:
            summary.extend(bucket)
        if failure is not None:
            raise failure

    def _reconcile_group(
        self,
        tree: AssetTree,
        tables: list[CatalogAsset],
        results: list[EntityResult],
    ) -> None:
        for table in tables:
            if self._stopping():
                return
            self.reconcile_table(tree, table, results)

    def _stopping(self) -> bool:
        return self.cancel_event.is_set() or self._halt.is_set()

    def _gate(self, asset: CatalogAsset, *, require_description: bool = True) -> SkipReason | None:
        if asset.is_lost:
            return SkipReason.LOST
        if require_description and not asset.has_description:
            return SkipReason.NO_DESCRIPTION
        if not self._allow_list.matches(asset):
            return SkipReason.NOT_ALLOWED
        if self.adapter.ascii_names_only and any(
            has_multibyte_script(n) for n in self.adapter.addressable_names(asset)
        ):
            logger.warning(
                "Skip %s %s on %s: name cannot be addressed",
                asset.object_type,
                asset.physical_name,
                self.adapter.system,
            )
            return SkipReason.UNADDRESSABLE
        return None

    def _skip(self, level: Level, key: str, reason: SkipReason) -> EntityResult:
        logger.debug("Skip %s %s: %s", level.value, key, reason.value)
        return EntityResult(level=level, key=key, outcome=Outcome.SKIPPED, reason=reason.value)

    def _failure(
        self,
        level: Level,
        key: str,
        exc: Exception,
        results: list[EntityResult],
    ) -> SkipReason:
        """Classify `exc`; return the skip reason or record the failure and abort."""
        kind = self.adapter.classify_error(exc)
        reason = _SKIP_FOR_KIND.get(kind)
        if reason is not None:
            logger.warning("Skip %s %s on %s: %s", level.value, key, self.adapter.system, exc)
            return reason
        logger.error("Failed to reconcile %s %s on %s: %s", level.value, key, self.adapter.system, exc)
        results.append(EntityResult(level=level, key=key, outcome=Outcome.FAILED, reason=str(exc)))
        raise ReconcileAborted(self.phase.value, key, exc) from exc

    def _decide(
        self,
        level: Level,
        key: str,
        entity: TargetEntity,
        asset: CatalogAsset,
    ) -> tuple[str | None, EntityResult | None]:
        """Return the text to write, or the skip result explaining why not."""
        if entity.read_only:
            return None, self._skip(level, key, SkipReason.READ_ONLY)

        rendered = self.adapter.render_description(asset)
        current = entity.description
        if not should_update(
            self.config.overwrite_mode,
            self.config.prefix,
            current,
            entity.has_value,
            rendered,
        ):
            return None, self._skip(level, key, SkipReason.USER_OWNED)

        text = apply_prefix(self.config.prefix, rendered)
        if self.config.skip_unchanged and is_unchanged(current, text):
            return None, self._skip(level, key, SkipReason.UNCHANGED)
        return text, None

    def _updated(self, level: Level, key: str, text: str) -> EntityResult:
        return EntityResult(
            level=level,
            key=key,
            outcome=Outcome.UPDATED,
            dry_run=self.config.dry_run,
            description=text,
        )

    def reconcile_schema(self, asset: CatalogAsset, results: list[EntityResult]) -> None:
        """Reconcile the description of one database/dataset."""
        key = asset.physical_name
        reason = self._gate(asset)
        if reason is not None:
            results.append(self._skip(Level.SCHEMA, key, reason))
            return

        try:
            entity = self.adapter.get_schema(asset)
        except Exception as exc:
            reason = self._failure(Level.SCHEMA, key, exc, results)
            results.append(self._skip(Level.SCHEMA, key, reason))
            return

        text, skipped = self._decide(Level.SCHEMA, key, entity, asset)
        if skipped is not None:
            results.append(skipped)
            return

        if not self.config.dry_run:
            try:
                self.adapter.update_schema(asset, entity, text)
            except Exception as exc:
                reason = self._failure(Level.SCHEMA, key, exc, results)
                results.append(self._skip(Level.SCHEMA, key, reason))
                return
        logger.info("Update %s schema description. schema: %s", self.adapter.system, key)
        results.append(self._updated(Level.SCHEMA, key, text))

    def reconcile_table(
        self,
        tree: AssetTree,
        asset: CatalogAsset,
        results: list[EntityResult],
    ) -> None:
        """Reconcile one table description and the descriptions of its columns."""
        key = f"{self.adapter.database_name(asset)}.{asset.physical_name}"
        reason = self._gate(asset, require_description=False)
        if reason is not None:
            results.append(self._skip(Level.TABLE, key, reason))
            return

        try:
            column_assets = tree.columns_of(asset, self.source)
        except Exception as exc:
            logger.error("Failed to list columns of %s: %s", key, exc)
            results.append(
                EntityResult(level=Level.TABLE, key=key, outcome=Outcome.FAILED, reason=str(exc))
            )
            raise ReconcileAborted(self.phase.value, key, exc) from exc

        if not asset.has_description and not any(c.has_description for c in column_assets):
            results.append(self._skip(Level.TABLE, key, SkipReason.NO_DESCRIPTION))
            return

        try:
            entity = self.adapter.get_table(asset)
            target_columns = self.adapter.get_columns(asset, entity)
        except Exception as exc:
            reason = self._failure(Level.TABLE, key, exc, results)
            results.append(self._skip(Level.TABLE, key, reason))
            return

        pending: list[EntityResult] = []
        table_text: str | None = None
        if not asset.has_description:
            pending.append(self._skip(Level.TABLE, key, SkipReason.NO_DESCRIPTION))
        else:
            table_text, skipped = self._decide(Level.TABLE, key, entity, asset)
            if skipped is not None:
                pending.append(skipped)

        index = AssetIndex(column_assets, self.adapter.addressing)
        changes: dict[str, str] = {}
        column_entities: dict[str, TargetEntity] = {}
        for column in target_columns:
            column_asset = index.get(self.adapter.column_asset_key(asset, column))
            if column_asset is None:
                continue
            column_key = f"{key}.{column.key}"
            reason = self._gate(column_asset)
            if reason is not None:
                pending.append(self._skip(Level.COLUMN, column_key, reason))
                continue
            text, skipped = self._decide(Level.COLUMN, column_key, column, column_asset)
            if skipped is not None:
                pending.append(skipped)
                continue
            changes[column.key] = text
            column_entities[column.key] = column

        if table_text is None and not changes:
            results.extend(pending)
            return

        if not self.config.dry_run:
            write = TableWrite(
                asset=asset,
                entity=entity,
                description=table_text,
                columns=changes,
                column_entities=column_entities,
            )
            try:
                self.adapter.write_table(write)
            except Exception as exc:
                results.extend(pending)
                reason = self._failure(Level.TABLE, key, exc, results)
                if table_text is not None:
                    results.append(self._skip(Level.TABLE, key, reason))
                for name in changes:
                    results.append(self._skip(Level.COLUMN, f"{key}.{name}", reason))
                return

        if table_text is not None:
            logger.info("Update %s table description. table: %s", self.adapter.system, key)
            pending.append(self._updated(Level.TABLE, key, table_text))
        for name, text in changes.items():
            logger.info("Update %s column description. column: %s.%s", self.adapter.system, key, name)
            pending.append(self._updated(Level.COLUMN, f"{key}.{name}", text))
        results.extend(pending)


def run_reconciliation(
    source: CatalogSource,
    adapter: TargetAdapter,
    config: ReconcileConfig,
    *,
    tree: AssetTree | None = None,
    cancel_event: threading.Event | None = None,
) -> ReconcileSummary:
    """Convenience wrapper around Reconciler.run()."""
    return Reconciler(source, adapter, config, cancel_event=cancel_event).run(tree)
