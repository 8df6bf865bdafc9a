import threading

import pytest

from descsync.core.assets import AssetPath, CatalogAsset
from descsync.core.config import ReconcileConfig
from descsync.core.decision import OverwriteMode
from descsync.core.errors import ErrorKind, ReconcileAborted
from descsync.core.hierarchy import AssetPage, AssetTree
from descsync.core.reconcile import Level, Outcome, Phase, Reconciler, run_reconciliation
from descsync.core.targets import TargetAdapter, TargetEntity


class _MemoryAdapter(TargetAdapter):
    """Target system kept in dicts. Missing keys raise KeyError (not found)."""

    system = "memory"

    def __init__(self, schemas=None, tables=None, columns=None, read_only_columns=()):
        self.schemas = dict(schemas or {})
        self.tables = dict(tables or {})
        self.columns = {k: dict(v) for k, v in (columns or {}).items()}
        self.read_only_columns = set(read_only_columns)
        self.fail_on: dict[str, Exception] = {}
        self.reads: list[str] = []
        self.writes: list[tuple[str, str, str]] = []
        self._lock = threading.Lock()

    def _maybe_fail(self, key: str) -> None:
        if key in self.fail_on:
            raise self.fail_on[key]

    def get_schema(self, asset):
        name = asset.physical_name
        self._maybe_fail(name)
        return TargetEntity(key=name, description=self.schemas[name])

    def update_schema(self, asset, entity, description):
        self._maybe_fail(f"write:{entity.key}")
        with self._lock:
            self.writes.append(("schema", entity.key, description))
        self.schemas[entity.key] = description

    def get_table(self, asset):
        key = f"{self.database_name(asset)}.{asset.physical_name}"
        self.reads.append(key)
        self._maybe_fail(key)
        return TargetEntity(key=key, description=self.tables[key])

    def get_columns(self, asset, table):
        return [
            TargetEntity(key=name, description=desc, read_only=name in self.read_only_columns)
            for name, desc in self.columns.get(table.key, {}).items()
        ]

    def update_table(self, asset, entity, description):
        self._maybe_fail(f"write:{entity.key}")
        with self._lock:
            self.writes.append(("table", entity.key, description))
        self.tables[entity.key] = description

    def update_column(self, asset, table, column, description):
        with self._lock:
            self.writes.append(("column", f"{table.key}.{column.key}", description))
        self.columns[table.key][column.key] = description

    def classify_error(self, exc):
        if isinstance(exc, KeyError):
            return ErrorKind.NOT_FOUND
        if isinstance(exc, PermissionError):
            return ErrorKind.PERMISSION_DENIED
        return ErrorKind.OTHER


def _db_path(db: str) -> AssetPath:
    return AssetPath(path_layer="schema3", id=f"s-{db}", object_type="schema", name=db)


def _schema(db: str, tables=(), description="Sales data", **kwargs) -> CatalogAsset:
    return CatalogAsset(
        id=f"s-{db}",
        object_type="schema",
        physical_name=db,
        description=description,
        path=(_db_path(db),),
        child_asset_ids=tuple(f"t-{db}-{t}" for t in tables),
        **kwargs,
    )


def _table(db: str, name: str, columns=(), description="Orders", **kwargs) -> CatalogAsset:
    return CatalogAsset(
        id=f"t-{db}-{name}",
        object_type="table",
        physical_name=name,
        description=description,
        path=(_db_path(db),),
        child_asset_ids=tuple(f"c-{db}-{name}-{c}" for c in columns),
        **kwargs,
    )


def _column(db: str, table: str, name: str, description: str) -> CatalogAsset:
    return CatalogAsset(
        id=f"c-{db}-{table}-{name}",
        object_type="column",
        physical_name=name,
        description=description,
        path=(
            _db_path(db),
            AssetPath(path_layer="table", id=f"t-{db}-{table}", object_type="table", name=table),
        ),
    )


def _sales_tree(table_description="Orders") -> AssetTree:
    return AssetTree(
        schemas=[_schema("sales_db", tables=["orders"])],
        tables=[_table("sales_db", "orders", columns=["id", "amount"], description=table_description)],
        columns=[
            _column("sales_db", "orders", "id", "Order id"),
            _column("sales_db", "orders", "amount", ""),
        ],
    )


def _sales_adapter(**kwargs) -> _MemoryAdapter:
    return _MemoryAdapter(
        schemas={"sales_db": None},
        tables={"sales_db.orders": ""},
        columns={"sales_db.orders": {"id": None, "amount": None}},
        **kwargs,
    )


def _by_key(summary):
    return {r.key: r for r in summary.results}


def _config(**kwargs) -> ReconcileConfig:
    return ReconcileConfig(service_name="memory", **kwargs)


def test_updates_empty_targets_with_prefixed_descriptions():
    adapter = _sales_adapter()

    summary = run_reconciliation(None, adapter, _config(), tree=_sales_tree())

    results = _by_key(summary)
    assert results["sales_db"].outcome == Outcome.UPDATED
    assert results["sales_db.orders"].outcome == Outcome.UPDATED
    assert results["sales_db.orders.id"].outcome == Outcome.UPDATED
    assert results["sales_db.orders.amount"].reason == "no_description"
    assert adapter.schemas["sales_db"] == "【QDIC】Sales data"
    assert adapter.tables["sales_db.orders"] == "【QDIC】Orders"
    assert adapter.columns["sales_db.orders"] == {"id": "【QDIC】Order id", "amount": None}
    assert summary.count(Outcome.UPDATED, Level.COLUMN) == 1


def test_schema_only_scenario_issues_one_update():
    tree = AssetTree(schemas=[_schema("sales_db")], tables=[], columns=[])
    adapter = _MemoryAdapter(schemas={"sales_db": None})

    summary = run_reconciliation(None, adapter, _config(), tree=tree)

    assert adapter.writes == [("schema", "sales_db", "【QDIC】Sales data")]
    assert [r.outcome for r in summary.results] == [Outcome.UPDATED]


def test_second_run_skips_unchanged_values():
    adapter = _sales_adapter()
    run_reconciliation(None, adapter, _config(), tree=_sales_tree())
    adapter.writes.clear()

    summary = run_reconciliation(None, adapter, _config(), tree=_sales_tree())

    assert adapter.writes == []
    assert summary.updated == 0
    assert {r.reason for r in summary.results} == {"unchanged", "no_description"}


def test_second_run_rewrites_when_unchanged_check_is_off():
    adapter = _sales_adapter()
    run_reconciliation(None, adapter, _config(), tree=_sales_tree())
    adapter.writes.clear()

    summary = run_reconciliation(None, adapter, _config(skip_unchanged=False), tree=_sales_tree())

    assert summary.updated == 3
    assert ("schema", "sales_db", "【QDIC】Sales data") in adapter.writes


def test_user_text_is_preserved_unless_overwrite_all():
    adapter = _sales_adapter()
    adapter.schemas["sales_db"] = "Maintained by finance"

    summary = run_reconciliation(None, adapter, _config(), tree=_sales_tree())

    assert _by_key(summary)["sales_db"].reason == "user_owned"
    assert adapter.schemas["sales_db"] == "Maintained by finance"

    summary = run_reconciliation(
        None, adapter, _config(overwrite_mode=OverwriteMode.ALL), tree=_sales_tree()
    )

    assert _by_key(summary)["sales_db"].outcome == Outcome.UPDATED
    assert adapter.schemas["sales_db"] == "【QDIC】Sales data"


def test_custom_prefix_is_used():
    adapter = _sales_adapter()

    run_reconciliation(None, adapter, _config(prefix="[DC] "), tree=_sales_tree())

    assert adapter.schemas["sales_db"] == "[DC] Sales data"


def test_missing_target_schema_is_skipped_and_run_continues():
    adapter = _sales_adapter()
    del adapter.schemas["sales_db"]

    summary = run_reconciliation(None, adapter, _config(), tree=_sales_tree())

    results = _by_key(summary)
    assert results["sales_db"].outcome == Outcome.SKIPPED
    assert results["sales_db"].reason == "not_found"
    assert results["sales_db.orders"].outcome == Outcome.UPDATED


def test_permission_denied_table_is_skipped():
    adapter = _sales_adapter()
    adapter.fail_on["sales_db.orders"] = PermissionError("denied")

    summary = run_reconciliation(None, adapter, _config(), tree=_sales_tree())

    assert _by_key(summary)["sales_db.orders"].reason == "permission_denied"
    assert summary.failed == 0


def test_unexpected_error_aborts_with_partial_summary():
    adapter = _sales_adapter()
    adapter.fail_on["sales_db.orders"] = RuntimeError("connection reset")
    reconciler = Reconciler(None, adapter, _config())

    with pytest.raises(ReconcileAborted) as excinfo:
        reconciler.run(_sales_tree())

    exc = excinfo.value
    assert exc.phase == Phase.RECONCILE_TABLES.value
    assert exc.entity == "sales_db.orders"
    assert isinstance(exc.cause, RuntimeError)
    assert reconciler.phase == Phase.ABORTED
    results = _by_key(exc.summary)
    assert results["sales_db"].outcome == Outcome.UPDATED
    assert results["sales_db.orders"].outcome == Outcome.FAILED


def test_failed_table_write_classified_as_not_found_skips_columns():
    adapter = _sales_adapter()
    adapter.fail_on["write:sales_db.orders"] = KeyError("sales_db.orders")

    summary = run_reconciliation(None, adapter, _config(), tree=_sales_tree())

    results = _by_key(summary)
    assert results["sales_db.orders"].reason == "not_found"
    assert results["sales_db.orders.id"].reason == "not_found"
    assert adapter.columns["sales_db.orders"]["id"] is None


def test_dry_run_reports_updates_without_writing():
    adapter = _sales_adapter()

    summary = run_reconciliation(None, adapter, _config(dry_run=True), tree=_sales_tree())

    assert adapter.writes == []
    assert summary.dry_run is True
    updated = [r for r in summary.results if r.outcome == Outcome.UPDATED]
    assert len(updated) == 3
    assert all(r.dry_run for r in updated)
    assert updated[0].description == "【QDIC】Sales data"


def test_lost_assets_are_skipped():
    tree = AssetTree(
        schemas=[_schema("sales_db", tables=["orders"], is_lost=True)],
        tables=[_table("sales_db", "orders", is_lost=True)],
        columns=[],
    )
    adapter = _sales_adapter()

    summary = run_reconciliation(None, adapter, _config(), tree=tree)

    assert {r.reason for r in summary.results} == {"lost"}
    assert adapter.reads == []


def test_table_and_columns_without_descriptions_skip_before_lookup():
    tree = AssetTree(
        schemas=[_schema("sales_db", tables=["orders"])],
        tables=[_table("sales_db", "orders", columns=["id"], description="")],
        columns=[_column("sales_db", "orders", "id", "")],
    )
    adapter = _sales_adapter()

    summary = run_reconciliation(None, adapter, _config(), tree=tree)

    assert _by_key(summary)["sales_db.orders"].reason == "no_description"
    assert adapter.reads == []


def test_column_updates_when_table_has_no_description():
    adapter = _sales_adapter()

    summary = run_reconciliation(None, adapter, _config(), tree=_sales_tree(table_description=""))

    results = _by_key(summary)
    assert results["sales_db.orders"].reason == "no_description"
    assert results["sales_db.orders.id"].outcome == Outcome.UPDATED
    assert adapter.tables["sales_db.orders"] == ""


def test_read_only_columns_are_skipped():
    adapter = _sales_adapter(read_only_columns={"id"})

    summary = run_reconciliation(None, adapter, _config(), tree=_sales_tree())

    assert _by_key(summary)["sales_db.orders.id"].reason == "read_only"
    assert adapter.columns["sales_db.orders"]["id"] is None


def test_allow_list_excludes_other_databases():
    adapter = _sales_adapter()

    summary = run_reconciliation(
        None, adapter, _config(database_allow_list=("hr_db",)), tree=_sales_tree()
    )

    assert {r.reason for r in summary.results} == {"not_in_allow_list"}
    assert adapter.writes == []


def test_multibyte_names_are_skipped_for_ascii_only_targets():
    class _AsciiAdapter(_MemoryAdapter):
        ascii_names_only = True

    tree = AssetTree(
        schemas=[_schema("sales_db", tables=["注文"])],
        tables=[_table("sales_db", "注文")],
        columns=[],
    )
    adapter = _AsciiAdapter(schemas={"sales_db": None}, tables={"sales_db.注文": None})

    summary = run_reconciliation(None, adapter, _config(), tree=tree)

    results = _by_key(summary)
    assert results["sales_db"].outcome == Outcome.UPDATED
    assert results["sales_db.注文"].reason == "unaddressable_name"
    assert adapter.reads == []


def test_cancelled_run_stops_before_first_entity():
    adapter = _sales_adapter()
    cancel = threading.Event()
    cancel.set()

    summary = run_reconciliation(None, adapter, _config(), tree=_sales_tree(), cancel_event=cancel)

    assert summary.cancelled is True
    assert summary.results == []
    assert adapter.writes == []


def test_parallel_run_reconciles_every_schema():
    dbs = ["db1", "db2", "db3"]
    tree = AssetTree(
        schemas=[_schema(db, tables=["orders"]) for db in dbs],
        tables=[_table(db, "orders") for db in dbs],
        columns=[],
    )
    adapter = _MemoryAdapter(
        schemas={db: None for db in dbs},
        tables={f"{db}.orders": None for db in dbs},
    )

    summary = run_reconciliation(None, adapter, _config(max_parallel=2), tree=tree)

    assert summary.count(Outcome.UPDATED, Level.TABLE) == 3
    assert sorted(adapter.tables.values()) == ["【QDIC】Orders"] * 3


def test_run_assembles_tree_when_not_given():
    schema = _schema("sales_db", tables=["orders"], service_name="memory")
    table = _table("sales_db", "orders")

    class _Catalog:
        def get_assets_by_type(self, object_type, last_id):
            return AssetPage([schema])

        def get_assets_by_ids(self, ids):
            return [a for a in (table,) if a.id in ids]

    adapter = _MemoryAdapter(schemas={"sales_db": None}, tables={"sales_db.orders": None})

    summary = run_reconciliation(_Catalog(), adapter, _config())

    assert summary.updated == 2


def test_listing_failure_aborts_in_list_phase():
    class _Catalog:
        def get_assets_by_type(self, object_type, last_id):
            raise RuntimeError("catalog down")

        def get_assets_by_ids(self, ids):
            return []

    with pytest.raises(ReconcileAborted) as excinfo:
        run_reconciliation(_Catalog(), _sales_adapter(), _config())

    assert excinfo.value.phase == Phase.LIST_ASSETS.value
    assert excinfo.value.entity == "memory"


def test_config_rejects_non_positive_parallelism():
    with pytest.raises(ValueError, match="max_parallel"):
        _config(max_parallel=0)


def test_config_defaults_empty_prefix():
    assert _config(prefix="").prefix == "【QDIC】"
