import json

import httpx
import pytest

from descsync.core.adapters.denodo import global_id
from descsync.core.adapters.denodo_catalog import (
    DESCRIPTION_TYPE,
    DenodoAPIError,
    DenodoCatalogAdapter,
    DenodoCatalogClient,
    catalog_base_url,
)
from descsync.core.assets import AssetPath, CatalogAsset
from descsync.core.config import ReconcileConfig
from descsync.core.errors import ErrorKind, TargetNotFoundError
from descsync.core.hierarchy import AssetTree
from descsync.core.reconcile import Outcome, run_reconciliation

COMPANY = "acme"
HOST = "denodo.example.com"
BASE = catalog_base_url(HOST, 9443)


class _DataCatalog:
    """In-memory Denodo Data Catalog behind httpx.MockTransport."""

    def __init__(self):
        self.databases = [
            {"databaseId": 7, "databaseName": "sales_db", "databaseDescription": None},
        ]
        self.views = {
            ("sales_db", "orders"): {"id": 11, "description": "", "inLocal": True},
            ("sales_db", "remote"): {"id": 12, "description": "", "inLocal": False},
        }
        self.fields = {
            ("sales_db", "orders"): [
                {"name": "id", "description": None, "inLocal": True},
                {"name": "amount", "description": "by hand", "inLocal": True},
            ],
        }
        self.puts: list[tuple[str, dict]] = []
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/denodo-data-catalog/public/api")
        params = request.url.params
        key = (params.get("databaseName"), params.get("viewName"))
        if request.method == "PUT":
            self.puts.append((path, json.loads(request.content)))
            return httpx.Response(200, json={})
        if path == "/database-management/local/databases":
            return httpx.Response(200, json=self.databases)
        if path == "/view-details":
            if key not in self.views:
                return httpx.Response(404, json={"message": "not found"})
            return httpx.Response(200, json=self.views[key])
        if path == "/views/fields":
            return httpx.Response(200, json=self.fields.get(key, []))
        return httpx.Response(500)


def _client(api) -> DenodoCatalogClient:
    return DenodoCatalogClient(
        BASE,
        "admin",
        "secret",
        http=httpx.Client(transport=httpx.MockTransport(api)),
        max_retries=1,
        sleep=lambda s: None,
    )


def _adapter(api) -> DenodoCatalogAdapter:
    return DenodoCatalogAdapter(_client(api), COMPANY, HOST)


def _db_path():
    return AssetPath(path_layer="schema3", id="schm-1", object_type="schema", name="sales_db")


def _schema(name="sales_db"):
    return CatalogAsset(
        id="schm-1",
        object_type="schema",
        physical_name=name,
        logical_name="販売",
        description="Sales",
        path=(AssetPath(path_layer="schema3", id="schm-1", name=name),),
        child_asset_ids=("tbl-orders", "tbl-注文"),
    )


def _view(name, columns=()):
    return CatalogAsset(
        id=f"tbl-{name}",
        object_type="table",
        physical_name=name,
        logical_name="注文",
        description="Orders",
        path=(_db_path(),),
        child_asset_ids=tuple(columns),
    )


def test_catalog_base_url():
    assert BASE == "https://denodo.example.com:9443/denodo-data-catalog"


def test_requests_use_basic_auth():
    api = _DataCatalog()

    _client(api).get_local_databases()

    assert api.requests[0].headers["Authorization"].startswith("Basic ")


def test_get_schema_and_update_local_database():
    api = _DataCatalog()
    adapter = _adapter(api)

    entity = adapter.get_schema(_schema())
    adapter.update_schema(_schema(), entity, "【QDIC】Sales")

    assert entity.description == ""
    assert api.puts == [
        (
            "/database-management/local/database",
            {"databaseId": 7, "description": "【QDIC】Sales", "descriptionType": DESCRIPTION_TYPE},
        )
    ]


def test_unknown_local_database_is_not_found():
    adapter = _adapter(_DataCatalog())

    with pytest.raises(TargetNotFoundError):
        adapter.get_schema(_schema("hr_db"))


def test_view_not_stored_locally_is_read_only():
    adapter = _adapter(_DataCatalog())

    entity = adapter.get_table(_view("remote"))

    assert entity.read_only is True


def test_http_404_is_not_found_and_403_permission_denied():
    adapter = _adapter(_DataCatalog())

    with pytest.raises(DenodoAPIError) as excinfo:
        adapter.get_table(_view("missing"))

    assert excinfo.value.status == 404
    assert adapter.classify_error(excinfo.value) == ErrorKind.NOT_FOUND
    assert adapter.classify_error(DenodoAPIError(403, "Forbidden")) == ErrorKind.PERMISSION_DENIED
    assert adapter.classify_error(DenodoAPIError(401, "Unauthorized")) == ErrorKind.PERMISSION_DENIED
    assert adapter.classify_error(DenodoAPIError(400, "Bad Request")) == ErrorKind.OTHER


def test_server_errors_are_retried_before_failing():
    calls = {"n": 0}

    def flaky(request):
        calls["n"] += 1
        return httpx.Response(503)

    with pytest.raises(DenodoAPIError) as excinfo:
        _client(flaky).get_local_databases()

    assert excinfo.value.status == 503
    assert calls["n"] == 2


def test_reconcile_denodo_catalog_end_to_end():
    api = _DataCatalog()
    adapter = _adapter(api)
    columns = [
        CatalogAsset(
            id=global_id(COMPANY, HOST, f"sales_dborders{name}", "column"),
            object_type="column",
            physical_name=name,
            logical_name=name.upper(),
            description=f"{name} text",
            path=(_db_path(),),
        )
        for name in ("id", "amount")
    ]
    tree = AssetTree(
        schemas=[_schema()],
        tables=[_view("orders", [c.id for c in columns]), _view("注文")],
        columns=columns,
    )

    summary = run_reconciliation(None, adapter, ReconcileConfig(service_name="denodo"), tree=tree)

    results = {r.key: r for r in summary.results}
    assert results["sales_db"].outcome == Outcome.UPDATED
    assert results["sales_db.orders"].outcome == Outcome.UPDATED
    assert results["sales_db.orders.id"].outcome == Outcome.UPDATED
    assert results["sales_db.orders.amount"].reason == "user_owned"
    assert results["sales_db.注文"].reason == "unaddressable_name"
    assert (
        "/views/fields",
        {
            "databaseName": "sales_db",
            "viewName": "orders",
            "fieldName": "id",
            "fieldDescription": "【QDIC】【項目名称】ID\n【説明】id text",
        },
    ) in api.puts
    assert ("/views", {"id": 11, "description": "【QDIC】【項目名称】注文\n【説明】Orders", "descriptionType": "RICH_TEXT"}) in api.puts


def test_multibyte_field_name_under_ascii_view_is_written():
    api = _DataCatalog()
    api.fields[("sales_db", "orders")] = [{"name": "顧客名", "description": None, "inLocal": True}]
    adapter = _adapter(api)
    column = CatalogAsset(
        id=global_id(COMPANY, HOST, "sales_dborders顧客名", "column"),
        object_type="column",
        physical_name="顧客名",
        logical_name="顧客",
        description="Name",
        path=(_db_path(), AssetPath(path_layer="table", id="tbl-orders", name="orders")),
    )
    tree = AssetTree(schemas=[], tables=[_view("orders", [column.id])], columns=[column])

    summary = run_reconciliation(None, adapter, ReconcileConfig(service_name="denodo"), tree=tree)

    results = {r.key: r for r in summary.results}
    assert results["sales_db.orders.顧客名"].outcome == Outcome.UPDATED
    assert (
        "/views/fields",
        {
            "databaseName": "sales_db",
            "viewName": "orders",
            "fieldName": "顧客名",
            "fieldDescription": "【QDIC】【項目名称】顧客\n【説明】Name",
        },
    ) in api.puts


def test_multibyte_local_database_name_is_written_by_id():
    api = _DataCatalog()
    api.databases.append({"databaseId": 8, "databaseName": "販売", "databaseDescription": ""})
    adapter = _adapter(api)
    tree = AssetTree(schemas=[_schema("販売")], tables=[], columns=[])

    summary = run_reconciliation(None, adapter, ReconcileConfig(service_name="denodo"), tree=tree)

    assert [(r.key, r.outcome) for r in summary.results] == [("販売", Outcome.UPDATED)]
    assert api.puts[0][1]["databaseId"] == 8


def test_addressable_names_cover_database_and_view_only():
    adapter = _adapter(_DataCatalog())
    column = CatalogAsset(
        id="clmn-1",
        object_type="column",
        physical_name="顧客名",
        path=(_db_path(), AssetPath(path_layer="table", id="tbl-orders", name="orders")),
    )

    assert adapter.addressable_names(_schema("販売")) == []
    assert adapter.addressable_names(_view("注文")) == ["sales_db", "注文"]
    assert adapter.addressable_names(column) == ["sales_db", "orders"]
