"""Denodo Data Catalog (local catalog) adapter, over its public REST API."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

import httpx

from descsync.core.adapters.denodo import DenodoTargetAdapter
from descsync.core.adapters.http import DEFAULT_TIMEOUT, decode_json, send_with_retry
from descsync.core.assets import LAYER_TABLE, CatalogAsset, ancestor_by_layer
from descsync.core.errors import DescsyncError, ErrorKind, MalformedResponseError, TargetNotFoundError
from descsync.core.targets import TargetEntity

logger = logging.getLogger(__name__)

DESCRIPTION_TYPE = "RICH_TEXT"


class DenodoAPIError(DescsyncError):
    """Raised when the Denodo Data Catalog answers with a non-200 status."""

    def __init__(self, status: int, message: str):
        super().__init__(f"Denodo Data Catalog request failed. Code: {status}, Message: {message}")
        self.status = status


def catalog_base_url(host: str, port: int | str) -> str:
    return f"https://{host}:{port}/denodo-data-catalog"


class DenodoCatalogClient:
    """
    Thin client for the Denodo Data Catalog REST endpoints used here.

    Args:
        base_url: `https://{host}:{port}/denodo-data-catalog`.
        username: Basic auth user.
        password: Basic auth password.
        http: Optional preconfigured httpx client.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        *,
        http: httpx.Client | None = None,
        max_retries: int | None = None,
        sleep: Callable[[float], Any] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.http = http or httpx.Client(timeout=DEFAULT_TIMEOUT)
        self.auth = httpx.BasicAuth(username, password)
        self._retry_kwargs: dict[str, Any] = {"sleep": sleep}
        if max_retries is not None:
            self._retry_kwargs["max_retries"] = max_retries

    def close(self) -> None:
        self.http.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}{path}"
        response = send_with_retry(
            lambda: self.http.request(method, url, auth=self.auth, **kwargs),
            **self._retry_kwargs,
        )
        if response.status_code != 200:
            raise DenodoAPIError(response.status_code, response.reason_phrase)
        return response

    def _get_json(self, path: str, params: dict[str, str] | None = None) -> Any:
        return decode_json(self._request("GET", path, params=params), path)

    def get_local_databases(self) -> list[dict[str, Any]]:
        body = self._get_json("/public/api/database-management/local/databases")
        if not isinstance(body, list):
            raise MalformedResponseError("Local database listing must be an array.")
        return body

    def update_local_database(self, database_id: int, description: str) -> None:
        self._request(
            "PUT",
            "/public/api/database-management/local/database",
            json={
                "databaseId": database_id,
                "description": description,
                "descriptionType": DESCRIPTION_TYPE,
            },
        )

    def get_view_details(self, database_name: str, view_name: str) -> dict[str, Any]:
        body = self._get_json(
            "/public/api/view-details",
            params={"databaseName": database_name, "viewName": view_name},
        )
        if not isinstance(body, dict):
            raise MalformedResponseError("View details must be an object.")
        return body

    def get_view_columns(self, database_name: str, view_name: str) -> list[dict[str, Any]]:
        body = self._get_json(
            "/public/api/views/fields",
            params={"databaseName": database_name, "viewName": view_name},
        )
        if not isinstance(body, list):
            raise MalformedResponseError("View fields must be an array.")
        return body

    def update_view_description(self, view_id: int, description: str) -> None:
        self._request(
            "PUT",
            "/public/api/views",
            json={"id": view_id, "description": description, "descriptionType": DESCRIPTION_TYPE},
        )

    def update_view_field_description(
        self,
        database_name: str,
        view_name: str,
        field_name: str,
        description: str,
    ) -> None:
        self._request(
            "PUT",
            "/public/api/views/fields",
            json={
                "databaseName": database_name,
                "viewName": view_name,
                "fieldName": field_name,
                "fieldDescription": description,
            },
        )


class DenodoCatalogAdapter(DenodoTargetAdapter):
    """
    Adapter writing descriptions to the Denodo Data Catalog.

    Only elements stored locally in the Data Catalog (`inLocal`) are
    writable; the REST API rejects database and view names written in
    multibyte scripts.
    """

    system = "denodo-catalog"
    ascii_names_only = True

    def __init__(self, client: DenodoCatalogClient, company_id: str, host: str):
        super().__init__(company_id, host)
        self.client = client
        self._databases: dict[str, dict[str, Any]] | None = None
        self._lock = threading.Lock()

    def local_databases(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            if self._databases is None:
                self._databases = {
                    db.get("databaseName", ""): db for db in self.client.get_local_databases()
                }
            return self._databases

    def addressable_names(self, asset: CatalogAsset) -> list[str]:
        """
        Only database and view names travel in request paths.

        Local databases are updated by id and field names go in the JSON
        body, so neither needs to be addressable.
        """
        if asset.object_type == "schema":
            return []
        if asset.object_type == "table":
            return [self.database_name(asset), asset.physical_name]
        names = [self.database_name(asset)]
        table = ancestor_by_layer(asset, LAYER_TABLE)
        if table:
            names.append(table.name)
        return names

    def get_schema(self, asset: CatalogAsset) -> TargetEntity:
        db = self.local_databases().get(asset.physical_name)
        if db is None:
            raise TargetNotFoundError(f"Local database {asset.physical_name} does not exist.")
        return TargetEntity(
            key=asset.physical_name,
            description=db.get("databaseDescription") or "",
            native=db,
        )

    def update_schema(self, asset: CatalogAsset, entity: TargetEntity, description: str) -> None:
        self.client.update_local_database(entity.native["databaseId"], description)

    def get_table(self, asset: CatalogAsset) -> TargetEntity:
        database = self.database_name(asset)
        detail = self.client.get_view_details(database, asset.physical_name)
        return TargetEntity(
            key=f"{database}.{asset.physical_name}",
            description=detail.get("description") or "",
            native=detail,
            read_only=not detail.get("inLocal", False),
        )

    def get_columns(self, asset: CatalogAsset, table: TargetEntity) -> list[TargetEntity]:
        fields = self.client.get_view_columns(self.database_name(asset), asset.physical_name)
        return [
            TargetEntity(
                key=f.get("name", ""),
                description=f.get("description") or "",
                native=f,
                read_only=not f.get("inLocal", False),
            )
            for f in fields
        ]

    def update_table(self, asset: CatalogAsset, entity: TargetEntity, description: str) -> None:
        self.client.update_view_description(entity.native["id"], description)

    def update_column(
        self,
        asset: CatalogAsset,
        table: TargetEntity,
        column: TargetEntity,
        description: str,
    ) -> None:
        self.client.update_view_field_description(
            self.database_name(asset),
            asset.physical_name,
            column.key,
            description,
        )

    def classify_error(self, exc: Exception) -> ErrorKind:
        if isinstance(exc, TargetNotFoundError):
            return ErrorKind.NOT_FOUND
        if isinstance(exc, DenodoAPIError):
            if exc.status in (401, 403):
                return ErrorKind.PERMISSION_DENIED
            if exc.status == 404:
                return ErrorKind.NOT_FOUND
        return ErrorKind.OTHER

    def close(self) -> None:
        self.client.close()
