"""Denodo Virtual DataPort adapter.

VDP speaks the PostgreSQL wire protocol, so metadata is read through its
catalog functions (get_databases(), get_views(), get_view_columns()) and
written with VQL ALTER statements over a psycopg connection. VDP scopes
statements to the database of the connection, hence one connection per
database.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

import psycopg
from psycopg import errors as pgerrors
from psycopg.rows import dict_row

from descsync.core.adapters.denodo import DenodoTargetAdapter
from descsync.core.assets import CatalogAsset
from descsync.core.errors import ErrorKind, TargetNotFoundError
from descsync.core.targets import TargetEntity

logger = logging.getLogger(__name__)

VIEW_TYPE_BASE = 0
VIEW_TYPE_DERIVED = 1

GET_DATABASE_SQL = "select db_name, description from get_databases() where db_name = %s"
GET_VIEWS_SQL = (
    "select database_name, name, view_type, description "
    "from get_views() where database_name = %s"
)
GET_VIEW_COLUMNS_SQL = (
    "select gvc.database_name, gv.view_type, gvc.view_name, gvc.column_name, gvc.column_remarks "
    "from get_view_columns() gvc "
    "inner join get_views() gv "
    "on gvc.database_name = gv.database_name and gvc.view_name = gv.name "
    "where gvc.database_name = %s"
)

_DENIED = (pgerrors.InsufficientPrivilege, pgerrors.InvalidAuthorizationSpecification)
_NOT_FOUND = (pgerrors.UndefinedTable, pgerrors.UndefinedObject, pgerrors.InvalidCatalogName)


def quote_literal(text: str) -> str:
    """Quote `text` as a VQL string literal."""
    return "'" + text.replace("'", "''") + "'"


def alter_target(view_type: int) -> str:
    """Base views are altered as tables, every other view type as a view."""
    return "table" if view_type == VIEW_TYPE_BASE else "view"


@dataclass(frozen=True)
class VdpConnectionConfig:
    """Connection settings shared by every per-database connection."""

    host: str
    port: int
    user: str
    password: str
    default_database: str = "admin"
    sslmode: str = "require"

    def connect(self, database: str | None = None) -> psycopg.Connection:
        return psycopg.connect(
            host=self.host,
            port=self.port,
            dbname=database or self.default_database,
            user=self.user,
            password=self.password,
            sslmode=self.sslmode,
            autocommit=True,
            row_factory=dict_row,
        )


class DenodoVdpAdapter(DenodoTargetAdapter):
    """
    Adapter writing descriptions to VDP databases, views and view columns.

    Args:
        connect: Callable returning a connection for a database name, or for
            the default database when given None.
        company_id: Catalog tenant identifier (global ID input).
        host: Denodo host name (global ID input).
    """

    system = "denodo-vdp"

    def __init__(self, connect: Callable[[str | None], Any], company_id: str, host: str):
        super().__init__(company_id, host)
        self._connect = connect
        self._connections: dict[str | None, Any] = {}
        self._views: dict[str, dict[str, dict[str, Any]]] = {}
        self._columns: dict[str, dict[str, list[dict[str, Any]]]] = {}
        self._lock = threading.Lock()

    def connection(self, database: str | None = None):
        with self._lock:
            conn = self._connections.get(database)
            if conn is None:
                logger.debug("Open VDP connection. database: %s", database or "<default>")
                conn = self._connect(database)
                self._connections[database] = conn
            return conn

    def _fetchall(self, database: str | None, query: str, params: tuple = ()) -> list[dict[str, Any]]:
        with self.connection(database).cursor() as cur:
            cur.execute(query, params)
            return list(cur.fetchall())

    def _execute(self, database: str | None, statement: str) -> None:
        logger.debug("Execute VQL on %s: %s", database or "<default>", statement)
        with self.connection(database).cursor() as cur:
            cur.execute(statement)

    def views(self, database: str) -> dict[str, dict[str, Any]]:
        """Return the views of `database` keyed by view name."""
        with self._lock:
            cached = self._views.get(database)
        if cached is None:
            rows = self._fetchall(database, GET_VIEWS_SQL, (database,))
            cached = {row["name"]: row for row in rows}
            with self._lock:
                self._views[database] = cached
        return cached

    def view_columns(self, database: str) -> dict[str, list[dict[str, Any]]]:
        """Return the columns of every view in `database`, grouped by view name."""
        with self._lock:
            cached = self._columns.get(database)
        if cached is None:
            cached = {}
            for row in self._fetchall(database, GET_VIEW_COLUMNS_SQL, (database,)):
                cached.setdefault(row["view_name"], []).append(row)
            with self._lock:
                self._columns[database] = cached
        return cached

    def get_schema(self, asset: CatalogAsset) -> TargetEntity:
        rows = self._fetchall(None, GET_DATABASE_SQL, (asset.physical_name,))
        if not rows:
            raise TargetNotFoundError(f"VDP database {asset.physical_name} does not exist.")
        return TargetEntity(key=asset.physical_name, description=rows[0]["description"], native=rows[0])

    def update_schema(self, asset: CatalogAsset, entity: TargetEntity, description: str) -> None:
        self._execute(
            asset.physical_name,
            f"alter database {asset.physical_name} {quote_literal(description)}",
        )

    def get_table(self, asset: CatalogAsset) -> TargetEntity:
        database = self.database_name(asset)
        view = self.views(database).get(asset.physical_name)
        if view is None:
            raise TargetNotFoundError(f"VDP view {database}.{asset.physical_name} does not exist.")
        return TargetEntity(
            key=f"{database}.{asset.physical_name}",
            description=view["description"],
            native=view,
        )

    def get_columns(self, asset: CatalogAsset, table: TargetEntity) -> list[TargetEntity]:
        rows = self.view_columns(table.native["database_name"]).get(table.native["name"], [])
        return [
            TargetEntity(
                key=row["column_name"],
                description=row["column_remarks"],
                native=row,
                # VDP only accepts column descriptions on derived views.
                read_only=row["view_type"] != VIEW_TYPE_DERIVED,
            )
            for row in rows
        ]

    def update_table(self, asset: CatalogAsset, entity: TargetEntity, description: str) -> None:
        view = entity.native
        self._execute(
            view["database_name"],
            f"alter {alter_target(view['view_type'])} {view['name']} "
            f"description = {quote_literal(description)}",
        )

    def update_column(
        self,
        asset: CatalogAsset,
        table: TargetEntity,
        column: TargetEntity,
        description: str,
    ) -> None:
        view = table.native
        self._execute(
            view["database_name"],
            f"alter {alter_target(view['view_type'])} {view['name']} "
            f"(alter column {column.key} add (description = {quote_literal(description)}))",
        )

    def classify_error(self, exc: Exception) -> ErrorKind:
        if isinstance(exc, (TargetNotFoundError, *_NOT_FOUND)):
            return ErrorKind.NOT_FOUND
        if isinstance(exc, _DENIED):
            return ErrorKind.PERMISSION_DENIED
        return ErrorKind.OTHER

    def close(self) -> None:
        with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()
        for conn in connections:
            conn.close()
