"""Pieces shared by the two Denodo adapters.

Denodo objects are matched to catalog assets through the catalog's global
ID, which is derived from the company, the Denodo host and the
fully-qualified object name.
"""

from __future__ import annotations

import hashlib

from descsync.core.assets import CatalogAsset
from descsync.core.hierarchy import Addressing
from descsync.core.targets import TargetAdapter, TargetEntity

GLOBAL_ID_PREFIXES = {
    "schema": "schm-",
    "table": "tbl-",
    "column": "clmn-",
}


def global_id(company_id: str, host: str, fqn: str, object_type: str) -> str:
    """
    Return the catalog global ID of a Denodo object.

    Args:
        company_id: Tenant identifier of the catalog.
        host: Denodo host name as registered in the catalog.
        fqn: Database, view and column names concatenated without separator.
        object_type: schema, table or column.
    """
    prefix = GLOBAL_ID_PREFIXES.get(object_type)
    if prefix is None:
        raise ValueError(f"Unknown object type: {object_type}")
    digest = hashlib.md5(f"{company_id}{host}{fqn}".encode("utf-8")).hexdigest()
    return f"{prefix}{digest}"


def render_description(logical_name: str, description: str) -> str:
    """Render the text written to Denodo: the logical name, then the description."""
    return f"【項目名称】{logical_name}\n【説明】{description}"


class DenodoTargetAdapter(TargetAdapter):
    """Base for Denodo adapters: global-ID addressing and rendered descriptions."""

    addressing = Addressing.ID
    prefetch_columns = True

    def __init__(self, company_id: str, host: str):
        self.company_id = company_id
        self.host = host

    def render_description(self, asset: CatalogAsset) -> str:
        return render_description(asset.logical_name, asset.description)

    def column_asset_key(self, table: CatalogAsset, column: TargetEntity) -> str:
        fqn = f"{self.database_name(table)}{table.physical_name}{column.key}"
        return global_id(self.company_id, self.host, fqn, "column")
