"""BigQuery target adapter.

Dataset and column descriptions live in BigQuery itself; the table
description is the overview of the table's Data Catalog entry.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import Any

from google.api_core import exceptions as gexc
from google.cloud import bigquery, datacatalog_v1
from google.oauth2 import service_account

from descsync.core.assets import LAYER_CONTAINER, CatalogAsset, ancestor_by_layer
from descsync.core.errors import AuthError, ErrorKind
from descsync.core.targets import TableWrite, TargetAdapter, TargetEntity

logger = logging.getLogger(__name__)

BIGQUERY_SCOPES = ("https://www.googleapis.com/auth/bigquery",)
DATACATALOG_SCOPES = ("https://www.googleapis.com/auth/cloud-platform",)


def strip_paragraph_tags(text: str) -> str:
    """Remove the `<p>` wrappers Data Catalog adds around rich-text overviews."""
    return text.replace("<p>", "").replace("</p>", "")


def with_description(field: bigquery.SchemaField, description: str) -> bigquery.SchemaField:
    """Return a copy of `field` carrying a new description."""
    # to_api_repr() hands back the field's own properties dict.
    api_repr = copy.deepcopy(field.to_api_repr())
    api_repr["description"] = description
    return bigquery.SchemaField.from_api_repr(api_repr)


class BigQueryAdapter(TargetAdapter):
    """
    Adapter writing descriptions to BigQuery datasets, tables and columns.

    Args:
        client: BigQuery client.
        catalog: Data Catalog client used for table overviews.
    """

    system = "bigquery"
    nested_roots = True
    prefetch_columns = False

    def __init__(self, client: bigquery.Client, catalog: datacatalog_v1.DataCatalogClient):
        self.client = client
        self.catalog = catalog

    @classmethod
    def from_service_account_json(cls, credentials_json: str) -> "BigQueryAdapter":
        """Build the adapter from a service account key given as a JSON string."""
        try:
            info = json.loads(credentials_json)
        except (TypeError, ValueError) as e:
            raise AuthError("Google service account credentials are not valid JSON.") from e

        bq_creds = service_account.Credentials.from_service_account_info(info, scopes=BIGQUERY_SCOPES)
        dc_creds = service_account.Credentials.from_service_account_info(
            info, scopes=DATACATALOG_SCOPES
        )
        return cls(
            bigquery.Client(project=info.get("project_id"), credentials=bq_creds),
            datacatalog_v1.DataCatalogClient(credentials=dc_creds),
        )

    def project_name(self, asset: CatalogAsset) -> str:
        ancestor = ancestor_by_layer(asset, LAYER_CONTAINER)
        if ancestor and ancestor.id != asset.id:
            return ancestor.name
        return self.client.project

    def get_schema(self, asset: CatalogAsset) -> TargetEntity:
        dataset_id = f"{self.project_name(asset)}.{asset.physical_name}"
        dataset = self.client.get_dataset(dataset_id)
        return TargetEntity(key=dataset_id, description=dataset.description, native=dataset)

    def update_schema(self, asset: CatalogAsset, entity: TargetEntity, description: str) -> None:
        dataset = entity.native
        dataset.description = description
        self.client.update_dataset(dataset, ["description"])

    def get_table(self, asset: CatalogAsset) -> TargetEntity:
        project = self.project_name(asset)
        table_id = f"{project}.{self.database_name(asset)}.{asset.physical_name}"
        table = self.client.get_table(table_id)
        entry = self.catalog.lookup_entry(
            request={
                "fully_qualified_name": f"bigquery:{table_id}",
                "project": project,
                "location": table.location,
            }
        )
        overview = entry.business_context.entry_overview.overview
        return TargetEntity(
            key=table_id,
            description=strip_paragraph_tags(overview) if overview else None,
            native=(table, entry),
        )

    def get_columns(self, asset: CatalogAsset, table: TargetEntity) -> list[TargetEntity]:
        bq_table, _ = table.native
        return [
            TargetEntity(key=field.name, description=field.description, native=field)
            for field in bq_table.schema
        ]

    def write_table(self, write: TableWrite) -> None:
        """Update all column descriptions in one schema patch, then the overview."""
        table, entry = write.entity.native
        if write.columns:
            table.schema = [
                with_description(field, write.columns[field.name])
                if field.name in write.columns
                else field
                for field in table.schema
            ]
            self.client.update_table(table, ["schema"])
            logger.debug("Updated schema field descriptions of %s", write.entity.key)
        if write.description is not None:
            self.catalog.modify_entry_overview(
                request={"name": entry.name, "entry_overview": {"overview": write.description}}
            )
            logger.debug("Updated overview of %s", write.entity.key)

    def classify_error(self, exc: Exception) -> ErrorKind:
        if isinstance(exc, gexc.NotFound):
            return ErrorKind.NOT_FOUND
        if isinstance(exc, (gexc.Forbidden, gexc.PermissionDenied, gexc.Unauthorized)):
            return ErrorKind.PERMISSION_DENIED
        return ErrorKind.OTHER

    def close(self) -> None:
        self.client.close()
        transport: Any = getattr(self.catalog, "transport", None)
        if transport is not None:
            transport.close()
