"""AWS Glue Data Catalog target adapter (the metadata store behind Athena)."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import boto3
from botocore.exceptions import ClientError

from descsync.core.assets import CatalogAsset
from descsync.core.errors import ErrorKind, TargetNotFoundError
from descsync.core.targets import TableWrite, TargetAdapter, TargetEntity

logger = logging.getLogger(__name__)

DEFAULT_REGION = "ap-northeast-1"

# Keys accepted by UpdateDatabase/UpdateTable; everything else in the Get*
# output is read-only metadata and is rejected by the API.
DATABASE_INPUT_KEYS = (
    "Name",
    "Description",
    "LocationUri",
    "Parameters",
    "CreateTableDefaultPermissions",
    "TargetDatabase",
    "FederatedDatabase",
)
TABLE_INPUT_KEYS = (
    "Name",
    "Description",
    "Owner",
    "LastAccessTime",
    "LastAnalyzedTime",
    "Retention",
    "StorageDescriptor",
    "PartitionKeys",
    "ViewOriginalText",
    "ViewExpandedText",
    "TableType",
    "Parameters",
    "TargetTable",
    "ViewDefinition",
)

_NOT_FOUND_CODES = {"EntityNotFoundException"}
_DENIED_CODES = {"AccessDeniedException", "InvalidGrantException"}


def database_input(database: Mapping[str, Any]) -> dict[str, Any]:
    """Build a DatabaseInput carrying every writable field of `database` forward."""
    return {k: database[k] for k in DATABASE_INPUT_KEYS if k in database}


def table_input(table: Mapping[str, Any]) -> dict[str, Any]:
    """Build a TableInput carrying every writable field of `table` forward."""
    return {k: table[k] for k in TABLE_INPUT_KEYS if k in table}


def build_glue_client(
    role_arn: str | None = None,
    profile_name: str | None = None,
    region_name: str = DEFAULT_REGION,
):
    """
    Create a Glue client, assuming `role_arn` when given.

    Args:
        role_arn: IAM role to assume through STS.
        profile_name: Shared config profile used for the base credentials.
        region_name: AWS region of the Glue catalog.
    """
    session = boto3.Session(profile_name=profile_name or None, region_name=region_name)
    if not role_arn:
        return session.client("glue")

    creds = session.client("sts").assume_role(
        RoleArn=role_arn,
        RoleSessionName="descsync",
    )["Credentials"]
    return session.client(
        "glue",
        aws_access_key_id=creds["AccessKeyId"],
        aws_secret_access_key=creds["SecretAccessKey"],
        aws_session_token=creds["SessionToken"],
    )


class GlueAdapter(TargetAdapter):
    """
    Adapter writing descriptions to Glue databases, tables and column comments.

    Glue replaces the whole table definition on update, so the table
    description and all column comments are written in a single UpdateTable
    call built from the table as last read.
    """

    system = "athena"
    nested_roots = True
    prefetch_columns = False

    def __init__(self, client, catalog_id: str | None = None):
        self.client = client
        self.catalog_id = catalog_id or None
        self._databases: dict[str, dict[str, Any]] | None = None

    def _catalog_kwargs(self) -> dict[str, str]:
        return {"CatalogId": self.catalog_id} if self.catalog_id else {}

    def list_databases(self) -> dict[str, dict[str, Any]]:
        """Return every database visible to the account (own and shared), by name."""
        if self._databases is None:
            databases: dict[str, dict[str, Any]] = {}
            paginator = self.client.get_paginator("get_databases")
            for page in paginator.paginate(ResourceShareType="ALL", **self._catalog_kwargs()):
                for db in page.get("DatabaseList", []):
                    databases[db.get("Name", "")] = db
            self._databases = databases
            logger.debug("Listed %d Glue databases", len(databases))
        return self._databases

    def get_schema(self, asset: CatalogAsset) -> TargetEntity:
        db = self.list_databases().get(asset.physical_name)
        if db is None:
            raise TargetNotFoundError(f"Glue database {asset.physical_name} does not exist.")
        return TargetEntity(key=asset.physical_name, description=db.get("Description"), native=db)

    def update_schema(self, asset: CatalogAsset, entity: TargetEntity, description: str) -> None:
        db = entity.native
        db_input = database_input(db)
        db_input["Description"] = description
        kwargs = {"CatalogId": db["CatalogId"]} if db.get("CatalogId") else self._catalog_kwargs()
        self.client.update_database(Name=db_input["Name"], DatabaseInput=db_input, **kwargs)

    def get_table(self, asset: CatalogAsset) -> TargetEntity:
        table = self.client.get_table(
            DatabaseName=self.database_name(asset),
            Name=asset.physical_name,
            **self._catalog_kwargs(),
        )["Table"]
        return TargetEntity(
            key=f"{self.database_name(asset)}.{asset.physical_name}",
            description=table.get("Description"),
            native=table,
        )

    def get_columns(self, asset: CatalogAsset, table: TargetEntity) -> list[TargetEntity]:
        columns = (table.native.get("StorageDescriptor") or {}).get("Columns") or []
        return [
            TargetEntity(key=c.get("Name", ""), description=c.get("Comment"), native=c)
            for c in columns
        ]

    def write_table(self, write: TableWrite) -> None:
        table = write.entity.native
        new_input = table_input(table)
        if write.description is not None:
            new_input["Description"] = write.description
        if write.columns:
            descriptor = dict(new_input.get("StorageDescriptor") or {})
            descriptor["Columns"] = [
                {**c, "Comment": write.columns[c["Name"]]} if c.get("Name") in write.columns else c
                for c in descriptor.get("Columns") or []
            ]
            new_input["StorageDescriptor"] = descriptor

        kwargs = {"CatalogId": table["CatalogId"]} if table.get("CatalogId") else self._catalog_kwargs()
        self.client.update_table(
            DatabaseName=table.get("DatabaseName") or self.database_name(write.asset),
            TableInput=new_input,
            **kwargs,
        )

    def classify_error(self, exc: Exception) -> ErrorKind:
        if isinstance(exc, TargetNotFoundError):
            return ErrorKind.NOT_FOUND
        if isinstance(exc, ClientError):
            code = exc.response.get("Error", {}).get("Code", "")
            if code in _NOT_FOUND_CODES:
                return ErrorKind.NOT_FOUND
            if code in _DENIED_CODES:
                return ErrorKind.PERMISSION_DENIED
        return ErrorKind.OTHER
