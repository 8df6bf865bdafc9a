"""Target system adapter interface.

A target adapter wraps one vendor system (warehouse, virtual database, query
engine) and exposes the handful of reads and description writes the driver
needs. Adapters know their vendor's error vocabulary and classify failures;
they never decide whether to write and never retry.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping

from descsync.core.assets import LAYER_DATABASE, LAYER_TABLE, CatalogAsset, ancestor_by_layer
from descsync.core.errors import ErrorKind
from descsync.core.hierarchy import Addressing

_MULTIBYTE_SCRIPT = re.compile(
    "["
    "\u3040-\u309f"  # hiragana
    "\u30a0-\u30ff"  # katakana
    "\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff"  # kanji
    "\uff01-\uffef"  # full-width forms
    "]"
)


def has_multibyte_script(text: str) -> bool:
    """Return True if `text` contains Japanese script or full-width characters."""
    return bool(_MULTIBYTE_SCRIPT.search(text or ""))


@dataclass(frozen=True)
class TargetEntity:
    """
    Native object in a target system, reduced to what the driver needs.

    Attributes:
        key: Human readable identifier used in logs and results.
        description: Current description; None when the field is absent.
        native: The vendor object, carried forward unchanged on update.
        read_only: The agent must never write this object.
    """

    key: str
    description: str | None = None
    native: Any = field(default=None, compare=False, repr=False)
    read_only: bool = False

    @property
    def has_value(self) -> bool:
        return self.description is not None


@dataclass(frozen=True)
class TableWrite:
    """Approved changes for one table and its columns."""

    asset: CatalogAsset
    entity: TargetEntity
    description: str | None = None
    columns: Mapping[str, str] = field(default_factory=dict)
    column_entities: Mapping[str, TargetEntity] = field(default_factory=dict)


class TargetAdapter(ABC):
    """
    Base class for target system adapters.

    Class attributes:
        system: Short system name used in logs and results.
        addressing: How column assets are matched to target columns.
        ascii_names_only: The target cannot address names written in
            multibyte scripts; such entities are skipped before any call.
        nested_roots: Catalog roots are containers above the databases.
        prefetch_columns: Load every column asset before reconciling.
    """

    system: str = ""
    addressing: Addressing = Addressing.NAME
    ascii_names_only: bool = False
    nested_roots: bool = False
    prefetch_columns: bool = True

    def render_description(self, asset: CatalogAsset) -> str:
        """Return the text to write for `asset`, before prefixing."""
        return asset.description

    def database_name(self, asset: CatalogAsset) -> str:
        """Name of the database containing `asset` (or the asset itself)."""
        ancestor = ancestor_by_layer(asset, LAYER_DATABASE)
        if ancestor and ancestor.id != asset.id:
            return ancestor.name
        return asset.physical_name

    def table_name(self, asset: CatalogAsset) -> str:
        """Name of the table containing `asset` (or the asset itself)."""
        ancestor = ancestor_by_layer(asset, LAYER_TABLE)
        if ancestor and ancestor.id != asset.id:
            return ancestor.name
        return asset.physical_name

    def addressable_names(self, asset: CatalogAsset) -> list[str]:
        """Names that must be addressable for `asset` to be reconciled."""
        if asset.object_type == "schema":
            return [asset.physical_name]
        if asset.object_type == "table":
            return [self.database_name(asset), asset.physical_name]
        return [self.database_name(asset), self.table_name(asset), asset.physical_name]

    def column_asset_key(self, table: CatalogAsset, column: TargetEntity) -> str:
        """Key used to find the catalog asset of a target column."""
        return column.key

    @abstractmethod
    def get_schema(self, asset: CatalogAsset) -> TargetEntity:
        """Return the target database/dataset for a schema-level asset."""
        ...

    @abstractmethod
    def update_schema(self, asset: CatalogAsset, entity: TargetEntity, description: str) -> None:
        """Write a new description for the database/dataset."""
        ...

    @abstractmethod
    def get_table(self, asset: CatalogAsset) -> TargetEntity:
        """Return the target table/view for a table-level asset."""
        ...

    @abstractmethod
    def get_columns(self, asset: CatalogAsset, table: TargetEntity) -> list[TargetEntity]:
        """Return the columns of a target table, keyed by column name."""
        ...

    def update_table(self, asset: CatalogAsset, entity: TargetEntity, description: str) -> None:
        """Write a new table description."""
        raise NotImplementedError

    def update_column(
        self,
        asset: CatalogAsset,
        table: TargetEntity,
        column: TargetEntity,
        description: str,
    ) -> None:
        """Write a new column description."""
        raise NotImplementedError

    def write_table(self, write: TableWrite) -> None:
        """
        Apply the approved changes of one table.

        The default issues one call for the table description and one per
        column. Adapters whose native API updates a table and its columns in
        one request override this.
        """
        if write.description is not None:
            self.update_table(write.asset, write.entity, write.description)
        for name, description in write.columns.items():
            self.update_column(write.asset, write.entity, write.column_entities[name], description)

    @abstractmethod
    def classify_error(self, exc: Exception) -> ErrorKind:
        """Translate a vendor exception into an ErrorKind."""
        ...

    def close(self) -> None:
        """Release connections held by the adapter."""
        return None
