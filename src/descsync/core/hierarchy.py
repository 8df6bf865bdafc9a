"""Catalog hierarchy assembly.

Walks the catalog top-down: root assets are listed page by page through the
type-scoped listing endpoint, then every further level is fetched by child
IDs in bounded batches. Nothing here classifies or retries errors; a failing
request aborts the walk and the error propagates to the caller unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, Protocol, Sequence, TypeVar

from descsync.core.assets import CatalogAsset
from descsync.core.selectors import AssetSelector, root_selector

logger = logging.getLogger(__name__)

MAX_IDS_PER_REQUEST = 100
ROOT_OBJECT_TYPE = "schema"

T = TypeVar("T")


@dataclass(frozen=True)
class AssetPage:
    """One page of the type-scoped listing; an empty `last_id` ends pagination."""

    assets: list[CatalogAsset]
    last_id: str = ""


class CatalogSource(Protocol):
    """Interface for the catalog read operations used by the assembler."""

    def get_assets_by_type(self, object_type: str, last_id: str) -> AssetPage:
        """Return one page of assets of the given type after `last_id`."""
        ...

    def get_assets_by_ids(self, ids: Sequence[str]) -> list[CatalogAsset]:
        """Return the assets for at most MAX_IDS_PER_REQUEST identifiers."""
        ...


def split_into_chunks(items: Sequence[T], size: int) -> list[list[T]]:
    """Split `items` into consecutive slices of at most `size` elements."""
    if size < 1:
        raise ValueError("size must be >= 1")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def fetch_children(
    source: CatalogSource,
    parents: Iterable[CatalogAsset],
    *,
    chunk_size: int = MAX_IDS_PER_REQUEST,
) -> list[CatalogAsset]:
    """
    Fetch the direct children of every parent, preserving order.

    Child IDs of each parent are requested in slices of at most `chunk_size`
    identifiers. Results are concatenated in slice order and parent order.
    The first failing slice aborts the whole operation.
    """
    children: list[CatalogAsset] = []
    for parent in parents:
        for chunk in split_into_chunks(parent.child_asset_ids, chunk_size):
            try:
                children.extend(source.get_assets_by_ids(chunk))
            except Exception:
                logger.error("Failed to fetch child assets of parent %s", parent.id)
                raise
        logger.debug("Fetched child assets of parent %s", parent.id)
    logger.debug("Fetched %d child assets", len(children))
    return children


def fetch_root_assets(
    source: CatalogSource,
    selector: AssetSelector,
    *,
    object_type: str = ROOT_OBJECT_TYPE,
) -> list[CatalogAsset]:
    """
    List every root asset matching `selector`.

    Pages are requested with the cursor returned by the previous page,
    starting from the empty cursor, until a page returns an empty cursor.
    """
    roots: list[CatalogAsset] = []
    cursor = ""
    while True:
        try:
            page = source.get_assets_by_type(object_type, cursor)
        except Exception:
            logger.error("Failed to list %s assets. last_id: %r", object_type, cursor)
            raise
        roots.extend(a for a in page.assets if selector.matches(a))
        if page.last_id == "":
            return roots
        logger.debug("Root asset listing continues. last_id: %s", page.last_id)
        cursor = page.last_id


class Addressing(str, Enum):
    """How a target adapter refers to catalog assets."""

    ID = "ID"
    NAME = "NAME"


class AssetIndex:
    """
    Lookup of assets by catalog ID or by physical name.

    When several assets share a key, the last one wins; callers must not rely
    on iteration order for side effects.
    """

    def __init__(self, assets: Iterable[CatalogAsset], addressing: Addressing):
        self.addressing = addressing
        self._by_key: dict[str, CatalogAsset] = {}
        for asset in assets:
            self._by_key[self.key_of(asset)] = asset

    def key_of(self, asset: CatalogAsset) -> str:
        if self.addressing == Addressing.ID:
            return asset.id
        return asset.physical_name

    def get(self, key: str) -> CatalogAsset | None:
        return self._by_key.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def __len__(self) -> int:
        return len(self._by_key)

    def __iter__(self) -> Iterator[str]:
        return iter(self._by_key)


@dataclass
class AssetTree:
    """
    Assembled catalog hierarchy.

    `columns` is None when columns were not prefetched; use
    `columns_of()` which falls back to the batch fetcher in that case.
    """

    schemas: list[CatalogAsset]
    tables: list[CatalogAsset]
    columns: list[CatalogAsset] | None = None
    roots: list[CatalogAsset] = field(default_factory=list)
    _by_id: dict[str, dict[str, CatalogAsset]] = field(
        default_factory=dict, init=False, repr=False
    )

    def _level(self, level: str) -> list[CatalogAsset]:
        return {
            "schemas": self.schemas,
            "tables": self.tables,
            "columns": self.columns or [],
        }[level]

    def columns_of(
        self,
        table: CatalogAsset,
        source: CatalogSource | None = None,
        *,
        chunk_size: int = MAX_IDS_PER_REQUEST,
    ) -> list[CatalogAsset]:
        """Return the column assets of `table`, fetching them when not prefetched."""
        if self.columns is None:
            if source is None:
                raise ValueError("Columns were not prefetched and no source was given.")
            return fetch_children(source, [table], chunk_size=chunk_size)
        return self._children(table, "columns")

    def tables_of(self, schema: CatalogAsset) -> list[CatalogAsset]:
        """Return the table assets of `schema` in catalog order."""
        return self._children(schema, "tables")

    def _children(self, parent: CatalogAsset, level: str) -> list[CatalogAsset]:
        by_id = self._by_id.get(level)
        if by_id is None:
            by_id = {a.id: a for a in self._level(level)}
            self._by_id[level] = by_id
        return [by_id[i] for i in parent.child_asset_ids if i in by_id]


def assemble_tree(
    source: CatalogSource,
    service_name: str,
    created_by: str | None = None,
    *,
    nested_roots: bool = False,
    prefetch_columns: bool = True,
    schema_selector: AssetSelector | None = None,
    chunk_size: int = MAX_IDS_PER_REQUEST,
) -> AssetTree:
    """
    Assemble the schema -> table -> column hierarchy for one source system.

    Args:
        source: Catalog read client.
        service_name: Only root assets from this system are kept.
        created_by: When non-empty, only root assets created by this identity.
        nested_roots: Root assets are containers (projects, catalogs) whose
            children are the schema-level assets.
        prefetch_columns: Fetch all columns up front; otherwise the driver
            fetches them per table.
        schema_selector: Optional extra filter applied to schema-level assets.
        chunk_size: Maximum number of IDs per by-ID request.

    Returns:
        An AssetTree with the flat per-level collections.
    """
    logger.info("List %s root assets", service_name)
    roots = fetch_root_assets(source, root_selector(service_name, created_by))

    if nested_roots:
        logger.info("List %s schema assets", service_name)
        schemas = fetch_children(source, roots, chunk_size=chunk_size)
    else:
        schemas = list(roots)
    if schema_selector is not None:
        schemas = [s for s in schemas if schema_selector.matches(s)]

    logger.info("List %s table assets", service_name)
    tables = fetch_children(source, schemas, chunk_size=chunk_size)

    columns = None
    if prefetch_columns:
        logger.info("List %s column assets", service_name)
        columns = fetch_children(source, tables, chunk_size=chunk_size)

    return AssetTree(schemas=schemas, tables=tables, columns=columns, roots=roots)
