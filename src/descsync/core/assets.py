"""Core domain models for catalog assets.

These models represent catalog entities in a simple, immutable form.
They are intentionally free of HTTP and vendor SDK types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from descsync.core.errors import MalformedResponseError

LAYER_CONTAINER = "schema4"
LAYER_DATABASE = "schema3"
LAYER_TABLE = "table"


@dataclass(frozen=True)
class AssetPath:
    """One ancestor reference in an asset's path."""

    path_layer: str = ""
    id: str = ""
    object_type: str = ""
    name: str = ""

    def __bool__(self) -> bool:
        return bool(self.path_layer)


NO_PATH = AssetPath()


@dataclass(frozen=True)
class CatalogAsset:
    """
    Lightweight representation of a catalog asset.

    Attributes:
        id: Stable catalog identifier.
        object_type: schema, table or column.
        service_name: Originating system tag (bigquery, athena, denodo).
        physical_name: Name of the object in the source system.
        logical_name: Human readable name maintained in the catalog.
        description: Text to propagate into the target system.
        path: Ancestor chain, each entry tagged with its path layer.
        child_asset_ids: Identifiers of direct children.
        is_lost: True when the object is believed gone from the source system.
        created_by: Identity that created the catalog entry.
    """

    id: str
    object_type: str
    service_name: str = ""
    physical_name: str = ""
    logical_name: str = ""
    description: str = ""
    path: tuple[AssetPath, ...] = ()
    child_asset_ids: tuple[str, ...] = ()
    is_lost: bool = False
    created_by: str = ""
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def has_description(self) -> bool:
        return self.description != ""

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "CatalogAsset":
        """Build an asset from one element of a catalog API `data` array."""
        if not isinstance(payload, Mapping):
            raise MalformedResponseError(f"Asset must be an object, got {type(payload).__name__}")
        asset_id = payload.get("id")
        if not isinstance(asset_id, str) or not asset_id:
            raise MalformedResponseError("Asset is missing its `id`.")

        path_entries = payload.get("path") or []
        if not isinstance(path_entries, list):
            raise MalformedResponseError(f"Asset {asset_id} has a non-list `path`.")
        path = tuple(
            AssetPath(
                path_layer=str(p.get("path_layer") or ""),
                id=str(p.get("id") or ""),
                object_type=str(p.get("object_type") or ""),
                name=str(p.get("name") or ""),
            )
            for p in path_entries
            if isinstance(p, Mapping)
        )

        child_ids = payload.get("child_asset_ids") or []
        if not isinstance(child_ids, list):
            raise MalformedResponseError(f"Asset {asset_id} has non-list `child_asset_ids`.")

        return cls(
            id=asset_id,
            object_type=str(payload.get("object_type") or ""),
            service_name=str(payload.get("service_name") or ""),
            physical_name=str(payload.get("physical_name") or ""),
            logical_name=str(payload.get("logical_name") or ""),
            description=str(payload.get("description") or ""),
            path=path,
            child_asset_ids=tuple(str(c) for c in child_ids),
            is_lost=bool(payload.get("is_lost", False)),
            created_by=str(payload.get("created_by") or ""),
            raw=dict(payload),
        )


def ancestor_by_layer(asset: CatalogAsset, path_layer: str) -> AssetPath:
    """Return the path entry for `path_layer`, or NO_PATH when the asset has none."""
    for p in asset.path:
        if p.path_layer == path_layer:
            return p
    return NO_PATH
