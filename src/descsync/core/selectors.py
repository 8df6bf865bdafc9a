"""Asset selector abstractions and implementations.

This module defines the selector system used to decide whether a catalog
asset takes part in a reconciliation run. Selectors encapsulate a single
matching rule (originating service, creator, database allow-list) and can be
composed with AndSelector.

Selectors are pure, side-effect-free objects.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Iterable

from descsync.core.assets import LAYER_DATABASE, ancestor_by_layer

if TYPE_CHECKING:
    from descsync.core.assets import CatalogAsset


class AssetSelector(ABC):
    """
    Abstract base class for all asset selectors.

    An AssetSelector encapsulates a single piece of matching logic that
    determines whether a given asset satisfies a specific criterion.
    """

    @abstractmethod
    def matches(self, asset: CatalogAsset) -> bool:
        """
        Determine whether the given asset matches this selector.

        Args:
            asset: CatalogAsset instance to evaluate.

        Returns:
            True if the asset matches the selector criteria, False otherwise.
        """
        ...


class ServiceSelector(AssetSelector):
    """Selector that matches assets originating from a given system."""

    def __init__(self, service_name: str):
        self.service_name = service_name

    def matches(self, asset: CatalogAsset) -> bool:
        return asset.service_name == self.service_name


class CreatorSelector(AssetSelector):
    """
    Selector that matches assets created by a given identity.

    An empty creator matches everything.
    """

    def __init__(self, created_by: str | None):
        self.created_by = created_by or ""

    def matches(self, asset: CatalogAsset) -> bool:
        if not self.created_by:
            return True
        return asset.created_by == self.created_by


class DatabaseAllowListSelector(AssetSelector):
    """
    Selector that restricts assets to an allow-list of database names.

    Database-level assets are matched on their own physical name, deeper
    assets on the name of their `schema3` ancestor. An empty allow-list
    matches everything.
    """

    def __init__(self, names: Iterable[str] | None):
        self.names = frozenset(n for n in (names or ()) if n)

    def database_name(self, asset: CatalogAsset) -> str:
        ancestor = ancestor_by_layer(asset, LAYER_DATABASE)
        if ancestor and ancestor.id != asset.id:
            return ancestor.name
        return asset.physical_name

    def matches(self, asset: CatalogAsset) -> bool:
        if not self.names:
            return True
        return self.database_name(asset) in self.names


class AndSelector(AssetSelector):
    """
    Composite selector that matches an asset only if all child selectors match.
    """

    def __init__(self, selectors: list[AssetSelector]):
        self.selectors = selectors

    def matches(self, asset: CatalogAsset) -> bool:
        return all(s.matches(asset) for s in self.selectors)


def root_selector(service_name: str, created_by: str | None = None) -> AssetSelector:
    """Build the selector applied to every page of root assets."""
    return AndSelector([ServiceSelector(service_name), CreatorSelector(created_by)])
