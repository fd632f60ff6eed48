"""Domain ports: abstract interfaces for directories, stores and infrastructure.

Only stdlib (abc) and domain.models imports allowed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from domain.models import (
    IngredientRef,
    ParsedInvoice,
    SimilarMapping,
    SupplierMapping,
    SupplierRef,
)


# ── Inbound Ports ─────────────────────────────────────────────────────────


class InvoiceParser(ABC):
    """Turns raw document bytes into a canonical invoice."""

    @abstractmethod
    def parse(self, content: bytes) -> ParsedInvoice: ...


# ── Directory Ports (external collaborators) ─────────────────────────────


class IngredientDirectory(ABC):
    """Read-only view of the ingredient registry."""

    @abstractmethod
    def list_active(self) -> list[IngredientRef]: ...

    @abstractmethod
    def get(self, ingredient_id: int) -> IngredientRef | None: ...


class SupplierDirectory(ABC):
    """Read-only view of the internal supplier registry."""

    @abstractmethod
    def find_by_tax_id(self, tax_id: str) -> SupplierRef | None: ...


# ── Repository Ports ──────────────────────────────────────────────────────


class MappingStorePort(ABC):
    """Learned supplier-description → ingredient associations."""

    @abstractmethod
    def lookup(self, supplier_tax_id: str, description: str) -> SupplierMapping | None: ...

    @abstractmethod
    def upsert(
        self,
        supplier_tax_id: str,
        description: str,
        ingredient: IngredientRef,
        **attrs,
    ) -> SupplierMapping: ...

    @abstractmethod
    def search_similar(self, supplier_tax_id: str, description: str) -> list[SimilarMapping]: ...


# ── Infrastructure Ports ──────────────────────────────────────────────────


class CachePort(ABC):
    """Cache for read-heavy directory data."""

    @abstractmethod
    def get(self, key: str) -> object | None: ...

    @abstractmethod
    def set(self, key: str, value: object, ttl: int = 3600) -> None: ...

    @abstractmethod
    def invalidate(self, prefix: str) -> None: ...
