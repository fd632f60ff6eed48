"""SQLAlchemy implementations of the directory ports.

Translate ORM rows into domain references, keeping the domain layer free of
any infrastructure dependency.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from domain.models import IngredientRef, SupplierRef
from domain.ports import IngredientDirectory, SupplierDirectory
from tracciabilita.data.models import Ingredient as OrmIngredient, Supplier as OrmSupplier


class SqlAlchemyIngredientDirectory(IngredientDirectory):
    """Ingredient registry read straight from the database."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def list_active(self) -> list[IngredientRef]:
        stmt = (
            select(OrmIngredient)
            .where(OrmIngredient.active.is_(True))
            .order_by(OrmIngredient.name, OrmIngredient.id)
        )
        return [self._to_domain(orm) for orm in self._session.scalars(stmt)]

    def get(self, ingredient_id: int) -> IngredientRef | None:
        orm = self._session.get(OrmIngredient, ingredient_id)
        return self._to_domain(orm) if orm is not None else None

    @staticmethod
    def _to_domain(orm: OrmIngredient) -> IngredientRef:
        return IngredientRef(
            id=orm.id,
            name=orm.name,
            category=orm.category,
            unit=orm.unit,
            active=bool(orm.active),
        )


class SqlAlchemySupplierDirectory(SupplierDirectory):
    """Supplier registry lookup by tax id."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def find_by_tax_id(self, tax_id: str) -> SupplierRef | None:
        if not tax_id:
            return None
        # Registry rows may hold the bare code without the country prefix.
        candidates = {tax_id}
        if len(tax_id) > 2 and tax_id[:2].isalpha():
            candidates.add(tax_id[2:])
        stmt = (
            select(OrmSupplier)
            .where(OrmSupplier.tax_id.in_(candidates))
            .where(OrmSupplier.active.is_(True))
            .order_by(OrmSupplier.id)
            .limit(1)
        )
        orm = self._session.scalars(stmt).first()
        if orm is None:
            return None
        return SupplierRef(id=orm.id, name=orm.name, tax_id=orm.tax_id)
