"""Mapping store: learned supplier-description → ingredient associations.

The exact-key ``lookup`` is the fast path that lets repeat suppliers skip
fuzzy scoring entirely. ``upsert`` is a single ``INSERT … ON CONFLICT DO
UPDATE`` so concurrent imports from the same supplier cannot lose usage
increments. ``search_similar`` ranks the supplier's most used mappings
against a new description with the symmetric token-overlap score.

None of the store methods commit; the calling workflow owns the transaction.
The module-level admin helpers at the bottom commit their own change.
"""

from __future__ import annotations

import logging
import math

from rapidfuzz import process
from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from domain.errors import MappingNotFoundError
from domain.matching import token_overlap_score
from domain.models import IngredientRef, SimilarMapping, SupplierMapping
from domain.normalization import normalize_description
from domain.ports import MappingStorePort
from tracciabilita.config import section
from tracciabilita.data.models import SupplierProductMapping, utcnow

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


def _overlap_scorer(query, choice, **_):
    return token_overlap_score(query, choice)


class SqlAlchemyMappingStore(MappingStorePort):
    """Mapping store over the ``supplier_product_mappings`` table."""

    def __init__(self, session: Session, config: dict | None = None) -> None:
        self._session = session
        cfg = section(config, "mapping_store")
        self._min_score = cfg.get("similar_min_score", 50)
        self._candidates = cfg.get("similar_candidates", 50)

    # ── Queries ────────────────────────────────────────────────────────

    def lookup(self, supplier_tax_id: str, description: str) -> SupplierMapping | None:
        """Active mapping for the exact (supplier, normalized description) key."""
        key = normalize_description(description)
        if not supplier_tax_id or not key:
            return None
        stmt = (
            select(SupplierProductMapping)
            .where(SupplierProductMapping.supplier_tax_id == supplier_tax_id)
            .where(SupplierProductMapping.description == key)
            .where(SupplierProductMapping.active.is_(True))
        )
        orm = self._session.scalars(stmt).first()
        return self._to_domain(orm) if orm is not None else None

    def get(self, mapping_id: int) -> SupplierMapping | None:
        orm = self._session.get(SupplierProductMapping, mapping_id)
        return self._to_domain(orm) if orm is not None else None

    def search_similar(self, supplier_tax_id: str, description: str) -> list[SimilarMapping]:
        """Same-supplier active mappings scoring strictly above the minimum, best first.

        Candidates are the supplier's most used mappings; equal scores keep
        that usage order.
        """
        key = normalize_description(description)
        if not supplier_tax_id or not key:
            return []
        stmt = (
            select(SupplierProductMapping)
            .where(SupplierProductMapping.supplier_tax_id == supplier_tax_id)
            .where(SupplierProductMapping.active.is_(True))
            .order_by(
                SupplierProductMapping.usage_count.desc(),
                SupplierProductMapping.last_used_at.desc(),
                SupplierProductMapping.id,
            )
            .limit(self._candidates)
        )
        rows = list(self._session.scalars(stmt))
        if not rows:
            return []

        order = {row.id: i for i, row in enumerate(rows)}
        by_id = {row.id: row for row in rows}
        matches = process.extract(
            key,
            {row.id: row.description for row in rows},
            scorer=_overlap_scorer,
            processor=None,
            limit=None,
            score_cutoff=self._min_score,
        )
        scored = sorted(
            ((mapping_id, int(score)) for _, score, mapping_id in matches if score > self._min_score),
            key=lambda item: (-item[1], order[item[0]]),
        )
        return [
            SimilarMapping(mapping=self._to_domain(by_id[mapping_id]), score=score)
            for mapping_id, score in scored
        ]

    # ── Commands ───────────────────────────────────────────────────────

    def upsert(
        self,
        supplier_tax_id: str,
        description: str,
        ingredient: IngredientRef,
        *,
        article_code: str | None = None,
        supplier_unit: str | None = None,
        similarity_score: float | None = None,
        confirmed_manually: bool = False,
        actor: str = "admin",
    ) -> SupplierMapping:
        """Create the mapping with usage 1, or bump usage and refresh it.

        An existing key takes the new resolution and is reactivated if it
        had been disabled; its usage count and conversion factor are kept.
        """
        key = normalize_description(description)
        now = utcnow()
        insert = _DIALECT_INSERTS.get(self._session.get_bind().dialect.name)
        if insert is None:
            raise NotImplementedError(
                f"Dialect {self._session.get_bind().dialect.name!r} non supportato"
            )
        table = SupplierProductMapping.__table__
        stmt = insert(table).values(
            supplier_tax_id=supplier_tax_id,
            description=key,
            original_description=description,
            article_code=article_code,
            ingredient_id=ingredient.id,
            ingredient_name=ingredient.name,
            ingredient_category=ingredient.category,
            supplier_unit=supplier_unit,
            internal_unit=ingredient.unit,
            conversion_factor=1.0,
            usage_count=1,
            last_used_at=now,
            confirmed_manually=confirmed_manually,
            similarity_score=similarity_score,
            active=True,
            created_by=actor,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.supplier_tax_id, table.c.description],
            set_={
                "usage_count": table.c.usage_count + 1,
                "last_used_at": now,
                "updated_at": now,
                "updated_by": actor,
                "active": True,
                "ingredient_id": stmt.excluded.ingredient_id,
                "ingredient_name": stmt.excluded.ingredient_name,
                "ingredient_category": stmt.excluded.ingredient_category,
                "internal_unit": stmt.excluded.internal_unit,
                "confirmed_manually": or_(
                    table.c.confirmed_manually, stmt.excluded.confirmed_manually
                ),
            },
        )
        self._session.execute(stmt)
        return self._reload(supplier_tax_id, key)

    def bump_usage(self, mapping_id: int) -> SupplierMapping:
        """Atomically count one more reuse of an existing mapping."""
        now = utcnow()
        result = self._session.execute(
            update(SupplierProductMapping)
            .where(SupplierProductMapping.id == mapping_id)
            .values(
                usage_count=SupplierProductMapping.usage_count + 1,
                last_used_at=now,
                updated_at=now,
                active=True,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise MappingNotFoundError(mapping_id)
        orm = self._session.get(SupplierProductMapping, mapping_id, populate_existing=True)
        return self._to_domain(orm)

    def repoint(self, mapping_id: int, ingredient: IngredientRef, actor: str = "admin") -> SupplierMapping:
        """Point a mapping at another ingredient; usage count is untouched."""
        orm = self._session.get(SupplierProductMapping, mapping_id)
        if orm is None:
            raise MappingNotFoundError(mapping_id)
        orm.ingredient_id = ingredient.id
        orm.ingredient_name = ingredient.name
        orm.ingredient_category = ingredient.category
        orm.internal_unit = ingredient.unit
        orm.confirmed_manually = True
        orm.updated_by = actor
        self._session.flush()
        return self._to_domain(orm)

    def deactivate(self, mapping_id: int, actor: str = "admin") -> SupplierMapping:
        orm = self._session.get(SupplierProductMapping, mapping_id)
        if orm is None:
            raise MappingNotFoundError(mapping_id)
        orm.active = False
        orm.updated_by = actor
        self._session.flush()
        return self._to_domain(orm)

    # ── Helpers ────────────────────────────────────────────────────────

    def _reload(self, supplier_tax_id: str, key: str) -> SupplierMapping:
        stmt = (
            select(SupplierProductMapping)
            .where(SupplierProductMapping.supplier_tax_id == supplier_tax_id)
            .where(SupplierProductMapping.description == key)
            .execution_options(populate_existing=True)
        )
        return self._to_domain(self._session.scalars(stmt).one())

    @staticmethod
    def _to_domain(orm: SupplierProductMapping) -> SupplierMapping:
        return SupplierMapping(
            id=orm.id,
            supplier_tax_id=orm.supplier_tax_id,
            description=orm.description,
            ingredient_id=orm.ingredient_id,
            ingredient_name=orm.ingredient_name,
            ingredient_category=orm.ingredient_category,
            original_description=orm.original_description,
            supplier_unit=orm.supplier_unit,
            internal_unit=orm.internal_unit,
            conversion_factor=orm.conversion_factor if orm.conversion_factor else 1.0,
            usage_count=orm.usage_count,
            last_used_at=orm.last_used_at,
            confirmed_manually=bool(orm.confirmed_manually),
            similarity_score=orm.similarity_score,
            active=bool(orm.active),
        )


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


def list_mappings(
    session: Session,
    page: int = 1,
    per_page: int = 50,
    supplier_tax_id: str | None = None,
) -> dict:
    """Active mappings, most used first, then most recently updated.

    Returns ``{"items", "total", "page", "pages"}``.
    """
    page = max(page, 1)
    base = select(SupplierProductMapping).where(SupplierProductMapping.active.is_(True))
    if supplier_tax_id:
        base = base.where(SupplierProductMapping.supplier_tax_id == supplier_tax_id)
    total = session.scalar(select(func.count()).select_from(base.subquery()))
    stmt = (
        base.order_by(
            SupplierProductMapping.usage_count.desc(),
            SupplierProductMapping.updated_at.desc(),
            SupplierProductMapping.id.desc(),
        )
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    items = [SqlAlchemyMappingStore._to_domain(orm) for orm in session.scalars(stmt)]
    return {
        "items": items,
        "total": total,
        "page": page,
        "pages": math.ceil(total / per_page) if per_page else 1,
    }


def repoint_mapping(
    session: Session,
    mapping_id: int,
    ingredient: IngredientRef,
    actor: str = "admin",
) -> SupplierMapping:
    mapping = SqlAlchemyMappingStore(session).repoint(mapping_id, ingredient, actor=actor)
    session.commit()
    logger.info("Mapping %s ripuntato su ingrediente %s da %s", mapping_id, ingredient.id, actor)
    return mapping


def deactivate_mapping(session: Session, mapping_id: int, actor: str = "admin") -> SupplierMapping:
    mapping = SqlAlchemyMappingStore(session).deactivate(mapping_id, actor=actor)
    session.commit()
    logger.info("Mapping %s disattivato da %s", mapping_id, actor)
    return mapping
