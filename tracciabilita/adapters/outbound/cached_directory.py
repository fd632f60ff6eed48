"""Read-through cache in front of the ingredient directory.

Only the active-ingredient list used for matching is cached. Lookups by id
always reach the wrapped directory, so an ingredient deactivated after an
analysis is still caught at commit time.
"""

from __future__ import annotations

from dataclasses import asdict

from domain.models import IngredientRef
from domain.ports import CachePort, IngredientDirectory

ACTIVE_KEY = "ingredients:active"


class CachedIngredientDirectory(IngredientDirectory):
    def __init__(self, inner: IngredientDirectory, cache: CachePort, ttl: int = 300):
        self._inner = inner
        self._cache = cache
        self._ttl = ttl

    def list_active(self) -> list[IngredientRef]:
        cached = self._cache.get(ACTIVE_KEY)
        if cached is not None:
            return [IngredientRef(**row) for row in cached]
        ingredients = self._inner.list_active()
        self._cache.set(ACTIVE_KEY, [asdict(i) for i in ingredients], ttl=self._ttl)
        return ingredients

    def get(self, ingredient_id: int) -> IngredientRef | None:
        return self._inner.get(ingredient_id)

    def invalidate(self) -> None:
        self._cache.invalidate("ingredients:")
