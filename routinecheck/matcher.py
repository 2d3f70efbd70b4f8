import logging
from typing import Optional

from .errors import DuplicateKeyError
from .models import Ingredient, IngredientProperties
from .normalizer import categorize_ingredient

logger = logging.getLogger(__name__)


class IngredientMatcher:
    """Resolves free-text ingredient names to ingredient ids, creating rows on a miss."""

    def __init__(self, db):
        self.db = db

    def find(self, name: str) -> Optional[Ingredient]:
        """Exact name, then fuzzy name search, then alias scan. None on a total miss."""
        exact = self.db.get_ingredient_by_name(name)
        if exact:
            return exact

        candidates = self.db.search_ingredients(name.lower().strip(), limit=5)
        if candidates:
            return candidates[0]

        return self._match_alias(name)

    def _match_alias(self, name: str) -> Optional[Ingredient]:
        search_term = name.lower().strip()
        for ingredient in self.db.list_ingredients():
            for alias in ingredient.common_names:
                alias_lower = alias.lower().strip()
                if not alias_lower:
                    continue
                if alias_lower == search_term or alias_lower in search_term or search_term in alias_lower:
                    return ingredient
        return None

    def resolve(self, name: str) -> str:
        """Return the id of the ingredient matching ``name``, creating it if absent."""
        existing = self.find(name)
        if existing:
            if existing.inci_name == name:
                self._ensure_properties(existing.id)
            return existing.id
        return self._create(name)

    def _create(self, name: str) -> str:
        category = categorize_ingredient(name)
        ingredient = Ingredient(
            inci_name=name,
            common_names=[name],
            function=f"User-added ingredient: {name}",
            category=category,
            is_active=category == "active",
        )
        try:
            self.db.insert_ingredient(ingredient)
        except DuplicateKeyError:
            # Another request created it between our lookup and insert.
            winner = self.db.get_ingredient_by_name(name)
            logger.debug("Ingredient %r created concurrently, using %s", name, winner.id)
            self._ensure_properties(winner.id)
            return winner.id

        self._ensure_properties(ingredient.id)
        logger.info("Created new ingredient with default properties: %s (%s)", name, category)
        return ingredient.id

    def _ensure_properties(self, ingredient_id: str):
        if self.db.get_properties(ingredient_id):
            return
        try:
            self.db.insert_properties(IngredientProperties(ingredient_id=ingredient_id))
        except DuplicateKeyError:
            # Already written by a concurrent resolve; one row per ingredient is all we need.
            return
