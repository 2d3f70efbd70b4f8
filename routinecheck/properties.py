import logging
from typing import Dict, List, Optional

from .errors import AdvisoryParseError
from .models import Ingredient, IngredientProperties

logger = logging.getLogger(__name__)

FALLBACK_PROPERTIES = {
    "phRangeMin": None,
    "phRangeMax": None,
    "irritancyScore": 1,
    "comedogenicScore": 0,
    "isHarmful": False,
}


def _optional_number(value) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _score(value) -> int:
    try:
        number = round(float(value))
    except (TypeError, ValueError):
        number = 0
    return max(0, min(5, number))


def normalize_properties(ingredient_id: str, raw: Dict) -> IngredientProperties:
    """Clamp advisory property values into the stored ranges."""
    return IngredientProperties(
        ingredient_id=ingredient_id,
        ph_range_min=_optional_number(raw.get("phRangeMin")),
        ph_range_max=_optional_number(raw.get("phRangeMax")),
        irritancy_score=_score(raw.get("irritancyScore")),
        comedogenic_score=_score(raw.get("comedogenicScore")),
        is_harmful=bool(raw.get("isHarmful")),
    )


class PropertyEnricher:
    """Fills in ingredient properties that were created with safe defaults."""

    def __init__(self, db, advisory):
        self.db = db
        self.advisory = advisory

    def ingredients_needing_enrichment(self) -> List[Ingredient]:
        pending = []
        for ingredient in self.db.list_ingredients():
            properties = self.db.get_properties(ingredient.id)
            if properties is None or properties.is_default():
                pending.append(ingredient)
        return pending

    def enrich(self, ingredient_id: str) -> IngredientProperties:
        ingredient = self.db.get_ingredient(ingredient_id)
        if ingredient is None:
            raise LookupError(f"Ingredient {ingredient_id} not found")

        try:
            raw = self.advisory.extract_properties(ingredient.inci_name, ingredient.function, ingredient.category)
        except AdvisoryParseError:
            logger.warning("Could not parse properties for %s, using fallback values", ingredient.inci_name)
            raw = FALLBACK_PROPERTIES

        properties = normalize_properties(ingredient_id, raw)
        updated = self.db.upsert_properties(properties)
        logger.info("%s properties for %s", "Updated" if updated else "Created", ingredient.inci_name)
        return self.db.get_properties(ingredient_id)

    def enrich_all(self, limit: int = None) -> Dict:
        pending = self.ingredients_needing_enrichment()
        if limit is not None:
            pending = pending[:limit]

        enriched = 0
        errors = []
        for ingredient in pending:
            try:
                self.enrich(ingredient.id)
                enriched += 1
            except Exception as e:
                logger.error("Failed to extract properties for %s: %s", ingredient.inci_name, e)
                errors.append({"ingredient": ingredient.inci_name, "error": str(e)})
        return {"processed": len(pending), "enriched": enriched, "errors": errors}
