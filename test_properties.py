import pytest

from routinecheck.errors import AdvisoryParseError, AdvisoryUnavailableError
from routinecheck.matcher import IngredientMatcher
from routinecheck.properties import PropertyEnricher, normalize_properties


class PropertyAdvisory:
    def __init__(self, raw=None, error=None):
        self.raw = raw
        self.error = error
        self.calls = []

    def extract_properties(self, inci_name, function, category):
        self.calls.append((inci_name, function, category))
        if self.error:
            raise self.error
        return self.raw


def test_scores_are_rounded_and_clamped():
    properties = normalize_properties("id-1", {
        "phRangeMin": "3.5",
        "phRangeMax": None,
        "irritancyScore": 7.4,
        "comedogenicScore": "2.6",
        "isHarmful": 0,
    })
    assert properties.ph_range_min == 3.5
    assert properties.ph_range_max is None
    assert properties.irritancy_score == 5
    assert properties.comedogenic_score == 3
    assert properties.is_harmful is False


def test_garbage_values_fall_back_to_zero_and_none():
    properties = normalize_properties("id-1", {"phRangeMin": "acidic", "irritancyScore": "very", "comedogenicScore": -2})
    assert properties.ph_range_min is None
    assert properties.irritancy_score == 0
    assert properties.comedogenic_score == 0


def test_only_default_properties_need_enrichment(seeded_db):
    glycerin_id = IngredientMatcher(seeded_db).resolve("Glycerin")
    enricher = PropertyEnricher(seeded_db, PropertyAdvisory())

    pending = {i.inci_name for i in enricher.ingredients_needing_enrichment()}
    assert "Glycerin" in pending
    assert "Retinol" not in pending
    assert seeded_db.get_properties(glycerin_id).is_default()


def test_enrich_replaces_default_properties(db):
    ingredient_id = IngredientMatcher(db).resolve("Retinol")
    advisory = PropertyAdvisory(raw={"phRangeMin": 5.5, "phRangeMax": 6.5, "irritancyScore": 3,
                                     "comedogenicScore": 1, "isHarmful": False})

    properties = PropertyEnricher(db, advisory).enrich(ingredient_id)

    assert properties.irritancy_score == 3
    assert properties.ph_range_max == 6.5
    assert advisory.calls == [("Retinol", "User-added ingredient: Retinol", "active")]
    assert len(db.properties) == 1


def test_unparseable_properties_use_fallback(db):
    ingredient_id = IngredientMatcher(db).resolve("Squalane")
    enricher = PropertyEnricher(db, PropertyAdvisory(error=AdvisoryParseError("bad")))

    properties = enricher.enrich(ingredient_id)

    assert properties.irritancy_score == 1
    assert properties.comedogenic_score == 0
    assert not properties.is_default()


def test_enrich_unknown_ingredient_raises(db):
    with pytest.raises(LookupError):
        PropertyEnricher(db, PropertyAdvisory(raw={})).enrich("missing")


def test_enrich_all_collects_errors(db):
    matcher = IngredientMatcher(db)
    for name in ("Squalane", "Panthenol", "Allantoin"):
        matcher.resolve(name)
    enricher = PropertyEnricher(db, PropertyAdvisory(error=AdvisoryUnavailableError("Gemini API not configured")))

    summary = enricher.enrich_all(limit=2)

    assert summary["processed"] == 2
    assert summary["enriched"] == 0
    assert [e["ingredient"] for e in summary["errors"]] == ["Squalane", "Panthenol"]
