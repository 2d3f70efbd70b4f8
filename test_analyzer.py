import json
from datetime import timedelta

import pytest

from conftest import FakeAdvisory
from routinecheck.analyzer import (
    HIGH_SEVERITY_NUDGE,
    NO_CONFLICTS_MESSAGE,
    RoutineAnalyzer,
    build_recommendations,
)
from routinecheck.errors import AdvisoryParseError, AnalysisFailedError, RoutineValidationError
from routinecheck.models import ConflictFinding, ProductInput, RoutineAdvice


def _routine():
    return [
        ProductInput(name="Vitamin C Serum", ingredient_list="L-Ascorbic Acid, Ferulic Acid", usage_timing="AM"),
        ProductInput(name="Retinol Cream", ingredient_list="Retinol", usage_timing="PM"),
    ]


ADVICE = {
    "overallRiskScore": 6,
    "conflicts": [{
        "ingredientA": "Vitamin C",
        "ingredientB": "Retinoid",
        "productA": "Vitamin C Serum",
        "productB": "Retinol Cream",
        "severity": "HIGH",
        "conflictType": "pH Conflict",
        "explanation": "Opposite pH requirements",
        "recommendation": "Vitamin C in the morning, retinol at night",
        "isTemporalConflict": False,
    }],
    "ingredientWarnings": [
        {"ingredient": "Retinol", "product": "Retinol Cream", "concern": "Can irritate dry skin",
         "recommendation": "Buffer with moisturizer", "severity": "HIGH"},
        {"ingredient": "Ferulic Acid", "product": "Vitamin C Serum", "concern": "Mild tingling",
         "recommendation": "Patch test", "severity": "LOW"},
    ],
    "ingredientBenefits": [
        {"ingredient": "L-Ascorbic Acid", "product": "Vitamin C Serum", "benefit": "Brightening"},
        {"ingredient": "Ferulic Acid", "product": "Vitamin C Serum", "benefit": "Stabilizes vitamin C"},
        {"ingredient": "Retinol", "product": "Retinol Cream", "benefit": "Cell turnover"},
        {"ingredient": "Glycerin", "product": "Retinol Cream", "benefit": "Hydration"},
    ],
    "morningRoutine": ["Vitamin C Serum"],
    "eveningRoutine": ["Retinol Cream"],
    "summary": "Solid routine with one timing issue.",
    "profileSummary": "Your dry skin benefits from antioxidants.",
}


@pytest.fixture
def analyzer(seeded_db, advisory, clock):
    return RoutineAnalyzer(seeded_db, advisory, clock=clock)


def test_rule_based_scenario_separated_am_pm(analyzer, seeded_db):
    summary = analyzer.analyze_routine("user-1", _routine())

    assert summary.conflicts_found == 1
    assert summary.ingredients_analyzed == 3
    assert summary.safety_score == pytest.approx(7.0)
    assert summary.risk_score == pytest.approx(3.0)
    assert summary.summary_score == "B+"

    analysis = seeded_db.get_analysis(summary.analysis_id)
    assert analysis.overall_risk_score == "safe"
    assert analysis.profile_summary is None
    assert analysis.recommendations == ["Found 1 potential conflict(s).", HIGH_SEVERITY_NUDGE]

    conflicts = seeded_db.list_detected_conflicts(summary.analysis_id)
    assert len(conflicts) == 1
    assert conflicts[0].severity == "high"
    assert conflicts[0].is_temporal_conflict is False
    assert {conflicts[0].ingredient_a_id, conflicts[0].ingredient_b_id} == {
        seeded_db.get_ingredient_by_name("L-Ascorbic Acid").id,
        seeded_db.get_ingredient_by_name("Retinol").id,
    }


def test_critical_rule_deducts_the_minimum_without_nudge(analyzer, seeded_db):
    products = [
        ProductInput(name="Acne Wash", ingredient_list="Benzoyl Peroxide", usage_timing="AM"),
        ProductInput(name="Night Cream", ingredient_list="Retinol", usage_timing="PM"),
    ]
    summary = analyzer.analyze_routine("user-1", products)

    assert summary.conflicts_found == 1
    assert summary.safety_score == pytest.approx(9.5)
    assert summary.summary_score == "A+"
    assert seeded_db.list_detected_conflicts(summary.analysis_id)[0].severity == "critical"
    assert seeded_db.get_analysis(summary.analysis_id).recommendations == ["Found 1 potential conflict(s)."]


def test_analysis_payload_is_stored_as_json(analyzer, seeded_db):
    summary = analyzer.analyze_routine("user-1", _routine())
    payload = json.loads(seeded_db.get_analysis(summary.analysis_id).analysis_data)

    assert payload["totalIngredients"] == 3
    assert payload["safetyScore"] == 7.0
    assert payload["riskScore"] == 3.0
    assert payload["conflictsSummary"] == [{"severity": "high", "type": "pH Conflict, Stability Risk"}]
    assert payload["aiAnalysis"] is None


def test_same_timing_is_flagged_as_temporal(analyzer, seeded_db):
    products = _routine()
    products[1].usage_timing = "Both"
    summary = analyzer.analyze_routine("user-1", products)
    conflict = seeded_db.list_detected_conflicts(summary.analysis_id)[0]
    assert conflict.is_temporal_conflict is True


def test_routine_and_products_are_persisted_in_order(analyzer, seeded_db):
    products = [ProductInput(name="Toner", ingredient_list="Water, Glycerin (Humectant), Water", usage_timing="both")]
    summary = analyzer.analyze_routine("user-1", products)

    routine = seeded_db.get_routine(summary.routine_id)
    assert routine.name == "Routine 01/01/2025"
    stored = seeded_db.list_products(routine.id)
    assert [p.product_name for p in stored] == ["Toner"]
    assert stored[0].usage_time == "both"
    assert stored[0].raw_inci_list == "Water, Glycerin (Humectant), Water"

    links = seeded_db.list_product_ingredients(stored[0].id)
    assert [link.position for link in links] == [1, 2, 3]
    assert links[0].ingredient_id == links[2].ingredient_id
    assert seeded_db.get_ingredient(links[1].ingredient_id).inci_name == "Glycerin"
    assert summary.conflicts_found == 0
    assert seeded_db.get_analysis(summary.analysis_id).recommendations == [NO_CONFLICTS_MESSAGE]


def test_brand_is_extracted_best_effort(seeded_db, clock):
    analyzer = RoutineAnalyzer(seeded_db, FakeAdvisory(brand="The Ordinary"), clock=clock)
    summary = analyzer.analyze_routine("user-1", _routine(), routine_name="Morning")
    stored = seeded_db.list_products(summary.routine_id)
    assert [p.brand_name for p in stored] == ["The Ordinary", "The Ordinary"]
    assert seeded_db.get_routine(summary.routine_id).name == "Morning"


def test_brand_failure_leaves_brand_empty(analyzer, seeded_db, advisory):
    summary = analyzer.analyze_routine("user-1", _routine())
    assert advisory.brand_calls == ["Vitamin C Serum", "Retinol Cream"]
    assert all(p.brand_name is None for p in seeded_db.list_products(summary.routine_id))


def test_profile_is_sent_as_advisory_context(analyzer, advisory):
    analyzer.analyze_routine("user-1", _routine())
    assert advisory.routine_calls[0][0] == {"skin_type": "normal", "sensitivities": [], "goals": []}

    analyzer.save_profile("user-1", "dry", ["fragrance"], ["anti-aging"])
    analyzer.analyze_routine("user-1", _routine())
    user_context, products = advisory.routine_calls[1]
    assert user_context == {"skin_type": "dry", "sensitivities": ["fragrance"], "goals": ["anti-aging"]}
    assert products[0] == {
        "product_name": "Vitamin C Serum",
        "ingredients": ["L-Ascorbic Acid", "Ferulic Acid"],
        "usage_time": "AM",
    }


def test_save_profile_creates_then_updates(analyzer, clock):
    profile, is_new = analyzer.save_profile("user-1", "oily", [], ["acne"])
    assert is_new is True

    clock.advance(days=1)
    updated, is_new = analyzer.save_profile("user-1", "combination", ["fragrance"], [])
    assert is_new is False
    assert updated.id == profile.id
    assert updated.skin_type == "combination"
    assert updated.updated_at == clock()
    assert analyzer.get_profile("user-1").sensitivities == ["fragrance"]


def test_advisory_path_scores_from_advisory_risk(db, clock):
    analyzer = RoutineAnalyzer(db, FakeAdvisory(advice=ADVICE), clock=clock)
    summary = analyzer.analyze_routine("user-1", _routine())

    assert summary.safety_score == pytest.approx(4.0)
    assert summary.risk_score == pytest.approx(6.0)
    assert summary.summary_score == "D"
    assert summary.conflicts_found == 1

    analysis = db.get_analysis(summary.analysis_id)
    assert analysis.overall_risk_score == "caution"
    assert analysis.profile_summary == "Your dry skin benefits from antioxidants."
    payload = json.loads(analysis.analysis_data)
    assert payload["aiAnalysis"]["overallRiskScore"] == 6
    assert payload["aiAnalysis"]["summary"] == "Solid routine with one timing issue."


def test_advisory_conflicts_are_learned_once(db, clock):
    analyzer = RoutineAnalyzer(db, FakeAdvisory(advice=ADVICE), clock=clock)
    analyzer.analyze_routine("user-1", _routine())

    vitamin_c = db.get_ingredient_by_name("L-Ascorbic Acid").id
    retinol = db.get_ingredient_by_name("Retinol").id
    record = analyzer.knowledge_base.find_conflict(retinol, vitamin_c)
    assert record.severity == "high"
    assert record.conflict_type == "pH Conflict"
    assert record.scientific_basis == "Opposite pH requirements"

    entry = analyzer.research_cache.get(vitamin_c, retinol)
    assert entry.confidence == 0.85
    assert entry.expires_at == clock() + timedelta(days=30)
    assert entry.query == "Research compatibility between L-Ascorbic Acid and Retinol"
    assert json.loads(entry.response)["compatible"] is False

    clock.advance(days=1)
    analyzer.analyze_routine("user-1", _routine())
    assert len(db.compatibility) == 1
    entries = db.list_cache_entries()
    assert len(entries) == 1
    assert entries[0].created_at == entry.created_at


def test_rule_based_conflicts_are_not_relearned(analyzer, seeded_db):
    before = len(seeded_db.compatibility)
    analyzer.analyze_routine("user-1", _routine())
    assert len(seeded_db.compatibility) == before
    assert seeded_db.list_cache_entries() == []


def test_advice_with_null_fields_still_scores(db, clock):
    advice = {
        "overallRiskScore": 2,
        "conflicts": [],
        "ingredientWarnings": [{"ingredient": "Retinol", "product": "Cream", "concern": "Dryness",
                                "recommendation": "Moisturize", "severity": None}],
        "ingredientBenefits": [{"ingredient": "Retinol", "product": "Cream", "benefit": None}],
        "summary": None,
    }
    analyzer = RoutineAnalyzer(db, FakeAdvisory(advice=advice), clock=clock)

    summary = analyzer.analyze_routine("user-1", [ProductInput(name="Cream", ingredient_list="Retinol", usage_timing="PM")])

    assert summary.safety_score == pytest.approx(8.0)
    assert summary.summary_score == "A"
    assert db.get_analysis(summary.analysis_id).recommendations == [
        "✅ BENEFICIAL INGREDIENTS FOR YOUR SKIN TYPE:",
        "- Retinol (in Cream): ",
        NO_CONFLICTS_MESSAGE,
    ]


def test_unparseable_advisory_fails_the_analysis(seeded_db, clock):
    advisory = FakeAdvisory(error=AdvisoryParseError("bad json", raw_text="not json"))
    analyzer = RoutineAnalyzer(seeded_db, advisory, clock=clock)

    with pytest.raises(AnalysisFailedError, match="Analysis failed"):
        analyzer.analyze_routine("user-1", _routine())
    assert seeded_db.analyses == {}


def test_empty_routine_is_rejected(analyzer):
    with pytest.raises(RoutineValidationError):
        analyzer.analyze_routine("user-1", [])


def test_routine_without_readable_ingredients_is_rejected(analyzer):
    products = [
        ProductInput(name="", ingredient_list="Retinol"),
        ProductInput(name="Mystery", ingredient_list="(Aqua)"),
    ]
    with pytest.raises(RoutineValidationError):
        analyzer.analyze_routine("user-1", products)


def test_invalid_usage_timing_is_rejected(analyzer):
    products = [ProductInput(name="Serum", ingredient_list="Retinol", usage_timing="noon")]
    with pytest.raises(RoutineValidationError):
        analyzer.analyze_routine("user-1", products)


def test_recommendation_lines_follow_display_order():
    advice = RoutineAdvice.model_validate(ADVICE)
    conflict = ConflictFinding(
        product_a_id="p1", product_b_id="p2", ingredient_a_id="a", ingredient_b_id="b",
        severity="high", conflict_type="pH Conflict", explanation="", recommendation="",
    )

    assert build_recommendations(advice, [conflict]) == [
        "Solid routine with one timing issue.",
        "⚠️ INGREDIENT WARNINGS FOR YOUR SKIN TYPE:",
        "- Retinol (in Retinol Cream): Can irritate dry skin. Buffer with moisturizer",
        "✅ BENEFICIAL INGREDIENTS FOR YOUR SKIN TYPE:",
        "- L-Ascorbic Acid (in Vitamin C Serum): Brightening",
        "- Ferulic Acid (in Vitamin C Serum): Stabilizes vitamin C",
        "- Retinol (in Retinol Cream): Cell turnover",
        "Found 1 potential conflict(s).",
        HIGH_SEVERITY_NUDGE,
        "Morning routine: Vitamin C Serum",
        "Evening routine: Retinol Cream",
    ]


def test_low_severity_conflicts_skip_the_nudge():
    conflict = ConflictFinding(
        product_a_id="p1", product_b_id="p2", ingredient_a_id="a", ingredient_b_id="b",
        severity="low", conflict_type="Synergy", explanation="", recommendation="",
    )
    assert build_recommendations(None, [conflict]) == ["Found 1 potential conflict(s)."]
    assert build_recommendations(RoutineAdvice(), []) == [NO_CONFLICTS_MESSAGE]


def test_analysis_results_expand_conflicts(analyzer):
    summary = analyzer.analyze_routine("user-1", _routine())
    results = analyzer.get_analysis_results(summary.analysis_id)

    assert results["analysis"]["safety_score"] == 7.0
    assert results["analysis"]["summary_score"] == "B+"
    assert results["routine"].id == summary.routine_id
    assert [p.product_name for p in results["products"]] == ["Vitamin C Serum", "Retinol Cream"]
    conflict = results["conflicts"][0]
    assert {conflict["ingredient_a"].inci_name, conflict["ingredient_b"].inci_name} == {"L-Ascorbic Acid", "Retinol"}
    assert conflict["product_a"].product_name == "Vitamin C Serum"
    assert conflict["product_b"].product_name == "Retinol Cream"

    assert analyzer.get_analysis_results("missing") is None


def test_user_history_is_newest_first(analyzer, clock):
    first = analyzer.analyze_routine("user-1", _routine(), routine_name="First")
    clock.advance(hours=1)
    second = analyzer.analyze_routine("user-1", _routine()[:1], routine_name="Second")
    analyzer.analyze_routine("user-2", _routine())

    history = analyzer.get_user_analyses("user-1")
    assert [h["id"] for h in history] == [second.analysis_id, first.analysis_id]
    assert [h["routine_name"] for h in history] == ["Second", "First"]
    assert [h["conflicts_count"] for h in history] == [0, 1]
    assert len(analyzer.get_user_analyses("user-1", limit=1)) == 1


def test_user_routines_include_their_products(analyzer, clock):
    first = analyzer.analyze_routine("user-1", _routine(), routine_name="First")
    clock.advance(hours=1)
    second = analyzer.analyze_routine("user-1", _routine()[:1], routine_name="Second")

    routines = analyzer.get_user_routines("user-1")
    assert [r["id"] for r in routines] == [second.routine_id, first.routine_id]
    assert [p.product_name for p in routines[1]["products"]] == ["Vitamin C Serum", "Retinol Cream"]
    assert analyzer.get_user_routines("nobody") == []

    routine = analyzer.get_routine(first.routine_id)
    assert routine["name"] == "First"
    assert [p.order_in_routine for p in routine["products"]] == [1, 2]
    assert analyzer.get_routine("missing") is None


def test_delete_routine_cascades_to_products(analyzer, seeded_db):
    summary = analyzer.analyze_routine("user-1", _routine())
    product_ids = [p.id for p in seeded_db.list_products(summary.routine_id)]

    assert analyzer.delete_routine(summary.routine_id) == {"products": 2, "product_ingredients": 3}
    assert analyzer.get_routine(summary.routine_id) is None
    assert all(seeded_db.list_product_ingredients(product_id) == [] for product_id in product_ids)
    with pytest.raises(LookupError):
        analyzer.delete_routine(summary.routine_id)


def test_update_ai_summary_prepends_once(analyzer):
    summary = analyzer.analyze_routine("user-1", _routine())

    analyzer.update_ai_summary(summary.analysis_id, "Keep vitamin C and retinol apart.")
    updated = analyzer.update_ai_summary(summary.analysis_id, "Keep vitamin C and retinol apart.")

    assert updated.recommendations[0] == "Keep vitamin C and retinol apart."
    assert updated.recommendations.count("Keep vitamin C and retinol apart.") == 1
    with pytest.raises(LookupError):
        analyzer.update_ai_summary("missing", "text")


def test_enhance_with_summary_describes_conflict_count(analyzer, seeded_db):
    summary = analyzer.analyze_routine("user-1", _routine())
    line = analyzer.enhance_with_summary(summary.analysis_id)

    assert line == "Found 1 potential conflict(s). Review recommendations below."
    assert seeded_db.get_analysis(summary.analysis_id).recommendations[0] == line
