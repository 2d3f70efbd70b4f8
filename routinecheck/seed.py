import logging
from typing import Dict

from .errors import DuplicateKeyError
from .knowledge_base import CompatibilityKnowledgeBase
from .models import Ingredient, IngredientProperties

logger = logging.getLogger(__name__)

# (INCI name, common names, function, category)
SEED_INGREDIENTS = [
    ("Retinol", ["Vitamin A", "Retinyl Palmitate"], "Anti-aging, cell turnover", "active"),
    ("Retinyl Palmitate", ["Vitamin A Palmitate"], "Anti-aging, cell turnover", "active"),
    ("Tretinoin", ["Retin-A", "All-trans Retinoic Acid"], "Prescription anti-aging, acne treatment", "active"),
    ("L-Ascorbic Acid", ["Vitamin C", "Ascorbic Acid"], "Antioxidant, brightening", "active"),
    ("Magnesium Ascorbyl Phosphate", ["Vitamin C derivative"], "Antioxidant, brightening", "active"),
    ("Sodium Ascorbyl Phosphate", ["Vitamin C derivative"], "Antioxidant, brightening", "active"),
    ("Tetrahexyldecyl Ascorbate", ["THD Ascorbate", "Vitamin C Ester"], "Antioxidant, brightening", "active"),
    ("Glycolic Acid", ["Alpha Hydroxy Acid"], "Exfoliant, brightening", "active"),
    ("Lactic Acid", ["Alpha Hydroxy Acid"], "Exfoliant, hydrating", "active"),
    ("Mandelic Acid", ["Alpha Hydroxy Acid"], "Exfoliant, gentle", "active"),
    ("Citric Acid", ["Alpha Hydroxy Acid"], "Exfoliant, pH adjuster", "active"),
    ("Salicylic Acid", ["Beta Hydroxy Acid"], "Exfoliant, acne treatment", "active"),
    ("Niacinamide", ["Vitamin B3", "Nicotinamide"], "Anti-inflammatory, barrier repair", "active"),
    ("Copper Peptides", ["GHK-Cu", "Copper Tripeptide-1"], "Anti-aging, wound healing", "active"),
    ("Palmitoyl Tripeptide-1", ["Matrixyl 3000"], "Anti-aging, collagen support", "active"),
    ("Benzoyl Peroxide", ["Benzoyl Peroxide"], "Acne treatment, antibacterial", "active"),
    ("Azelaic Acid", ["Azelaic Acid"], "Acne treatment, brightening", "active"),
    ("Hyaluronic Acid", ["Sodium Hyaluronate"], "Hydration, plumping", "base"),
    ("Ceramides", ["Ceramide NP", "Ceramide AP"], "Barrier repair, hydration", "base"),
    ("Alpha Arbutin", ["Arbutin"], "Brightening, hyperpigmentation", "active"),
    ("Kojic Acid", ["Kojic Acid"], "Brightening, hyperpigmentation", "active"),
    ("Tranexamic Acid", ["Tranexamic Acid"], "Brightening, hyperpigmentation", "active"),
    ("Adapalene", ["Differin"], "Prescription retinoid, acne treatment", "active"),
    ("Tazarotene", ["Tazorac"], "Prescription retinoid, anti-aging", "active"),
    ("Bakuchiol", ["Natural Retinol Alternative"], "Anti-aging, plant-based retinol alternative", "active"),
    ("Resveratrol", ["Resveratrol"], "Antioxidant, anti-aging", "active"),
    ("Ferulic Acid", ["Ferulic Acid"], "Antioxidant, stabilizes Vitamin C", "active"),
    ("Vitamin E", ["Tocopherol", "Alpha Tocopherol"], "Antioxidant, moisturizing", "active"),
]

RETINOIDS = {"Retinol", "Tretinoin", "Adapalene", "Tazarotene"}

SEED_CONFLICTS = [
    {
        "ingredient_a": "Retinol",
        "ingredient_b": "L-Ascorbic Acid",
        "conflict_type": "pH Conflict, Stability Risk",
        "severity": "severe",
        "recommendation": "Use separately - Retinol at night, Vitamin C in morning. Wait 30 minutes between applications.",
        "scientific_basis": "Retinol works best at pH 5.5-6.5, while L-Ascorbic Acid requires pH 2.5-3.5. Using together can deactivate both ingredients.",
    },
    {
        "ingredient_a": "Retinol",
        "ingredient_b": "Glycolic Acid",
        "conflict_type": "High Irritation",
        "severity": "severe",
        "recommendation": "Do not use together. Alternate nights or use on different days.",
        "scientific_basis": "Both are strong exfoliants that can cause excessive irritation and barrier damage when combined.",
    },
    {
        "ingredient_a": "Retinol",
        "ingredient_b": "Salicylic Acid",
        "conflict_type": "High Irritation",
        "severity": "severe",
        "recommendation": "Do not use together. Alternate nights or use on different days.",
        "scientific_basis": "Combining retinoids with BHA can cause severe irritation and compromise skin barrier.",
    },
    {
        "ingredient_a": "Retinol",
        "ingredient_b": "Benzoyl Peroxide",
        "conflict_type": "Deactivation",
        "severity": "critical",
        "recommendation": "Never use together. Benzoyl Peroxide deactivates Retinol completely.",
        "scientific_basis": "Benzoyl Peroxide oxidizes and deactivates Retinol, making both ingredients ineffective.",
    },
    {
        "ingredient_a": "L-Ascorbic Acid",
        "ingredient_b": "Copper Peptides",
        "conflict_type": "Deactivation",
        "severity": "moderate",
        "recommendation": "Use separately - Vitamin C in morning, Copper Peptides at night.",
        "scientific_basis": "Vitamin C can oxidize copper peptides, reducing their effectiveness.",
    },
    {
        "ingredient_a": "Niacinamide",
        "ingredient_b": "L-Ascorbic Acid",
        "conflict_type": "Stability Risk",
        "severity": "low",
        "recommendation": "Can be used together if pH is balanced, but separating AM/PM is safer.",
        "scientific_basis": "Older research suggested conflict, but modern formulations can work together.",
    },
    {
        "ingredient_a": "Glycolic Acid",
        "ingredient_b": "Salicylic Acid",
        "conflict_type": "High Irritation",
        "severity": "moderate",
        "recommendation": "Use on alternate days or in different routines. Both are strong exfoliants.",
        "scientific_basis": "Combining AHA and BHA can cause excessive exfoliation and irritation.",
    },
    {
        "ingredient_a": "Tretinoin",
        "ingredient_b": "Benzoyl Peroxide",
        "conflict_type": "Deactivation",
        "severity": "critical",
        "recommendation": "Never use together. Consult dermatologist for alternative acne treatment.",
        "scientific_basis": "Benzoyl Peroxide completely deactivates Tretinoin, making prescription treatment ineffective.",
    },
    {
        "ingredient_a": "Adapalene",
        "ingredient_b": "Benzoyl Peroxide",
        "conflict_type": "Deactivation",
        "severity": "critical",
        "recommendation": "Never use together. Some formulations combine them, but consult dermatologist first.",
        "scientific_basis": "Benzoyl Peroxide can deactivate Adapalene, though some prescription combinations exist.",
    },
    {
        "ingredient_a": "Retinol",
        "ingredient_b": "Lactic Acid",
        "conflict_type": "High Irritation",
        "severity": "moderate",
        "recommendation": "Use on alternate days. Lactic acid is gentler than glycolic but still risky with retinol.",
        "scientific_basis": "Combining retinol with AHA can cause irritation, though lactic acid is less harsh than glycolic.",
    },
    {
        "ingredient_a": "Glycolic Acid",
        "ingredient_b": "L-Ascorbic Acid",
        "conflict_type": "pH Conflict",
        "severity": "moderate",
        "recommendation": "Use separately - AHA at night, Vitamin C in morning. Both need low pH.",
        "scientific_basis": "Both require low pH (3.0-4.0), but using together can be too harsh and reduce effectiveness.",
    },
    {
        "ingredient_a": "Salicylic Acid",
        "ingredient_b": "Benzoyl Peroxide",
        "conflict_type": "High Irritation",
        "severity": "moderate",
        "recommendation": "Use on alternate days or in different routines. Both are strong acne treatments.",
        "scientific_basis": "Combining two strong acne treatments can cause excessive dryness and irritation.",
    },
    {
        "ingredient_a": "Tretinoin",
        "ingredient_b": "Salicylic Acid",
        "conflict_type": "High Irritation",
        "severity": "severe",
        "recommendation": "Do not use together. Alternate nights or use on different days.",
        "scientific_basis": "Prescription retinoids combined with BHA can cause severe irritation and barrier damage.",
    },
    {
        "ingredient_a": "Tretinoin",
        "ingredient_b": "Glycolic Acid",
        "conflict_type": "High Irritation",
        "severity": "severe",
        "recommendation": "Do not use together. Alternate nights or use on different days.",
        "scientific_basis": "Prescription retinoids combined with AHA can cause severe irritation and barrier damage.",
    },
    {
        "ingredient_a": "Retinol",
        "ingredient_b": "Mandelic Acid",
        "conflict_type": "High Irritation",
        "severity": "low",
        "recommendation": "Use on alternate days. Mandelic acid is gentler but still risky with retinol.",
        "scientific_basis": "Mandelic acid is the gentlest AHA, but combining with retinol can still cause irritation.",
    },
    {
        "ingredient_a": "Ferulic Acid",
        "ingredient_b": "L-Ascorbic Acid",
        "conflict_type": "Synergy",
        "severity": "low",
        "recommendation": "Can be used together. Ferulic acid stabilizes Vitamin C.",
        "scientific_basis": "Ferulic acid stabilizes and enhances the effectiveness of L-Ascorbic Acid.",
    },
]


def _seed_properties(ingredient_id: str, inci_name: str) -> IngredientProperties:
    properties = IngredientProperties(ingredient_id=ingredient_id)
    if inci_name in RETINOIDS:
        properties.irritancy_score = 3
        properties.ph_range_min, properties.ph_range_max = 5.5, 6.5
    elif inci_name == "L-Ascorbic Acid":
        properties.irritancy_score = 2
        properties.ph_range_min, properties.ph_range_max = 2.5, 3.5
    elif "Acid" in inci_name and inci_name != "Hyaluronic Acid":
        properties.irritancy_score = 2
        properties.ph_range_min, properties.ph_range_max = 3.0, 4.0
    elif inci_name == "Benzoyl Peroxide":
        properties.irritancy_score = 4
    elif inci_name == "Niacinamide":
        properties.ph_range_min, properties.ph_range_max = 5.0, 7.0
    elif inci_name == "Bakuchiol":
        properties.ph_range_min, properties.ph_range_max = 5.0, 6.5
    return properties


def seed_ingredients(db) -> Dict[str, int]:
    """Insert the reference ingredients with their properties; existing names are skipped."""
    inserted = 0
    skipped = 0
    for inci_name, common_names, function, category in SEED_INGREDIENTS:
        ingredient = Ingredient(
            inci_name=inci_name,
            common_names=common_names,
            function=function,
            category=category,
            is_active=category == "active",
        )
        try:
            db.insert_ingredient(ingredient)
        except DuplicateKeyError:
            skipped += 1
            continue
        db.upsert_properties(_seed_properties(ingredient.id, inci_name))
        inserted += 1
    return {"inserted": inserted, "skipped": skipped, "total": len(SEED_INGREDIENTS)}


def seed_all(db) -> Dict[str, Dict[str, int]]:
    ingredients = seed_ingredients(db)
    conflicts = CompatibilityKnowledgeBase(db).seed(SEED_CONFLICTS)
    logger.info("Seeded %d ingredients and %d compatibility rules", ingredients["inserted"], conflicts["added"])
    return {"ingredients": ingredients, "conflicts": conflicts}
