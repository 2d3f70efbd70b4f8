import logging
from typing import List, NamedTuple, Optional, Sequence

from .knowledge_base import CompatibilityKnowledgeBase
from .models import AdvisoryConflict, ConflictFinding, ResolvedIngredient
from .normalizer import normalize_severity

logger = logging.getLogger(__name__)

# (terms in the advisory name, substrings to look for in resolved names)
SYNONYM_FALLBACKS = [
    (("vitamin c", "ascorbic"), ("ascorbic",)),
    (("retinoid", "retinol"), ("retinol", "tretinoin")),
]


def is_temporal_conflict(usage_a: str, usage_b: str) -> bool:
    """Both products plausibly land on the skin in the same application window."""
    return usage_a == usage_b or usage_a == "both" or usage_b == "both"


class Detection(NamedTuple):
    conflicts: List[ConflictFinding]
    strategy: str


class ConflictDetector:
    def __init__(self, knowledge_base: CompatibilityKnowledgeBase):
        self.knowledge_base = knowledge_base

    def detect(self, resolved: Sequence[ResolvedIngredient],
               advisory_conflicts: Optional[Sequence[AdvisoryConflict]] = None) -> Detection:
        """Map advisory conflicts when there are any, otherwise scan the knowledge base."""
        if advisory_conflicts:
            logger.info("Using advisory-detected conflicts: %d", len(advisory_conflicts))
            return Detection(self.from_advisory(resolved, advisory_conflicts), "advisory")

        logger.info("Using rule-based conflict detection (compatibility matrix)")
        return Detection(self.from_knowledge_base(resolved), "rules")

    # ========== Advisory path ==========

    @staticmethod
    def match_name(name: str, resolved: Sequence[ResolvedIngredient]) -> Optional[ResolvedIngredient]:
        """Find the resolved ingredient an advisory name refers to."""
        name_lower = (name or "").lower().strip()
        if not name_lower:
            return None

        for item in resolved:
            if item.ingredient_name.lower() == name_lower:
                return item

        for item in resolved:
            resolved_lower = item.ingredient_name.lower()
            if name_lower in resolved_lower or resolved_lower in name_lower:
                return item

        for terms, targets in SYNONYM_FALLBACKS:
            if any(term in name_lower for term in terms):
                for item in resolved:
                    if any(target in item.ingredient_name.lower() for target in targets):
                        return item
        return None

    def from_advisory(self, resolved: Sequence[ResolvedIngredient],
                      advisory_conflicts: Sequence[AdvisoryConflict]) -> List[ConflictFinding]:
        conflicts = []
        for advisory in advisory_conflicts:
            ingredient_a = self.match_name(advisory.ingredient_a, resolved)
            ingredient_b = self.match_name(advisory.ingredient_b, resolved)

            if not ingredient_a or not ingredient_b:
                missing = [n for n, m in ((advisory.ingredient_a, ingredient_a), (advisory.ingredient_b, ingredient_b)) if not m]
                logger.info("Could not find ingredients for conflict %s x %s (missing: %s)",
                            advisory.ingredient_a, advisory.ingredient_b, ", ".join(missing))
                continue
            if ingredient_a.product_id == ingredient_b.product_id:
                logger.info("Dropping same-product conflict %s x %s in %s",
                            ingredient_a.ingredient_name, ingredient_b.ingredient_name, ingredient_a.product_name)
                continue

            finding = ConflictFinding(
                product_a_id=ingredient_a.product_id,
                product_b_id=ingredient_b.product_id,
                ingredient_a_id=ingredient_a.ingredient_id,
                ingredient_b_id=ingredient_b.ingredient_id,
                severity=normalize_severity(advisory.severity),
                conflict_type=advisory.conflict_type,
                explanation=advisory.explanation or advisory.recommendation,
                recommendation=advisory.recommendation,
                is_temporal_conflict=advisory.is_temporal_conflict,
            )
            conflicts.append(finding)
            logger.info("Mapped advisory conflict: %s x %s (%s)",
                        ingredient_a.ingredient_name, ingredient_b.ingredient_name, finding.severity)

        logger.info("Total conflicts mapped: %d out of %d", len(conflicts), len(advisory_conflicts))
        return conflicts

    # ========== Rule-based path ==========

    def from_knowledge_base(self, resolved: Sequence[ResolvedIngredient]) -> List[ConflictFinding]:
        conflicts = []
        for i, ingredient_a in enumerate(resolved):
            for ingredient_b in resolved[i + 1:]:
                # Ingredients in one product are already combined in its formulation.
                if ingredient_a.product_id == ingredient_b.product_id:
                    continue

                record = self.knowledge_base.find_conflict(ingredient_a.ingredient_id, ingredient_b.ingredient_id)
                if not record:
                    continue

                conflicts.append(ConflictFinding(
                    product_a_id=ingredient_a.product_id,
                    product_b_id=ingredient_b.product_id,
                    ingredient_a_id=ingredient_a.ingredient_id,
                    ingredient_b_id=ingredient_b.ingredient_id,
                    severity=record.severity or "medium",
                    conflict_type=record.conflict_type or "compatibility",
                    explanation=record.scientific_basis or record.recommendation or "",
                    recommendation=record.recommendation or "",
                    is_temporal_conflict=is_temporal_conflict(ingredient_a.usage_time, ingredient_b.usage_time),
                ))
        return conflicts
