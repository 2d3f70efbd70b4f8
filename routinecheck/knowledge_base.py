import logging
from typing import Dict, Iterable, List, NamedTuple, Optional

from .errors import DuplicateKeyError
from .models import CompatibilityRecord
from .normalizer import normalize_severity

logger = logging.getLogger(__name__)


class LearnedConflict(NamedTuple):
    created: bool
    id: str


class CompatibilityKnowledgeBase:
    """Pairwise ingredient compatibility rules.

    A pair is unordered but stored in a fixed slot order, so every lookup checks
    both orders. The knowledge base only grows: the first record for a pair wins
    and later findings for the same pair never overwrite it.
    """

    def __init__(self, db):
        self.db = db

    def find_conflict(self, ingredient_a_id: str, ingredient_b_id: str) -> Optional[CompatibilityRecord]:
        record = self.db.get_compatibility(ingredient_a_id, ingredient_b_id)
        if record:
            return record
        return self.db.get_compatibility(ingredient_b_id, ingredient_a_id)

    def upsert_learned(self, ingredient_a_id: str, ingredient_b_id: str, conflict_type: str,
                       severity: str, recommendation: str, scientific_basis: str = None) -> LearnedConflict:
        existing = self.find_conflict(ingredient_a_id, ingredient_b_id)
        if existing:
            return LearnedConflict(created=False, id=existing.id)

        record = CompatibilityRecord(
            ingredient_a_id=ingredient_a_id,
            ingredient_b_id=ingredient_b_id,
            conflict_type=conflict_type,
            severity=normalize_severity(severity),
            recommendation=recommendation,
            scientific_basis=scientific_basis or None,
        )
        try:
            self.db.insert_compatibility(record)
        except DuplicateKeyError:
            winner = self.find_conflict(ingredient_a_id, ingredient_b_id)
            return LearnedConflict(created=False, id=winner.id)
        return LearnedConflict(created=True, id=record.id)

    def conflicts_for(self, ingredient_id: str) -> List[Dict]:
        """All records touching an ingredient, with the other ingredient expanded."""
        this_ingredient = self.db.get_ingredient(ingredient_id)
        results = []
        for record in self.db.list_compatibility_for(ingredient_id):
            other_id = record.ingredient_b_id if record.ingredient_a_id == ingredient_id else record.ingredient_a_id
            results.append({
                **record.model_dump(),
                "this_ingredient": this_ingredient,
                "other_ingredient": self.db.get_ingredient(other_id),
            })
        return results

    def seed(self, records: Iterable[Dict]) -> Dict[str, int]:
        """Load rules keyed by INCI name; pairs with unknown ingredients or existing rules are skipped."""
        added = 0
        skipped = 0
        total = 0
        for entry in records:
            total += 1
            ingredient_a = self.db.get_ingredient_by_name(entry["ingredient_a"])
            ingredient_b = self.db.get_ingredient_by_name(entry["ingredient_b"])
            if not ingredient_a or not ingredient_b:
                logger.warning("Skipping conflict: %s + %s (ingredients not found)",
                               entry["ingredient_a"], entry["ingredient_b"])
                skipped += 1
                continue

            result = self.upsert_learned(
                ingredient_a.id,
                ingredient_b.id,
                conflict_type=entry["conflict_type"],
                severity=entry["severity"],
                recommendation=entry["recommendation"],
                scientific_basis=entry.get("scientific_basis"),
            )
            if result.created:
                added += 1
            else:
                skipped += 1
        return {"added": added, "skipped": skipped, "total": total}
