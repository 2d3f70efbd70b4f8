import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, NamedTuple, Optional

from . import config
from .errors import AdvisoryUnavailableError, DuplicateKeyError
from .models import ResearchCacheEntry, utcnow

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"

DEFAULT_RESEARCH_PAIRS = [
    ("Retinol", "L-Ascorbic Acid"),
    ("Retinol", "Niacinamide"),
    ("L-Ascorbic Acid", "Niacinamide"),
    ("Retinol", "Glycolic Acid"),
    ("Retinol", "Salicylic Acid"),
    ("L-Ascorbic Acid", "Copper Peptides"),
    ("Benzoyl Peroxide", "Retinol"),
    ("Glycolic Acid", "Salicylic Acid"),
    ("Retinol", "Bakuchiol"),
]


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def pair_hash(ingredient_a_id: str, ingredient_b_id: str) -> str:
    """Order-independent cache key for an ingredient pair.

    32-bit rolling hash of the sorted ids, so distinct pairs can collide.
    """
    joined = "|".join(sorted([ingredient_a_id, ingredient_b_id]))
    value = 0
    for char in joined:
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return _to_base36(abs(value))


class CacheWrite(NamedTuple):
    id: str
    updated: bool


class ResearchCache:
    """Time-boxed cache of advisory research results per ingredient pair."""

    def __init__(self, db, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def get(self, ingredient_a_id: str, ingredient_b_id: str) -> Optional[ResearchCacheEntry]:
        entry = self.db.get_cache_entry(pair_hash(ingredient_a_id, ingredient_b_id))
        if entry is None:
            return None
        if self.clock() >= entry.expires_at:
            self.db.delete_cache_entry(entry.id)
            return None
        return entry

    def put(self, ingredient_a_id: str, ingredient_b_id: str, response: str, confidence: float,
            citations: List[str] = None, ttl_days: int = None, query: str = "") -> CacheWrite:
        key = pair_hash(ingredient_a_id, ingredient_b_id)
        now = self.clock()
        ttl_days = config.RESEARCH_CACHE_TTL_DAYS if ttl_days is None else ttl_days
        fields = {
            "query": query,
            "response": response,
            "confidence": min(1.0, max(0.0, float(confidence))),
            "citations": list(citations or []),
            "expires_at": now + timedelta(days=ttl_days),
        }

        existing = self.db.get_cache_entry(key)
        if existing is None:
            entry = ResearchCacheEntry(ingredient_pair_hash=key, created_at=now, **fields)
            try:
                self.db.insert_cache_entry(entry)
                return CacheWrite(id=entry.id, updated=False)
            except DuplicateKeyError:
                existing = self.db.get_cache_entry(key)

        self.db.update_cache_entry(existing.id, **fields)
        return CacheWrite(id=existing.id, updated=True)

    def purge_expired(self) -> Dict[str, int]:
        """Sweep every expired entry. Safe to run alongside reads and writes."""
        now = self.clock()
        entries = self.db.list_cache_entries()
        deleted = 0
        for entry in entries:
            if now >= entry.expires_at and self.db.delete_cache_entry(entry.id):
                deleted += 1
        return {"deleted": deleted, "total": len(entries)}


class PairResearcher:
    """Cache-first pairwise research backed by the advisory model."""

    def __init__(self, db, cache: ResearchCache, advisory, matcher):
        self.db = db
        self.cache = cache
        self.advisory = advisory
        self.matcher = matcher

    def research_ingredient_pair(self, ingredient_a_id: str, ingredient_b_id: str,
                                 user_context: Dict = None) -> Dict:
        cached = self.cache.get(ingredient_a_id, ingredient_b_id)
        if cached:
            logger.info("Using cached research for ingredient pair")
            return {
                "cached": True,
                "response": cached.response,
                "confidence": cached.confidence,
                "citations": cached.citations,
                "query": cached.query,
            }

        ingredient_a = self.db.get_ingredient(ingredient_a_id)
        ingredient_b = self.db.get_ingredient(ingredient_b_id)
        if not ingredient_a or not ingredient_b:
            raise LookupError("Ingredients not found")

        result = self.advisory.research_ingredient_compatibility(
            ingredient_a.inci_name, ingredient_b.inci_name, user_context
        )
        self.cache.put(
            ingredient_a_id,
            ingredient_b_id,
            response=result.response,
            confidence=result.confidence,
            citations=result.citations,
            query=result.query,
        )
        logger.info("Saved research to cache for %s + %s", ingredient_a.inci_name, ingredient_b.inci_name)
        return {
            "cached": False,
            "response": result.response,
            "confidence": result.confidence,
            "citations": result.citations,
            "query": result.query,
        }

    def seed_research_cache(self, pairs: List[tuple] = None) -> Dict:
        """Research and cache a list of (name, name) pairs, reporting a status per pair."""
        pairs = pairs or DEFAULT_RESEARCH_PAIRS
        results = []
        for name_a, name_b in pairs:
            label = f"{name_a} + {name_b}"
            ingredient_a = self.matcher.find(name_a)
            ingredient_b = self.matcher.find(name_b)
            if not ingredient_a or not ingredient_b:
                logger.info("Skipping %s - ingredients not found", label)
                results.append({"pair": label, "status": "skipped", "reason": "Ingredients not found"})
                continue

            if self.cache.get(ingredient_a.id, ingredient_b.id):
                results.append({"pair": label, "status": "cached"})
                continue

            try:
                research = self.research_ingredient_pair(ingredient_a.id, ingredient_b.id)
            except AdvisoryUnavailableError as e:
                logger.error("Failed to research %s: %s", label, e)
                results.append({"pair": label, "status": "error", "error": str(e)})
                continue
            results.append({
                "pair": label,
                "status": "researched",
                "cached": research["cached"],
                "confidence": research["confidence"],
            })

        return {
            "message": "Research cache seeding complete",
            "results": results,
            "total": len(pairs),
            "successful": len([r for r in results if r["status"] in ("researched", "cached")]),
        }
