import threading
from typing import Dict, List, Optional

from rapidfuzz import fuzz, process, utils

from . import config
from .errors import DuplicateKeyError
from .models import (
    AnalysisResult,
    CompatibilityRecord,
    DetectedConflict,
    Ingredient,
    IngredientProperties,
    Product,
    ProductIngredient,
    ResearchCacheEntry,
    Routine,
    UserProfile,
)


class SimpleDatabase:
    """In-memory storage for ingredients, routines and analysis results.

    Every table is guarded by a single re-entrant lock. Natural keys (ingredient
    name, properties per ingredient, unordered compatibility pair, cache pair hash,
    profile per user) are unique; a second insert raises DuplicateKeyError so the
    caller can fetch the existing row instead.
    """

    def __init__(self, search_index=None, fuzzy_threshold: float = None):
        self._lock = threading.RLock()
        self.search_index = search_index
        self.fuzzy_threshold = config.FUZZY_MATCH_THRESHOLD if fuzzy_threshold is None else fuzzy_threshold

        self.ingredients: Dict[str, Ingredient] = {}
        self._ingredient_ids_by_name: Dict[str, str] = {}
        self.properties: Dict[str, IngredientProperties] = {}
        self._properties_ids_by_ingredient: Dict[str, str] = {}
        self.compatibility: Dict[str, CompatibilityRecord] = {}
        self._compatibility_ids_by_pair: Dict[tuple, str] = {}
        self.research_cache: Dict[str, ResearchCacheEntry] = {}
        self._cache_ids_by_hash: Dict[str, str] = {}
        self.profiles: Dict[str, UserProfile] = {}
        self.routines: Dict[str, Routine] = {}
        self.products: Dict[str, Product] = {}
        self.product_ingredients: Dict[str, ProductIngredient] = {}
        self.analyses: Dict[str, AnalysisResult] = {}
        self.detected_conflicts: Dict[str, DetectedConflict] = {}

    # ========== Ingredients ==========

    def get_ingredient(self, ingredient_id: str) -> Optional[Ingredient]:
        with self._lock:
            ingredient = self.ingredients.get(ingredient_id)
            return ingredient.model_copy() if ingredient else None

    def get_ingredient_by_name(self, inci_name: str) -> Optional[Ingredient]:
        """Exact, case-sensitive lookup on the canonical INCI name."""
        with self._lock:
            ingredient_id = self._ingredient_ids_by_name.get(inci_name)
            return self.get_ingredient(ingredient_id) if ingredient_id else None

    def list_ingredients(self) -> List[Ingredient]:
        with self._lock:
            return [ingredient.model_copy() for ingredient in self.ingredients.values()]

    def insert_ingredient(self, ingredient: Ingredient) -> Ingredient:
        with self._lock:
            if ingredient.inci_name in self._ingredient_ids_by_name:
                raise DuplicateKeyError("ingredients", ingredient.inci_name)
            self.ingredients[ingredient.id] = ingredient.model_copy()
            self._ingredient_ids_by_name[ingredient.inci_name] = ingredient.id
        if self.search_index is not None:
            self.search_index.add(ingredient.id, ingredient.inci_name)
        return ingredient

    def search_ingredients(self, query: str, limit: int = None) -> List[Ingredient]:
        """Fuzzy search over canonical names, best candidates first."""
        limit = limit or config.INGREDIENT_SEARCH_LIMIT
        if self.search_index is not None:
            ids = self.search_index.search(query, limit)
            return [ingredient for ingredient in (self.get_ingredient(i) for i in ids) if ingredient]

        with self._lock:
            choices = {ingredient.id: ingredient.inci_name for ingredient in self.ingredients.values()}
        if not choices or not query:
            return []
        matches = process.extract(
            query,
            choices,
            scorer=fuzz.token_sort_ratio,
            processor=utils.default_process,
            limit=limit,
            score_cutoff=self.fuzzy_threshold,
        )
        return [self.get_ingredient(ingredient_id) for _name, _score, ingredient_id in matches]

    def delete_all_ingredients(self) -> Dict[str, int]:
        """Administrative purge of ingredients with their properties and compatibility rows."""
        with self._lock:
            deleted = {
                "ingredients": len(self.ingredients),
                "properties": len(self.properties),
                "conflicts": len(self.compatibility),
            }
            self.compatibility.clear()
            self._compatibility_ids_by_pair.clear()
            self.properties.clear()
            self._properties_ids_by_ingredient.clear()
            self.ingredients.clear()
            self._ingredient_ids_by_name.clear()
        if self.search_index is not None:
            self.search_index.clear()
        return deleted

    # ========== Ingredient properties ==========

    def get_properties(self, ingredient_id: str) -> Optional[IngredientProperties]:
        with self._lock:
            properties_id = self._properties_ids_by_ingredient.get(ingredient_id)
            return self.properties[properties_id].model_copy() if properties_id else None

    def insert_properties(self, properties: IngredientProperties) -> IngredientProperties:
        with self._lock:
            if properties.ingredient_id in self._properties_ids_by_ingredient:
                raise DuplicateKeyError("ingredient_properties", properties.ingredient_id)
            self.properties[properties.id] = properties.model_copy()
            self._properties_ids_by_ingredient[properties.ingredient_id] = properties.id
            return properties

    def upsert_properties(self, properties: IngredientProperties) -> bool:
        """Insert or replace the properties row for an ingredient. Returns True when updated."""
        with self._lock:
            existing_id = self._properties_ids_by_ingredient.get(properties.ingredient_id)
            if existing_id:
                self.properties[existing_id] = properties.model_copy(update={"id": existing_id})
                return True
            self.insert_properties(properties)
            return False

    # ========== Compatibility matrix ==========

    def get_compatibility(self, ingredient_a_id: str, ingredient_b_id: str) -> Optional[CompatibilityRecord]:
        """Lookup in stored slot order only; callers check both orders."""
        with self._lock:
            record_id = self._compatibility_ids_by_pair.get((ingredient_a_id, ingredient_b_id))
            return self.compatibility[record_id].model_copy() if record_id else None

    def insert_compatibility(self, record: CompatibilityRecord) -> CompatibilityRecord:
        forward = (record.ingredient_a_id, record.ingredient_b_id)
        backward = (record.ingredient_b_id, record.ingredient_a_id)
        with self._lock:
            if forward in self._compatibility_ids_by_pair or backward in self._compatibility_ids_by_pair:
                raise DuplicateKeyError("compatibility_matrix", forward)
            self.compatibility[record.id] = record.model_copy()
            self._compatibility_ids_by_pair[forward] = record.id
            return record

    def list_compatibility_for(self, ingredient_id: str) -> List[CompatibilityRecord]:
        with self._lock:
            return [
                record.model_copy()
                for record in self.compatibility.values()
                if ingredient_id in (record.ingredient_a_id, record.ingredient_b_id)
            ]

    # ========== Research cache ==========

    def get_cache_entry(self, pair_hash: str) -> Optional[ResearchCacheEntry]:
        with self._lock:
            entry_id = self._cache_ids_by_hash.get(pair_hash)
            return self.research_cache[entry_id].model_copy() if entry_id else None

    def insert_cache_entry(self, entry: ResearchCacheEntry) -> ResearchCacheEntry:
        with self._lock:
            if entry.ingredient_pair_hash in self._cache_ids_by_hash:
                raise DuplicateKeyError("research_cache", entry.ingredient_pair_hash)
            self.research_cache[entry.id] = entry.model_copy()
            self._cache_ids_by_hash[entry.ingredient_pair_hash] = entry.id
            return entry

    def update_cache_entry(self, entry_id: str, **fields) -> ResearchCacheEntry:
        with self._lock:
            updated = self.research_cache[entry_id].model_copy(update=fields)
            self.research_cache[entry_id] = updated
            return updated.model_copy()

    def delete_cache_entry(self, entry_id: str) -> bool:
        with self._lock:
            entry = self.research_cache.pop(entry_id, None)
            if entry is None:
                return False
            self._cache_ids_by_hash.pop(entry.ingredient_pair_hash, None)
            return True

    def list_cache_entries(self) -> List[ResearchCacheEntry]:
        with self._lock:
            return [entry.model_copy() for entry in self.research_cache.values()]

    # ========== Users ==========

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        with self._lock:
            profile = self.profiles.get(user_id)
            return profile.model_copy() if profile else None

    def insert_profile(self, profile: UserProfile) -> UserProfile:
        with self._lock:
            if profile.user_id in self.profiles:
                raise DuplicateKeyError("user_profiles", profile.user_id)
            self.profiles[profile.user_id] = profile.model_copy()
            return profile

    def update_profile(self, user_id: str, **fields) -> UserProfile:
        with self._lock:
            updated = self.profiles[user_id].model_copy(update=fields)
            self.profiles[user_id] = updated
            return updated.model_copy()

    # ========== Routines and products ==========

    def insert_routine(self, routine: Routine) -> Routine:
        with self._lock:
            self.routines[routine.id] = routine.model_copy()
            return routine

    def get_routine(self, routine_id: str) -> Optional[Routine]:
        with self._lock:
            routine = self.routines.get(routine_id)
            return routine.model_copy() if routine else None

    def list_routines(self, user_id: str) -> List[Routine]:
        with self._lock:
            routines = [r.model_copy() for r in reversed(list(self.routines.values())) if r.user_id == user_id]
        return sorted(routines, key=lambda r: r.created_at, reverse=True)

    def delete_routine(self, routine_id: str) -> Optional[Dict[str, int]]:
        """Delete a routine with its products and their ingredient links. None if unknown."""
        with self._lock:
            if self.routines.pop(routine_id, None) is None:
                return None
            product_ids = {p.id for p in self.products.values() if p.routine_id == routine_id}
            link_ids = [l.id for l in self.product_ingredients.values() if l.product_id in product_ids]
            for product_id in product_ids:
                del self.products[product_id]
            for link_id in link_ids:
                del self.product_ingredients[link_id]
            return {"products": len(product_ids), "product_ingredients": len(link_ids)}

    def insert_product(self, product: Product) -> Product:
        with self._lock:
            self.products[product.id] = product.model_copy()
            return product

    def get_product(self, product_id: str) -> Optional[Product]:
        with self._lock:
            product = self.products.get(product_id)
            return product.model_copy() if product else None

    def list_products(self, routine_id: str) -> List[Product]:
        with self._lock:
            products = [p.model_copy() for p in self.products.values() if p.routine_id == routine_id]
        return sorted(products, key=lambda p: p.order_in_routine)

    def insert_product_ingredient(self, link: ProductIngredient) -> ProductIngredient:
        with self._lock:
            self.product_ingredients[link.id] = link.model_copy()
            return link

    def list_product_ingredients(self, product_id: str) -> List[ProductIngredient]:
        with self._lock:
            links = [l.model_copy() for l in self.product_ingredients.values() if l.product_id == product_id]
        return sorted(links, key=lambda l: l.position)

    # ========== Analysis results ==========

    def insert_analysis(self, analysis: AnalysisResult) -> AnalysisResult:
        with self._lock:
            self.analyses[analysis.id] = analysis.model_copy()
            return analysis

    def get_analysis(self, analysis_id: str) -> Optional[AnalysisResult]:
        with self._lock:
            analysis = self.analyses.get(analysis_id)
            return analysis.model_copy() if analysis else None

    def update_analysis(self, analysis_id: str, **fields) -> AnalysisResult:
        with self._lock:
            updated = self.analyses[analysis_id].model_copy(update=fields)
            self.analyses[analysis_id] = updated
            return updated.model_copy()

    def list_analyses(self, user_id: str, limit: int = None) -> List[AnalysisResult]:
        """Most recent first."""
        limit = limit or config.ANALYSIS_HISTORY_LIMIT
        with self._lock:
            analyses = [a.model_copy() for a in reversed(list(self.analyses.values())) if a.user_id == user_id]
        analyses.sort(key=lambda a: a.created_at, reverse=True)
        return analyses[:limit]

    def insert_detected_conflicts(self, conflicts: List[DetectedConflict]) -> List[DetectedConflict]:
        with self._lock:
            for conflict in conflicts:
                self.detected_conflicts[conflict.id] = conflict.model_copy()
            return conflicts

    def list_detected_conflicts(self, analysis_id: str) -> List[DetectedConflict]:
        with self._lock:
            return [c.model_copy() for c in self.detected_conflicts.values() if c.analysis_id == analysis_id]
