import json
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from . import config
from .detector import ConflictDetector
from .errors import (
    AdvisoryParseError,
    AdvisoryUnavailableError,
    AnalysisFailedError,
    RoutineValidationError,
)
from .knowledge_base import CompatibilityKnowledgeBase
from .matcher import IngredientMatcher
from .models import (
    AnalysisResult,
    AnalysisSummary,
    ConflictFinding,
    DetectedConflict,
    Product,
    ProductIngredient,
    ProductInput,
    ResolvedIngredient,
    Routine,
    RoutineAdvice,
    UserProfile,
    utcnow,
)
from .normalizer import normalize_usage_time, parse_ingredient_list
from .research_cache import ResearchCache
from .scorer import SafetyScore, score_routine

NO_CONFLICTS_MESSAGE = "Your routine looks great! No conflicts detected."
HIGH_SEVERITY_NUDGE = "Review high-severity conflicts immediately."


class RoutineAnalyzer:
    def __init__(self, db, advisory, logger: logging.Logger = None,
                 clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.advisory = advisory
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock
        self.matcher = IngredientMatcher(db)
        self.knowledge_base = CompatibilityKnowledgeBase(db)
        self.detector = ConflictDetector(self.knowledge_base)
        self.research_cache = ResearchCache(db, clock=clock)

    # ========== Profiles ==========

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        return self.db.get_profile(user_id)

    def save_profile(self, user_id: str, skin_type: str, sensitivities: List[str],
                     goals: List[str]) -> Tuple[UserProfile, bool]:
        """Create or update the onboarding profile. Returns (profile, is_new)."""
        now = self.clock()
        if self.db.get_profile(user_id):
            profile = self.db.update_profile(
                user_id, skin_type=skin_type, sensitivities=sensitivities, goals=goals, updated_at=now
            )
            return profile, False

        profile = UserProfile(
            user_id=user_id,
            skin_type=skin_type,
            sensitivities=sensitivities,
            goals=goals,
            created_at=now,
            updated_at=now,
        )
        self.db.insert_profile(profile)
        return profile, True

    # ========== Routines ==========

    def get_user_routines(self, user_id: str) -> List[Dict]:
        """Saved routines, newest first, each with its products in routine order."""
        return [
            {**routine.model_dump(), "products": self.db.list_products(routine.id)}
            for routine in self.db.list_routines(user_id)
        ]

    def get_routine(self, routine_id: str) -> Optional[Dict]:
        routine = self.db.get_routine(routine_id)
        if routine is None:
            return None
        return {**routine.model_dump(), "products": self.db.list_products(routine_id)}

    def delete_routine(self, routine_id: str) -> Dict[str, int]:
        deleted = self.db.delete_routine(routine_id)
        if deleted is None:
            raise LookupError("Routine not found")
        self.logger.info("Deleted routine %s with %d product(s)", routine_id, deleted["products"])
        return deleted

    # ========== Analysis ==========

    def analyze_routine(self, user_id: str, products: Sequence[ProductInput],
                        routine_name: str = None) -> AnalysisSummary:
        """Analyze a routine end to end and persist the results."""
        if not products:
            raise RoutineValidationError("At least one product is required")

        try:
            return self._analyze(user_id, products, routine_name)
        except (RoutineValidationError, AnalysisFailedError):
            raise
        except Exception as e:
            self.logger.error("Error in analyze_routine: %s", e)
            raise AnalysisFailedError(f"Analysis failed: {e}") from e

    def _analyze(self, user_id: str, products: Sequence[ProductInput], routine_name: str) -> AnalysisSummary:
        now = self.clock()
        routine = Routine(
            user_id=user_id,
            name=routine_name or f"Routine {now.strftime('%m/%d/%Y')}",
            created_at=now,
            updated_at=now,
        )
        self.db.insert_routine(routine)

        profile = self.db.get_profile(user_id)
        user_context = {
            "skin_type": profile.skin_type if profile else "normal",
            "sensitivities": profile.sensitivities if profile else [],
            "goals": profile.goals if profile else [],
        }

        resolved, products_for_advisory = self._store_products(routine.id, products, now)
        if not resolved:
            raise RoutineValidationError("No ingredients could be read from the submitted products")

        advice = self._request_advice(user_context, products_for_advisory)

        detection = self.detector.detect(resolved, advice.conflicts if advice else None)
        conflicts = detection.conflicts

        score = score_routine(
            advisory_risk=advice.overall_risk_score if advice else None,
            severities=[c.severity for c in conflicts],
        )
        self.logger.info("Safety %.1f/10, risk %.1f/10, tier %s, grade %s",
                         score.safety_score, score.risk_score, score.risk_tier, score.grade)

        recommendations = build_recommendations(advice, conflicts)
        analysis_data = self._analysis_payload(resolved, score, conflicts, advice)

        if detection.strategy == "advisory" and conflicts:
            self._learn_from_advisory(conflicts, resolved)

        analysis = AnalysisResult(
            user_id=user_id,
            routine_id=routine.id,
            overall_risk_score=score.risk_tier,
            summary_score=score.grade,
            conflicts_found=len(conflicts),
            analysis_data=json.dumps(analysis_data),
            recommendations=recommendations,
            profile_summary=(advice.profile_summary or None) if advice else None,
            created_at=now,
        )
        self.db.insert_analysis(analysis)
        self.db.insert_detected_conflicts([
            DetectedConflict(analysis_id=analysis.id, **conflict.model_dump()) for conflict in conflicts
        ])

        self.logger.info("Analysis %s complete: %d conflict(s), %d ingredient(s), advisory used: %s",
                         analysis.id, len(conflicts), len(resolved), advice is not None)

        return AnalysisSummary(
            analysis_id=analysis.id,
            routine_id=routine.id,
            safety_score=score.safety_score,
            risk_score=score.risk_score,
            summary_score=score.grade,
            conflicts_found=len(conflicts),
            ingredients_analyzed=len(resolved),
        )

    def _store_products(self, routine_id: str, products: Sequence[ProductInput],
                        now: datetime) -> Tuple[List[ResolvedIngredient], List[Dict]]:
        resolved = []
        products_for_advisory = []

        for order, item in enumerate(products, start=1):
            if not item.name or not item.ingredient_list:
                continue

            usage_time = normalize_usage_time(item.usage_timing)
            product = Product(
                routine_id=routine_id,
                product_name=item.name,
                brand_name=self._extract_brand(item.name),
                raw_inci_list=item.ingredient_list,
                usage_time=usage_time,
                order_in_routine=order,
                created_at=now,
            )
            self.db.insert_product(product)

            names = parse_ingredient_list(item.ingredient_list)
            for position, name in enumerate(names, start=1):
                ingredient_id = self.matcher.resolve(name)
                self.db.insert_product_ingredient(ProductIngredient(
                    product_id=product.id,
                    ingredient_id=ingredient_id,
                    position=position,
                ))
                resolved.append(ResolvedIngredient(
                    product_id=product.id,
                    product_name=product.product_name,
                    ingredient_id=ingredient_id,
                    ingredient_name=name,
                    usage_time=usage_time,
                ))

            self.logger.info("Stored %d ingredients for product: %s", len(names), item.name)
            products_for_advisory.append({
                "product_name": item.name,
                "ingredients": names,
                "usage_time": usage_time,
            })

        return resolved, products_for_advisory

    def _extract_brand(self, product_name: str) -> Optional[str]:
        try:
            return self.advisory.extract_brand_name(product_name)
        except Exception as e:
            self.logger.warning("Brand extraction failed for %r: %s", product_name, e)
            return None

    def _request_advice(self, user_context: Dict, products: List[Dict]) -> Optional[RoutineAdvice]:
        try:
            advice = self.advisory.analyze_routine(user_context, products)
        except AdvisoryUnavailableError as e:
            self.logger.error("Advisory analysis unavailable, falling back to rule-based: %s", e)
            return None
        except AdvisoryParseError:
            # Malformed main analysis output fails the whole analysis; only unavailability falls back to rules.
            self.logger.error("Advisory analysis returned unparseable output")
            raise

        self.logger.info("Advisory analysis: risk %s, %d conflict(s)", advice.overall_risk_score, len(advice.conflicts))
        return advice

    def _analysis_payload(self, resolved: List[ResolvedIngredient], score: SafetyScore,
                          conflicts: List[ConflictFinding], advice: Optional[RoutineAdvice]) -> Dict:
        return {
            "totalIngredients": len(resolved),
            "safetyScore": score.safety_score,
            "riskScore": score.risk_score,
            "conflictsSummary": [{"severity": c.severity, "type": c.conflict_type} for c in conflicts],
            "aiAnalysis": {
                "overallRiskScore": advice.overall_risk_score,
                "summary": advice.summary,
                "ingredientWarnings": [w.model_dump() for w in advice.ingredient_warnings],
                "ingredientBenefits": [b.model_dump() for b in advice.ingredient_benefits],
            } if advice else None,
        }

    def _learn_from_advisory(self, conflicts: List[ConflictFinding], resolved: List[ResolvedIngredient]):
        """Fold accepted advisory conflicts into the knowledge base and research cache."""
        names = {item.ingredient_id: item.ingredient_name for item in resolved}
        saved = 0
        existing = 0
        failed = 0

        for conflict in conflicts:
            try:
                result = self.knowledge_base.upsert_learned(
                    conflict.ingredient_a_id,
                    conflict.ingredient_b_id,
                    conflict_type=conflict.conflict_type,
                    severity=conflict.severity,
                    recommendation=conflict.recommendation or conflict.explanation or "AI-detected conflict",
                    scientific_basis=conflict.explanation or conflict.recommendation,
                )
            except Exception as e:
                failed += 1
                self.logger.error("Failed to save conflict to matrix: %s", e)
                continue

            if not result.created:
                existing += 1
                continue
            saved += 1

            name_a = names.get(conflict.ingredient_a_id, conflict.ingredient_a_id)
            name_b = names.get(conflict.ingredient_b_id, conflict.ingredient_b_id)
            try:
                if self.research_cache.get(conflict.ingredient_a_id, conflict.ingredient_b_id) is None:
                    self.research_cache.put(
                        conflict.ingredient_a_id,
                        conflict.ingredient_b_id,
                        response=json.dumps({
                            "compatible": False,
                            "severity": conflict.severity,
                            "conflictType": conflict.conflict_type,
                            "explanation": conflict.explanation,
                            "recommendation": conflict.recommendation,
                            "confidence": config.LEARNED_CONFLICT_CONFIDENCE,
                            "researchSummary": conflict.explanation or conflict.recommendation,
                        }),
                        confidence=config.LEARNED_CONFLICT_CONFIDENCE,
                        citations=[],
                        ttl_days=config.RESEARCH_CACHE_TTL_DAYS,
                        query=f"Research compatibility between {name_a} and {name_b}",
                    )
            except Exception as e:
                self.logger.warning("Failed to cache research for %s x %s: %s", name_a, name_b, e)

        self.logger.info("Matrix update: %d new conflicts saved, %d already existed, %d failed",
                         saved, existing, failed)

    # ========== Results ==========

    def get_analysis_results(self, analysis_id: str) -> Optional[Dict]:
        analysis = self.db.get_analysis(analysis_id)
        if analysis is None:
            return None

        conflicts = []
        for conflict in self.db.list_detected_conflicts(analysis_id):
            conflicts.append({
                **conflict.model_dump(),
                "ingredient_a": self.db.get_ingredient(conflict.ingredient_a_id),
                "ingredient_b": self.db.get_ingredient(conflict.ingredient_b_id),
                "product_a": self.db.get_product(conflict.product_a_id),
                "product_b": self.db.get_product(conflict.product_b_id),
            })

        payload = json.loads(analysis.analysis_data) if analysis.analysis_data else {}
        return {
            "analysis": {**analysis.model_dump(), "safety_score": payload.get("safetyScore", 0)},
            "routine": self.db.get_routine(analysis.routine_id),
            "products": self.db.list_products(analysis.routine_id),
            "conflicts": conflicts,
        }

    def get_user_analyses(self, user_id: str, limit: int = None) -> List[Dict]:
        history = []
        for analysis in self.db.list_analyses(user_id, limit):
            routine = self.db.get_routine(analysis.routine_id)
            history.append({
                **analysis.model_dump(),
                "routine_name": routine.name if routine else None,
                "conflicts_count": len(self.db.list_detected_conflicts(analysis.id)),
            })
        return history

    def update_ai_summary(self, analysis_id: str, summary: str) -> AnalysisResult:
        """Prepend an advisory summary line unless it is already present."""
        analysis = self.db.get_analysis(analysis_id)
        if analysis is None:
            raise LookupError("Analysis not found")
        if summary in analysis.recommendations:
            return analysis
        return self.db.update_analysis(analysis_id, recommendations=[summary] + analysis.recommendations)

    def enhance_with_summary(self, analysis_id: str) -> str:
        analysis = self.db.get_analysis(analysis_id)
        if analysis is None:
            raise LookupError("Analysis not found")
        count = len(self.db.list_detected_conflicts(analysis_id))
        if count == 0:
            summary = "Your routine looks great! No major conflicts detected."
        else:
            summary = f"Found {count} potential conflict(s). Review recommendations below."
        self.update_ai_summary(analysis_id, summary)
        return summary


def build_recommendations(advice: Optional[RoutineAdvice], conflicts: Sequence[ConflictFinding]) -> List[str]:
    """Recommendation lines in display order."""
    recommendations = []

    if advice and advice.summary:
        recommendations.append(advice.summary)

    if advice:
        high_warnings = [w for w in advice.ingredient_warnings if w.severity.upper() == "HIGH"]
        if high_warnings:
            recommendations.append("⚠️ INGREDIENT WARNINGS FOR YOUR SKIN TYPE:")
            for warning in high_warnings:
                recommendations.append(
                    f"- {warning.ingredient} (in {warning.product}): {warning.concern}. {warning.recommendation}"
                )

    if advice and advice.ingredient_benefits:
        recommendations.append("✅ BENEFICIAL INGREDIENTS FOR YOUR SKIN TYPE:")
        for benefit in advice.ingredient_benefits[:3]:
            recommendations.append(f"- {benefit.ingredient} (in {benefit.product}): {benefit.benefit}")

    if not conflicts:
        recommendations.append(NO_CONFLICTS_MESSAGE)
    else:
        recommendations.append(f"Found {len(conflicts)} potential conflict(s).")
        if any(c.severity in ("high", "severe") for c in conflicts):
            recommendations.append(HIGH_SEVERITY_NUDGE)

    if advice:
        if advice.morning_routine:
            recommendations.append(f"Morning routine: {', '.join(advice.morning_routine)}")
        if advice.evening_routine:
            recommendations.append(f"Evening routine: {', '.join(advice.evening_routine)}")

    return recommendations
