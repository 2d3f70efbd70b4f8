from datetime import datetime, timezone
from typing import List, Literal, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

Category = Literal["active", "base", "preservative", "fragrance"]
UsageTime = Literal["AM", "PM", "both", "alternate", "weekly"]
SkinType = Literal["oily", "dry", "combination", "normal", "sensitive"]
RiskTier = Literal["safe", "caution", "high_risk"]


def new_id() -> str:
    return uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ========== Stored records ==========

class Ingredient(BaseModel):
    id: str = Field(default_factory=new_id)
    inci_name: str
    common_names: List[str] = Field(default_factory=list)
    function: str = ""
    category: Category = "base"
    is_active: bool = False


class IngredientProperties(BaseModel):
    id: str = Field(default_factory=new_id)
    ingredient_id: str
    ph_range_min: Optional[float] = None
    ph_range_max: Optional[float] = None
    irritancy_score: int = Field(default=0, ge=0, le=5)
    comedogenic_score: int = Field(default=0, ge=0, le=5)
    is_harmful: bool = False

    def is_default(self) -> bool:
        return (
            self.irritancy_score == 0
            and self.comedogenic_score == 0
            and not self.is_harmful
            and self.ph_range_min is None
            and self.ph_range_max is None
        )


class CompatibilityRecord(BaseModel):
    """Known relationship between two ingredients; the pair is unordered."""
    id: str = Field(default_factory=new_id)
    ingredient_a_id: str
    ingredient_b_id: str
    conflict_type: str
    severity: str
    recommendation: str
    scientific_basis: Optional[str] = None


class ResearchCacheEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    ingredient_pair_hash: str
    query: str = ""
    response: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    citations: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime


class UserProfile(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    skin_type: SkinType = "normal"
    sensitivities: List[str] = Field(default_factory=list)
    goals: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Routine(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    name: str
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Product(BaseModel):
    id: str = Field(default_factory=new_id)
    routine_id: str
    product_name: str
    brand_name: Optional[str] = None
    raw_inci_list: str
    usage_time: UsageTime
    order_in_routine: int
    created_at: datetime = Field(default_factory=utcnow)


class ProductIngredient(BaseModel):
    id: str = Field(default_factory=new_id)
    product_id: str
    ingredient_id: str
    position: int
    concentration: Optional[float] = None


class AnalysisResult(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    routine_id: str
    overall_risk_score: RiskTier
    summary_score: str
    conflicts_found: int
    analysis_data: str
    recommendations: List[str] = Field(default_factory=list)
    profile_summary: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class DetectedConflict(BaseModel):
    id: str = Field(default_factory=new_id)
    analysis_id: str
    product_a_id: str
    product_b_id: str
    ingredient_a_id: str
    ingredient_b_id: str
    severity: str
    conflict_type: str
    explanation: str
    recommendation: str
    is_temporal_conflict: bool = False


# ========== Pipeline values ==========

class ResolvedIngredient(BaseModel):
    """One ingredient occurrence inside one product of the routine."""
    product_id: str
    product_name: str
    ingredient_id: str
    ingredient_name: str
    usage_time: str


class ConflictFinding(BaseModel):
    product_a_id: str
    product_b_id: str
    ingredient_a_id: str
    ingredient_b_id: str
    severity: str
    conflict_type: str
    explanation: str
    recommendation: str
    is_temporal_conflict: bool = False


# ========== Advisory model payloads ==========

class _AdvisoryModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _list_or_empty(value):
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]
    return [item for item in value if item is not None]


def _text_or_empty(value) -> str:
    return "" if value is None else str(value)


class AdvisoryConflict(_AdvisoryModel):
    ingredient_a: str = Field(default="", alias="ingredientA")
    ingredient_b: str = Field(default="", alias="ingredientB")
    product_a: str = Field(default="", alias="productA")
    product_b: str = Field(default="", alias="productB")
    severity: str = "medium"
    conflict_type: str = Field(default="compatibility", alias="conflictType")
    explanation: str = ""
    recommendation: str = ""
    is_temporal_conflict: bool = Field(default=False, alias="isTemporalConflict")

    @field_validator("ingredient_a", "ingredient_b", "product_a", "product_b",
                     "explanation", "recommendation", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return _text_or_empty(value)

    @field_validator("severity", mode="before")
    @classmethod
    def _default_severity(cls, value):
        return _text_or_empty(value) or "medium"

    @field_validator("conflict_type", mode="before")
    @classmethod
    def _default_conflict_type(cls, value):
        return _text_or_empty(value) or "compatibility"

    @field_validator("is_temporal_conflict", mode="before")
    @classmethod
    def _default_temporal(cls, value):
        if isinstance(value, str):
            return value.strip().lower() == "true"
        return bool(value)


class IngredientWarning(_AdvisoryModel):
    ingredient: str = ""
    product: str = ""
    concern: str = ""
    recommendation: str = ""
    severity: str = ""

    @field_validator("ingredient", "product", "concern", "recommendation", "severity", mode="before")
    @classmethod
    def _text(cls, value):
        return _text_or_empty(value)


class IngredientBenefit(_AdvisoryModel):
    ingredient: str = ""
    product: str = ""
    benefit: str = ""

    @field_validator("ingredient", "product", "benefit", mode="before")
    @classmethod
    def _text(cls, value):
        return _text_or_empty(value)


class RoutineAdvice(_AdvisoryModel):
    """Structured routine analysis returned by the advisory model."""
    overall_risk_score: Optional[float] = Field(default=None, alias="overallRiskScore")
    conflicts: List[AdvisoryConflict] = Field(default_factory=list)
    ingredient_warnings: List[IngredientWarning] = Field(default_factory=list, alias="ingredientWarnings")
    ingredient_benefits: List[IngredientBenefit] = Field(default_factory=list, alias="ingredientBenefits")
    morning_routine: List[str] = Field(default_factory=list, alias="morningRoutine")
    evening_routine: List[str] = Field(default_factory=list, alias="eveningRoutine")
    summary: str = ""
    profile_summary: str = Field(default="", alias="profileSummary")

    @field_validator("overall_risk_score", mode="before")
    @classmethod
    def _numeric_or_none(cls, value):
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    @field_validator("conflicts", "ingredient_warnings", "ingredient_benefits", mode="before")
    @classmethod
    def _lists(cls, value):
        return _list_or_empty(value)

    @field_validator("morning_routine", "evening_routine", mode="before")
    @classmethod
    def _product_names(cls, value):
        return [str(item) for item in _list_or_empty(value)]

    @field_validator("summary", "profile_summary", mode="before")
    @classmethod
    def _text(cls, value):
        return _text_or_empty(value)


class ResearchResult(BaseModel):
    query: str
    response: str
    confidence: float = 0.5
    citations: List[str] = Field(default_factory=list)


# ========== API schemas ==========

class ProductInput(BaseModel):
    name: str = ""
    ingredient_list: str = ""
    usage_timing: str = "AM"


class RoutineRequest(BaseModel):
    user_id: str
    routine_name: Optional[str] = None
    products: List[ProductInput]


class AnalysisSummary(BaseModel):
    analysis_id: str
    routine_id: str
    safety_score: float
    risk_score: float
    summary_score: str
    conflicts_found: int
    ingredients_analyzed: int


class ProfileRequest(BaseModel):
    skin_type: SkinType = "normal"
    sensitivities: List[str] = Field(default_factory=list)
    goals: List[str] = Field(default_factory=list)


class ResearchRequest(BaseModel):
    ingredient_a: str
    ingredient_b: str
    skin_type: Optional[str] = None
    sensitivities: List[str] = Field(default_factory=list)


class AdminRequest(BaseModel):
    password: str


class EnrichPropertiesRequest(AdminRequest):
    limit: Optional[int] = Field(default=None, ge=1)


class SeedResearchRequest(AdminRequest):
    pairs: Optional[List[Tuple[str, str]]] = None


class SummaryRequest(BaseModel):
    summary: str = Field(min_length=1)
