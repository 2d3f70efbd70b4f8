import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .analyzer import RoutineAnalyzer
from .errors import AdvisoryUnavailableError, AnalysisFailedError, RoutineValidationError
from .gemini_client import GeminiClient
from .models import (
    AdminRequest,
    AnalysisSummary,
    EnrichPropertiesRequest,
    ProfileRequest,
    ResearchRequest,
    RoutineRequest,
    SeedResearchRequest,
    SummaryRequest,
)
from .properties import PropertyEnricher
from .research_cache import PairResearcher
from .seed import seed_all
from .simple_database import SimpleDatabase

config.configure_logging()
logger = logging.getLogger(__name__)


def build_database() -> SimpleDatabase:
    search_index = None
    if config.USE_VECTOR_SEARCH:
        from .database import IngredientSearchIndex

        search_index = IngredientSearchIndex()
        logger.info("Vector ingredient search enabled (%s)", config.EMBEDDING_MODEL)
    db = SimpleDatabase(search_index=search_index)
    seeded = seed_all(db)
    logger.info("Database ready: %d ingredients, %d compatibility rules",
                seeded["ingredients"]["total"], seeded["conflicts"]["added"])
    return db


app = FastAPI(
    title="Skincare Routine Conflict Analyzer",
    description="Detect ingredient conflicts across a skincare routine and score its safety",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

db = build_database()
analyzer = RoutineAnalyzer(db, GeminiClient())
researcher = PairResearcher(db, analyzer.research_cache, analyzer.advisory, analyzer.matcher)
enricher = PropertyEnricher(db, analyzer.advisory)


@app.get("/")
async def root():
    return {"message": "Skincare Routine Conflict Analyzer API"}


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "routinecheck"}


@app.post("/analyze_routine/", response_model=AnalysisSummary)
def analyze_routine(request: RoutineRequest):
    """
    Analyze a skincare routine for ingredient conflicts.

    - **user_id**: Owner of the routine
    - **routine_name**: Optional display name
    - **products**: name, ingredient_list and usage_timing (AM, PM or Both) per product

    Returns the safety score (0-10, higher is safer), letter grade and conflict count.
    """
    try:
        return analyzer.analyze_routine(request.user_id, request.products, request.routine_name)
    except RoutineValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AnalysisFailedError as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/analysis/{analysis_id}")
def get_analysis(analysis_id: str):
    results = analyzer.get_analysis_results(analysis_id)
    if results is None:
        raise HTTPException(status_code=404, detail="Analysis not found")
    return results


@app.get("/users/{user_id}/analyses")
def get_user_analyses(user_id: str):
    return {"analyses": analyzer.get_user_analyses(user_id)}


@app.get("/users/{user_id}/profile")
def get_profile(user_id: str):
    profile = analyzer.get_profile(user_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@app.put("/users/{user_id}/profile")
def save_profile(user_id: str, request: ProfileRequest):
    profile, is_new = analyzer.save_profile(user_id, request.skin_type, request.sensitivities, request.goals)
    return {"profile_id": profile.id, "is_new": is_new}


@app.post("/research/")
def research_pair(request: ResearchRequest):
    """Research the compatibility of two ingredients, served from cache when possible."""
    ingredient_a = analyzer.matcher.find(request.ingredient_a)
    ingredient_b = analyzer.matcher.find(request.ingredient_b)
    if not ingredient_a or not ingredient_b:
        raise HTTPException(status_code=404, detail="Ingredients not found")

    user_context = None
    if request.skin_type:
        user_context = {"skin_type": request.skin_type, "sensitivities": request.sensitivities}
    try:
        return researcher.research_ingredient_pair(ingredient_a.id, ingredient_b.id, user_context)
    except AdvisoryUnavailableError as e:
        raise HTTPException(status_code=503, detail=f"Research unavailable: {str(e)}")


@app.get("/users/{user_id}/routines")
def get_user_routines(user_id: str):
    return {"routines": analyzer.get_user_routines(user_id)}


@app.get("/routines/{routine_id}")
def get_routine(routine_id: str):
    routine = analyzer.get_routine(routine_id)
    if routine is None:
        raise HTTPException(status_code=404, detail="Routine not found")
    return routine


@app.delete("/routines/{routine_id}")
def delete_routine(routine_id: str):
    try:
        deleted = analyzer.delete_routine(routine_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "deleted": deleted}


@app.post("/analysis/{analysis_id}/summary")
def update_analysis_summary(analysis_id: str, request: SummaryRequest):
    try:
        analysis = analyzer.update_ai_summary(analysis_id, request.summary)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"analysis_id": analysis.id, "recommendations": analysis.recommendations}


@app.post("/analysis/{analysis_id}/enhance")
def enhance_analysis(analysis_id: str):
    """Prepend a one-line conflict summary to the stored recommendations."""
    try:
        summary = analyzer.enhance_with_summary(analysis_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"analysis_id": analysis_id, "summary": summary}


@app.get("/ingredients/{name}/conflicts")
def get_ingredient_conflicts(name: str):
    ingredient = analyzer.matcher.find(name)
    if ingredient is None:
        raise HTTPException(status_code=404, detail="Ingredient not found")
    return {"ingredient": ingredient, "conflicts": analyzer.knowledge_base.conflicts_for(ingredient.id)}


def check_admin_password(password: str):
    admin_password = config.ADMIN_PASSWORD

    if not admin_password:
        raise HTTPException(status_code=500, detail="Admin password not configured")

    if password != admin_password:
        raise HTTPException(status_code=401, detail="Invalid password")


@app.post("/clear_cache/")
async def clear_cache(request: AdminRequest):
    """Purge expired research cache entries. Requires admin password."""
    check_admin_password(request.password)
    result = analyzer.research_cache.purge_expired()
    return {"message": "Expired research cache cleared", **result}


@app.post("/research/seed/")
def seed_research(request: SeedResearchRequest):
    """Research and cache common ingredient pairs. Requires admin password."""
    check_admin_password(request.password)
    return researcher.seed_research_cache(request.pairs)


@app.post("/ingredients/properties/")
def populate_properties(request: EnrichPropertiesRequest):
    """Fill in default ingredient properties from the advisory model. Requires admin password."""
    check_admin_password(request.password)
    result = enricher.enrich_all(request.limit)
    logger.info("Property enrichment: %d of %d ingredients updated", result["enriched"], result["processed"])
    return result


@app.post("/ingredients/delete_all/")
def delete_all_ingredients(request: AdminRequest):
    """Remove every ingredient with its properties and compatibility rules. Requires admin password."""
    check_admin_password(request.password)
    deleted = db.delete_all_ingredients()
    logger.warning("Deleted all ingredients: %s", deleted)
    return {"message": "All ingredients deleted", **deleted}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
