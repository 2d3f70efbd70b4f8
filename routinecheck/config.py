import logging
import os

from dotenv import load_dotenv

load_dotenv()

# Advisory model
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_PRIMARY_MODEL = os.getenv("GEMINI_PRIMARY_MODEL", "gemini-2.0-flash-exp")
GEMINI_FALLBACK_MODEL = os.getenv("GEMINI_FALLBACK_MODEL", "gemini-1.5-flash")
ANALYSIS_MAX_TOKENS = int(os.getenv("ANALYSIS_MAX_TOKENS", "4000"))
RESEARCH_MAX_TOKENS = int(os.getenv("RESEARCH_MAX_TOKENS", "2000"))

# Research cache / learning loop
RESEARCH_CACHE_TTL_DAYS = int(os.getenv("RESEARCH_CACHE_TTL_DAYS", "30"))
LEARNED_CONFLICT_CONFIDENCE = float(os.getenv("LEARNED_CONFLICT_CONFIDENCE", "0.85"))

# Ingredient matching
FUZZY_MATCH_THRESHOLD = float(os.getenv("FUZZY_MATCH_THRESHOLD", "90"))
INGREDIENT_SEARCH_LIMIT = int(os.getenv("INGREDIENT_SEARCH_LIMIT", "5"))
USE_VECTOR_SEARCH = os.getenv("USE_VECTOR_SEARCH", "0") == "1"
VECTOR_MAX_DISTANCE = float(os.getenv("VECTOR_MAX_DISTANCE", "0.15"))
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "all-MiniLM-L6-v2")

# API
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")
ANALYSIS_HISTORY_LIMIT = int(os.getenv("ANALYSIS_HISTORY_LIMIT", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(level: str = None):
    """Configure root logging for the API process."""
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
