from datetime import datetime, timedelta, timezone

import pytest

from routinecheck.errors import AdvisoryUnavailableError
from routinecheck.models import ResearchResult, RoutineAdvice
from routinecheck.seed import seed_all
from routinecheck.simple_database import SimpleDatabase


class FrozenClock:
    def __init__(self, start=None):
        self.now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeAdvisory:
    """Stands in for GeminiClient. Unavailable unless given an advice payload."""

    def __init__(self, advice=None, brand=None, error=None, research=None, properties=None):
        self.advice = advice
        self.brand = brand
        self.error = error
        self.research = research
        self.properties = properties
        self.routine_calls = []
        self.research_calls = []
        self.brand_calls = []

    def analyze_routine(self, user_profile, products):
        self.routine_calls.append((user_profile, products))
        if self.error:
            raise self.error
        if self.advice is None:
            raise AdvisoryUnavailableError("Gemini API not configured")
        if isinstance(self.advice, dict):
            return RoutineAdvice.model_validate(self.advice)
        return self.advice

    def extract_brand_name(self, product_name):
        self.brand_calls.append(product_name)
        if self.brand is None:
            raise AdvisoryUnavailableError("Gemini API not configured")
        return self.brand

    def research_ingredient_compatibility(self, ingredient_a, ingredient_b, user_context=None):
        self.research_calls.append((ingredient_a, ingredient_b, user_context))
        if self.research is None:
            raise AdvisoryUnavailableError("Gemini API not configured")
        return ResearchResult(
            query=f"Research compatibility between {ingredient_a} and {ingredient_b}",
            response=self.research,
            confidence=0.9,
            citations=["PubMed"],
        )

    def extract_properties(self, inci_name, function, category):
        if self.properties is None:
            raise AdvisoryUnavailableError("Gemini API not configured")
        return dict(self.properties)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def db():
    return SimpleDatabase()


@pytest.fixture
def seeded_db(db):
    seed_all(db)
    return db


@pytest.fixture
def advisory():
    return FakeAdvisory()
