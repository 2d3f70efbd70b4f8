import json
import logging
import re
from typing import Dict, List, Optional

import google.generativeai as genai
from pydantic import ValidationError

from . import config
from .errors import AdvisoryParseError, AdvisoryUnavailableError
from .models import ResearchResult, RoutineAdvice

logger = logging.getLogger(__name__)

_FENCE_START = re.compile(r"^```[a-zA-Z]*\s*")
_FENCE_END = re.compile(r"\s*```$")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

_NO_BRAND_ANSWERS = {"", "unknown", "none", "n/a", "null"}


def strip_code_fences(text: str) -> str:
    """Remove a leading ```json / ``` fence and a trailing ``` fence."""
    cleaned = (text or "").strip()
    cleaned = _FENCE_START.sub("", cleaned)
    cleaned = _FENCE_END.sub("", cleaned)
    return cleaned.strip()


def parse_json_response(text: str) -> Dict:
    """Parse a JSON object out of an advisory response, fenced or not."""
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        match = _JSON_OBJECT.search(cleaned)
        if not match:
            raise AdvisoryParseError("No JSON object found in advisory response", raw_text=text)
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise AdvisoryParseError(f"Invalid JSON in advisory response: {e}", raw_text=text) from e
    if not isinstance(data, dict):
        raise AdvisoryParseError("Advisory response is not a JSON object", raw_text=text)
    return data


class GeminiClient:
    def __init__(self, api_key: str = None, primary_model: str = None, fallback_model: str = None):
        self.api_key = api_key or config.GEMINI_API_KEY
        self.model_names = [
            primary_model or config.GEMINI_PRIMARY_MODEL,
            fallback_model or config.GEMINI_FALLBACK_MODEL,
        ]
        if self.api_key:
            genai.configure(api_key=self.api_key)
            self.models = [genai.GenerativeModel(name) for name in self.model_names]
        else:
            self.models = []

    def _generate(self, prompt: str, max_tokens: int) -> str:
        """Run one completion on the primary model, retrying once on the fallback model."""
        if not self.models:
            raise AdvisoryUnavailableError("Gemini API not configured")

        last_error = None
        for model in self.models:
            model_name = getattr(model, "model_name", "unknown")
            try:
                response = model.generate_content(
                    prompt,
                    generation_config={"max_output_tokens": max_tokens},
                )
                return response.text.strip()
            except Exception as e:
                logger.warning("Advisory model %s failed: %s", model_name, e)
                last_error = e
        raise AdvisoryUnavailableError(f"All advisory models failed: {last_error}") from last_error

    # ========== Routine analysis ==========

    def analyze_routine(self, user_profile: Dict, products: List[Dict]) -> RoutineAdvice:
        """Full routine analysis. Unparseable output raises AdvisoryParseError."""
        prompt = self._build_routine_prompt(user_profile, products)
        text = self._generate(prompt, config.ANALYSIS_MAX_TOKENS)
        logger.debug("Advisory routine response: %d characters", len(text))

        data = parse_json_response(text)
        try:
            return RoutineAdvice.model_validate(data)
        except ValidationError as e:
            raise AdvisoryParseError(f"Advisory response does not match the routine schema: {e}", raw_text=text) from e

    def _build_routine_prompt(self, user_profile: Dict, products: List[Dict]) -> str:
        sensitivities = ", ".join(user_profile.get("sensitivities") or []) or "None"
        goals = ", ".join(user_profile.get("goals") or []) or "None"
        product_lines = "\n".join(
            f"- {p['product_name']} (used: {p['usage_time']}): {', '.join(p['ingredients'])}"
            for p in products
        )
        return f"""
        You are a cosmetic chemist reviewing a user's skincare routine.

        **User profile:**
        Skin type: {user_profile.get('skin_type', 'normal')}
        Sensitivities: {sensitivities}
        Goals: {goals}

        **Products (usage time and ingredients):**
        {product_lines}

        Identify ingredient conflicts BETWEEN different products, ingredients that are a concern
        for this skin type, and the most beneficial ingredients.

        Respond with ONLY a JSON object of this shape:
        {{
          "overallRiskScore": number 0-10 (higher = riskier),
          "conflicts": [{{"ingredientA": "", "ingredientB": "", "productA": "", "productB": "",
                          "severity": "HIGH|MEDIUM|LOW", "conflictType": "", "explanation": "",
                          "recommendation": "", "isTemporalConflict": true}}],
          "ingredientWarnings": [{{"ingredient": "", "product": "", "concern": "",
                                   "recommendation": "", "severity": "HIGH|MEDIUM|LOW"}}],
          "ingredientBenefits": [{{"ingredient": "", "product": "", "benefit": ""}}],
          "morningRoutine": ["product names in order"],
          "eveningRoutine": ["product names in order"],
          "summary": "at most 50 words",
          "profileSummary": "300-500 word personalised summary"
        }}
        List exactly 3 ingredientBenefits.
        """

    # ========== Brand extraction ==========

    def extract_brand_name(self, product_name: str) -> Optional[str]:
        """Best guess at the brand in a free-text product name, or None."""
        prompt = f"""
        Extract the brand name from this skincare product name: "{product_name}"
        Respond with ONLY the brand name. If there is no recognisable brand, respond with "unknown".
        """
        text = self._generate(prompt, 50)
        brand = text.strip().strip("\"'`").strip()
        if brand.lower() in _NO_BRAND_ANSWERS:
            return None
        return brand

    # ========== Pairwise research ==========

    def research_ingredient_compatibility(self, ingredient_a: str, ingredient_b: str,
                                          user_context: Dict = None) -> ResearchResult:
        """Research one ingredient pair. Unparseable output degrades to a neutral-confidence result."""
        query = f"Research compatibility between {ingredient_a} and {ingredient_b}"
        context = ""
        if user_context:
            context = (
                f"The user has {user_context.get('skin_type', 'normal')} skin"
                f" with sensitivities: {', '.join(user_context.get('sensitivities') or []) or 'none'}."
            )
        prompt = f"""
        {query}. {context}

        Respond with ONLY a JSON object:
        {{
          "compatible": true or false,
          "severity": "low|medium|high|critical",
          "conflictType": "",
          "explanation": "",
          "recommendation": "",
          "confidence": number 0-1,
          "citations": ["source"],
          "researchSummary": ""
        }}
        """
        text = self._generate(prompt, config.RESEARCH_MAX_TOKENS)

        try:
            data = parse_json_response(text)
        except AdvisoryParseError:
            logger.warning("Research response for %s + %s was not JSON, keeping raw text", ingredient_a, ingredient_b)
            data = {
                "compatible": None,
                "explanation": text,
                "recommendation": "",
                "confidence": 0.5,
                "citations": [],
                "researchSummary": text,
            }

        try:
            confidence = min(1.0, max(0.0, float(data.get("confidence", 0.5))))
        except (TypeError, ValueError):
            confidence = 0.5
        citations = [str(c) for c in data.get("citations") or [] if c]

        return ResearchResult(
            query=query,
            response=json.dumps(data),
            confidence=confidence,
            citations=citations,
        )

    # ========== Ingredient properties ==========

    def extract_properties(self, inci_name: str, function: str, category: str) -> Dict:
        """Physicochemical properties for one ingredient as a raw dict."""
        prompt = f"""
        You are a skincare ingredient expert. Provide the properties of this ingredient.

        Ingredient: {inci_name}
        Function: {function}
        Category: {category}

        Respond with ONLY a JSON object:
        {{
          "phRangeMin": number or null,
          "phRangeMax": number or null,
          "irritancyScore": number 0-5,
          "comedogenicScore": number 0-5,
          "isHarmful": boolean
        }}
        Only give a pH range for ingredients with real pH requirements (acids, retinoids).
        """
        text = self._generate(prompt, 500)
        return parse_json_response(text)
