import re
from typing import List

from .errors import RoutineValidationError

_SEPARATORS = re.compile(r"[,;\n]+")
_PARENTHETICAL = re.compile(r"\s*\([^)]*\)")

ACTIVE_KEYWORDS = ["acid", "retinol", "peptide", "vitamin", "niacinamide", "salicylic", "glycolic", "lactic"]
PRESERVATIVE_KEYWORDS = ["paraben", "phenoxyethanol", "preservative"]
FRAGRANCE_KEYWORDS = ["fragrance", "parfum", "aroma"]

SEVERITY_ALIASES = {
    "low": "low",
    "mild": "low",
    "minor": "low",
    "medium": "medium",
    "moderate": "medium",
    "high": "high",
    "severe": "high",
    "critical": "critical",
}

USAGE_TIMES = {"am": "AM", "pm": "PM", "both": "both", "alternate": "alternate", "weekly": "weekly"}


def parse_ingredient_list(raw_text: str) -> List[str]:
    """Split a raw INCI list into ingredient names, dropping parenthetical aliases.

    "Aqua (Water), Glycerin" -> ["Aqua", "Glycerin"]. Order and duplicates are kept.
    """
    if not raw_text or not isinstance(raw_text, str):
        return []

    names = []
    for token in _SEPARATORS.split(raw_text):
        token = token.strip()
        if not token:
            continue
        token = _PARENTHETICAL.sub("", token).strip()
        if token:
            names.append(token)
    return names


def normalize_usage_time(value: str) -> str:
    """Map user-facing timing ("AM", "PM", "Both", ...) onto the stored vocabulary."""
    key = (value or "").strip().lower()
    if key not in USAGE_TIMES:
        raise RoutineValidationError(f"Invalid usage time: {value}")
    return USAGE_TIMES[key]


def categorize_ingredient(name: str) -> str:
    name_lower = name.lower()
    if any(keyword in name_lower for keyword in ACTIVE_KEYWORDS):
        return "active"
    if any(keyword in name_lower for keyword in PRESERVATIVE_KEYWORDS):
        return "preservative"
    if any(keyword in name_lower for keyword in FRAGRANCE_KEYWORDS):
        return "fragrance"
    return "base"


def normalize_severity(value: str) -> str:
    """Collapse the mixed severity vocabulary into low / medium / high / critical."""
    key = (value or "").strip().lower()
    return SEVERITY_ALIASES.get(key, "medium")
