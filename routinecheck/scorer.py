from typing import Iterable, NamedTuple, Optional

# Anything outside this table (low, critical, unknown) deducts the minimum.
SEVERITY_DEDUCTIONS = {
    "high": 3.0,
    "severe": 3.0,
    "medium": 1.5,
    "moderate": 1.5,
}
MINIMUM_DEDUCTION = 0.5


class SafetyScore(NamedTuple):
    safety_score: float
    risk_score: float
    risk_tier: str
    grade: str


def clamp(value: float, low: float = 0.0, high: float = 10.0) -> float:
    return max(low, min(high, value))


def risk_tier(safety: float) -> str:
    if safety >= 7:
        return "safe"
    if safety >= 4:
        return "caution"
    return "high_risk"


def letter_grade(safety: float) -> str:
    if safety >= 9:
        return "A+"
    if safety >= 8:
        return "A"
    if safety >= 7:
        return "B+"
    if safety >= 6:
        return "B"
    if safety >= 5:
        return "C"
    return "D"


def severity_deduction(severity: str) -> float:
    return SEVERITY_DEDUCTIONS.get((severity or "").strip().lower(), MINIMUM_DEDUCTION)


def score_routine(advisory_risk: Optional[float] = None, severities: Iterable[str] = ()) -> SafetyScore:
    """Safety (higher is better) and risk (higher is worse) on a 0-10 scale.

    An advisory risk score, when present, wins; otherwise every conflict severity
    is deducted from a perfect 10.
    """
    if advisory_risk is not None:
        safety = 10 - advisory_risk
        risk = advisory_risk
    else:
        safety = 10.0
        for severity in severities:
            safety -= severity_deduction(severity)
        risk = 10 - safety

    safety = clamp(safety)
    risk = clamp(risk)
    return SafetyScore(safety, risk, risk_tier(safety), letter_grade(safety))
