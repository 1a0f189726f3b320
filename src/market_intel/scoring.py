"""Keyword-based priority scoring for market news.

Two tiers of market-moving vocabulary. Each term contributes once no matter
how often it appears, and tiers stack: 2 high + 1 medium = 250.
"""

import re

HIGH_IMPACT_WEIGHT = 100
MEDIUM_IMPACT_WEIGHT = 50

HIGH_IMPACT_TERMS: tuple[str, ...] = (
    "fed",
    "interest rate",
    "fomc",
    "cpi",
    "nfp",
    "inflation",
    "powell",
    "central bank",
)

MEDIUM_IMPACT_TERMS: tuple[str, ...] = (
    "gdp",
    "unemployment",
    "pmi",
    "retail sales",
    "trade balance",
)

# FX pairs such as EUR/USD; matched against the original casing
MEDIUM_IMPACT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b[A-Z]{3}/[A-Z]{3}\b"),
)


def calculate_priority(text: str) -> int:
    """Score text by the market-moving terms it mentions.

    Substring search is case-insensitive for plain terms ("fed" also hits
    "Federal"); patterns run against the text as given.
    """
    lower_text = text.lower()
    score = 0

    for term in HIGH_IMPACT_TERMS:
        if term in lower_text:
            score += HIGH_IMPACT_WEIGHT

    for term in MEDIUM_IMPACT_TERMS:
        if term in lower_text:
            score += MEDIUM_IMPACT_WEIGHT

    for pattern in MEDIUM_IMPACT_PATTERNS:
        if pattern.search(text):
            score += MEDIUM_IMPACT_WEIGHT

    return score
