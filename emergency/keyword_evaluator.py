"""
Keyword-scored emergency access evaluator.

Deterministic and auditable: the same reason always gets the same score.
Used offline, and as the fallback when the remote evaluator is unreachable.

Scoring:
    +10 per keyword category present (once per category)
    +5  if the reason is longer than 50 characters
    +3  if it contains "need to"
    Granted at 13 or more, for 15 minutes.
"""

import logging
from typing import List, Optional, Tuple

import config
from emergency.base import Evaluation
from tracking.sites import TrackedSite

logger = logging.getLogger(__name__)


def score_reason(reason: str) -> Tuple[int, List[str]]:
    """
    Score a free-text justification.

    Returns:
        (score, matched category names in taxonomy order)
    """
    reason_lower = reason.lower()
    score = 0
    categories: List[str] = []

    for category, keywords in config.EMERGENCY_KEYWORDS.items():
        if any(keyword in reason_lower for keyword in keywords):
            score += config.EMERGENCY_CATEGORY_WEIGHT
            categories.append(category)

    if len(reason) > config.EMERGENCY_LENGTH_BONUS_MIN_CHARS:
        score += config.EMERGENCY_LENGTH_BONUS
    if config.EMERGENCY_PHRASE in reason_lower:
        score += config.EMERGENCY_PHRASE_BONUS

    return score, categories


class KeywordEvaluator:
    """Local evaluator backed by score_reason()."""

    name = config.EVALUATOR_LOCAL

    def evaluate(self, reason: str, site: TrackedSite, identity: Optional[str] = None) -> Evaluation:
        score, categories = score_reason(reason)
        threshold = config.EMERGENCY_SCORE_THRESHOLD

        if score >= threshold:
            logger.info(f"Keyword evaluator approved {site.value} (score {score}: {', '.join(categories)})")
            return Evaluation(
                granted=True,
                message=f"Access approved! Categories: {', '.join(categories)}",
                duration_minutes=config.EMERGENCY_GRANT_MINUTES,
                score=score,
                categories=categories,
            )

        logger.info(f"Keyword evaluator denied {site.value} (score {score}/{threshold})")
        return Evaluation(
            granted=False,
            message=f"Request denied. Not enough justification. (Score: {score}/{threshold})",
            score=score,
            categories=categories,
            error_type="insufficient_justification",
        )
