"""Base protocol and shared result type for emergency access evaluators."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import config
from tracking.sites import TrackedSite


@dataclass(frozen=True)
class Evaluation:
    """Outcome of an emergency access request."""

    granted: bool
    message: str
    duration_minutes: int = 0
    score: Optional[int] = None
    categories: List[str] = field(default_factory=list)
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "granted": self.granted,
            "message": self.message,
            "duration": self.duration_minutes,
            "score": self.score,
            "categories": list(self.categories),
            "error_type": self.error_type,
        }


class EvaluatorProtocol(Protocol):
    """
    Protocol every evaluator implements.

    Implementations decide on a reason that has already passed the length
    precondition. They raise EvaluatorUnavailableError when they cannot
    decide at all (e.g. backend unreachable).
    """

    name: str

    def evaluate(self, reason: str, site: TrackedSite, identity: Optional[str] = None) -> Evaluation:
        ...


def reason_too_short(reason: Optional[str]) -> Optional[Evaluation]:
    """
    Check the length precondition shared by every evaluator.

    Returns:
        A denial if the reason is missing, not text, or shorter than
        MIN_REASON_LENGTH, otherwise None.
    """
    text = reason.strip() if isinstance(reason, str) else ""
    if len(text) >= config.MIN_REASON_LENGTH:
        return None
    return Evaluation(
        granted=False,
        message=f"Please provide a more detailed reason (at least {config.MIN_REASON_LENGTH} characters)",
        error_type="reason_too_short",
    )
