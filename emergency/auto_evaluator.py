"""Remote-first evaluator with an explicit fallback to the keyword heuristic."""

import logging
from typing import Optional

import config
from core.exceptions import EvaluatorUnavailableError
from emergency.base import Evaluation
from emergency.keyword_evaluator import KeywordEvaluator
from emergency.remote_evaluator import RemoteEvaluator
from tracking.sites import TrackedSite

logger = logging.getLogger(__name__)


class AutoEvaluator:
    """
    Policy for EMERGENCY_EVALUATOR=auto.

    Signed in: ask the backend, fall back to keywords if it is unreachable.
    Signed out: keywords only (the backend needs an identity).
    """

    name = config.EVALUATOR_AUTO

    def __init__(self, remote: RemoteEvaluator, local: Optional[KeywordEvaluator] = None) -> None:
        self.remote = remote
        self.local = local or KeywordEvaluator()

    def evaluate(self, reason: str, site: TrackedSite, identity: Optional[str] = None) -> Evaluation:
        if not identity:
            return self.local.evaluate(reason, site, identity)
        try:
            return self.remote.evaluate(reason, site, identity)
        except EvaluatorUnavailableError as e:
            logger.warning(f"Remote evaluator unavailable, using keyword evaluator: {e}")
            return self.local.evaluate(reason, site, identity)
