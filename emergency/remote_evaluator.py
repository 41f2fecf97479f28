"""Emergency access evaluator that defers to the backend's AI-backed endpoint."""

import logging
from typing import Optional

import config
from core.exceptions import BackendError, EvaluatorUnavailableError
from emergency.base import Evaluation
from tracking.sites import TrackedSite

logger = logging.getLogger(__name__)


class RemoteEvaluator:
    """Sends the request to POST /emergency-access and maps the answer to an Evaluation."""

    name = config.EVALUATOR_REMOTE

    def __init__(self, client) -> None:
        """
        Args:
            client: DetoxBackendClient (or anything with request_emergency_access()).
        """
        self._client = client

    def evaluate(self, reason: str, site: TrackedSite, identity: Optional[str] = None) -> Evaluation:
        """
        Raises:
            EvaluatorUnavailableError: If the backend could not be reached or
                answered with something unusable.
        """
        try:
            result = self._client.request_emergency_access(identity, site, reason)
        except BackendError as e:
            raise EvaluatorUnavailableError(str(e)) from e

        if result["approved"]:
            duration = result.get("duration_minutes") or config.EMERGENCY_GRANT_MINUTES
            logger.info(f"Remote evaluator approved {site.value} for {duration} min")
            return Evaluation(
                granted=True,
                message=result.get("message") or f"Emergency access granted for {duration} minutes.",
                duration_minutes=duration,
            )

        logger.info(f"Remote evaluator denied {site.value}")
        return Evaluation(
            granted=False,
            message=result.get("message") or "Your reason was not sufficient for emergency access.",
            error_type="insufficient_justification",
        )
