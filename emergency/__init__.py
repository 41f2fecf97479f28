"""
Emergency access evaluation with replaceable strategies.

Supports a local keyword heuristic, the backend's evaluator, and a
remote-first policy with local fallback, selected via factory.
"""

import logging
from typing import TYPE_CHECKING, Optional

import config

if TYPE_CHECKING:
    from emergency.base import EvaluatorProtocol

logger = logging.getLogger(__name__)


def create_evaluator(mode: Optional[str] = None, client=None) -> "EvaluatorProtocol":
    """
    Create an emergency access evaluator.

    Uses EMERGENCY_EVALUATOR from config unless a mode is given.
    Supported modes: "local" (default), "remote", "auto"

    Args:
        mode: Evaluator mode override.
        client: DetoxBackendClient, required for "remote" and "auto".

    Returns:
        EvaluatorProtocol: The evaluator for the mode.
    """
    mode = (mode or config.EMERGENCY_EVALUATOR).lower()

    if mode in (config.EVALUATOR_REMOTE, config.EVALUATOR_AUTO) and client is None:
        from emergency.keyword_evaluator import KeywordEvaluator
        logger.warning(f"Evaluator mode '{mode}' needs a backend client, using keyword evaluator")
        return KeywordEvaluator()

    if mode == config.EVALUATOR_REMOTE:
        from emergency.remote_evaluator import RemoteEvaluator
        logger.info("Using remote emergency evaluator")
        return RemoteEvaluator(client)
    elif mode == config.EVALUATOR_AUTO:
        from emergency.auto_evaluator import AutoEvaluator
        from emergency.remote_evaluator import RemoteEvaluator
        logger.info("Using remote emergency evaluator with keyword fallback")
        return AutoEvaluator(RemoteEvaluator(client))
    elif mode == config.EVALUATOR_LOCAL:
        from emergency.keyword_evaluator import KeywordEvaluator
        logger.info("Using keyword emergency evaluator")
        return KeywordEvaluator()
    else:
        from emergency.keyword_evaluator import KeywordEvaluator
        logger.warning(f"Unknown evaluator mode '{mode}', defaulting to keyword evaluator. "
                       f"Supported modes: 'local', 'remote', 'auto'")
        return KeywordEvaluator()
