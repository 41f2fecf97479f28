"""Exception hierarchy for Digital Detox."""


class DetoxError(Exception):
    """Base exception for all Digital Detox errors."""


class BackendError(DetoxError):
    """A request to the remote backend failed (network, HTTP status or payload)."""


class EvaluatorUnavailableError(DetoxError):
    """The configured emergency access evaluator could not produce a decision."""
