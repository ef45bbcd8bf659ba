class MatchingError(Exception):
    """Base class for matching engine errors."""


class MatchingConfigError(MatchingError, ValueError):
    """The matching model or engine settings are invalid. Raised before any pair is processed."""


class RuleEvaluationError(MatchingError):
    """A rule condition could not be evaluated for a pair."""


class EmbeddingProviderError(MatchingError):
    """The embedding provider failed or returned a malformed batch."""


class MatchingCancelledError(MatchingError):
    """The run was cancelled before completion; nothing should be persisted."""
