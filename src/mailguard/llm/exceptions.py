"""
Custom exceptions for the inference engine layer.

These exceptions give the worker proxy a typed error surface so it can
decide between retrying, degrading to an "unknown" result, or reporting
resource exhaustion. Engines that only raise untyped errors are mapped
through classify_engine_error(), which falls back to message matching.
"""


class EngineError(Exception):
    """
    Base exception for all inference engine errors.

    All engine-specific exceptions inherit from this to allow catching
    any engine-related error with a single except clause.
    """

    kind = "engine_error"
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ModelNotLoadedError(EngineError):
    """Raised when tokenize/complete is called before load() succeeded."""

    kind = "model_not_loaded"


class ContextOverflowError(EngineError):
    """
    Raised when the prompt does not fit the effective context window.

    Deterministic for a given prompt and window: never retried. The proxy
    converts it into an unknown_threat result.
    """

    kind = "context_overflow"


class OutputParseError(EngineError):
    """
    Raised when the constrained completion is not a valid analysis object.

    Retried once with identical parameters.
    """

    kind = "parse_failure"
    retryable = True


class InsufficientResourcesError(EngineError):
    """
    Raised by model sizing when no supported model fits in sampled memory.

    Carries the smallest model's requirement so the lifecycle manager can
    poll until it is met.
    """

    kind = "resource_insufficient"

    def __init__(self, required_memory_mb: int, available_memory_mb: int, details: dict | None = None):
        super().__init__(
            f"Insufficient memory: {required_memory_mb}MB required, {available_memory_mb}MB available",
            details={
                "required_memory_mb": required_memory_mb,
                "available_memory_mb": available_memory_mb,
                **(details or {}),
            },
        )
        self.required_memory_mb = required_memory_mb
        self.available_memory_mb = available_memory_mb


class EngineFailureError(EngineError):
    """
    Generic engine failure during load or completion.

    Retried once when raised by completion.
    """

    kind = "engine_failure"
    retryable = True


_OVERFLOW_MARKERS = ("context", "token", "overflow", "size")


def classify_engine_error(error: BaseException) -> EngineError:
    """
    Map an arbitrary engine exception onto the typed hierarchy.

    Typed errors pass through unchanged. Untyped errors whose message
    mentions the context window are treated as ContextOverflowError;
    everything else becomes EngineFailureError.
    """
    if isinstance(error, EngineError):
        return error

    text = str(error).lower()
    details = {"error_type": type(error).__name__, "error": str(error)}
    if any(marker in text for marker in _OVERFLOW_MARKERS):
        return ContextOverflowError(f"Context window exceeded: {error}", details=details)
    return EngineFailureError(f"Engine failure: {error}", details=details)
