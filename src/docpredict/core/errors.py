"""
Structured error types for docpredict.

Every error raised by the prediction pipeline carries enough metadata for the
orchestrator to decide whether to retry, and for operators to see what went
wrong in the structured logs.

Manifesto:
    - **Typed Error Hierarchy:** NotFound, transient, configuration and
      malformed-input failures are distinct types
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry document/prediction/model ids
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                     DocPredictError                              │
        │  (category, retryable, retry_after, context, cause)             │
        ├─────────────────────────────────────────────────────────────────┤
        │  NotFoundError            TransientError       ConfigError       │
        │  (NOT_FOUND)              (retryable=True)     (CONFIG)          │
        │       │                        │                   │             │
        │  DocumentNotFound       TransientPrediction   MissingConfig      │
        │  PredictionNotFound                           InvalidConfig      │
        │  ModelNotFound                                NoDefaultModel     │
        │                                                                  │
        │  ValidationError     SourceError      PipelineError              │
        │  (VALIDATION)        (SOURCE)         (PIPELINE)                 │
        │       │                  │                 │                     │
        │  MalformedInput     SourceNotFound    PredictionRunError         │
        │                     ParseError                                   │
        │                                                                  │
        │  EventBusError      DatabaseError                                │
        │  TopicNotFound                                                   │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = TransientPredictionError("Watson ML returned 503", retry_after=5)
    >>> error.retryable
    True
    >>> DocumentNotFoundError("abc").with_context(model="wht_v4").context.model
    'wht_v4'

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    NOT_FOUND = "NOT_FOUND"
    NETWORK = "NETWORK"
    PREDICTION = "PREDICTION"
    CONFIG = "CONFIG"
    VALIDATION = "VALIDATION"
    SOURCE = "SOURCE"
    PARSE = "PARSE"
    PIPELINE = "PIPELINE"
    EVENTS = "EVENTS"
    DATABASE = "DATABASE"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        document_id: Document being processed
        prediction_id: Prediction being read or corrected
        model: Model name or deployment id
        page: Page number of the row batch
        source_name: Name of the row source (usually a file path)
        url: URL that was being accessed
        http_status: HTTP status code if applicable
        metadata: Additional key-value pairs
    """

    document_id: str | None = None
    prediction_id: str | None = None
    model: str | None = None
    page: int | None = None

    source_name: str | None = None

    url: str | None = None
    http_status: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["document_id", "prediction_id", "model", "page",
                    "source_name", "url", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class DocPredictError(Exception):
    """
    Base exception for all docpredict errors.

    Subclasses set ``default_category`` and ``default_retryable`` so callers
    only pass what differs from the defaults.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> DocPredictError:
        """
        Add context to this error (fluent API).

        Usage:
            raise TransientPredictionError("Failed").with_context(
                document_id=document.id,
                page=3,
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# NOT FOUND ERRORS (surfaced, never retried)
# =============================================================================


class NotFoundError(DocPredictError):
    """A document, prediction, model or correction target is missing."""

    default_category = ErrorCategory.NOT_FOUND
    default_retryable = False


class DocumentNotFoundError(NotFoundError):
    """Document not found."""

    def __init__(self, document_id: str, **kwargs: Any):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}", **kwargs)
        self.context.document_id = document_id


class PredictionNotFoundError(NotFoundError):
    """Prediction not found."""

    def __init__(self, prediction_id: str, **kwargs: Any):
        self.prediction_id = prediction_id
        super().__init__(f"Prediction not found: {prediction_id}", **kwargs)
        self.context.prediction_id = prediction_id


class ModelNotFoundError(NotFoundError):
    """No model registered under the given name or deployment id."""

    def __init__(self, name: str, **kwargs: Any):
        self.model_name = name
        super().__init__(f"Model not found: {name}", **kwargs)
        self.context.model = name


# =============================================================================
# TRANSIENT ERRORS (retryable)
# =============================================================================


class TransientError(DocPredictError):
    """
    Temporary error that may succeed on retry.

    Use when the same call, repeated after a delay, has a reasonable chance
    of succeeding.
    """

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class TransientPredictionError(TransientError):
    """A page-level prediction call failed as a unit."""

    default_category = ErrorCategory.PREDICTION


# =============================================================================
# CONFIGURATION ERRORS (fatal)
# =============================================================================


class ConfigError(DocPredictError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class MissingConfigError(ConfigError):
    """Required configuration is missing."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"Missing required configuration: {key}")


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}")


class NoDefaultModelError(ConfigError):
    """No default model is configured in the model registry."""

    def __init__(self, message: str = "No default AI model found"):
        super().__init__(message)


# =============================================================================
# VALIDATION / SOURCE ERRORS
# =============================================================================


class ValidationError(DocPredictError):
    """
    Data validation error.

    Never retryable - data must be fixed.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False


class MalformedInputError(ValidationError):
    """An input row cannot be used (e.g. unknown prediction-result id)."""


class SourceError(DocPredictError):
    """Error reading rows from a source document."""

    default_category = ErrorCategory.SOURCE
    default_retryable = False


class SourceNotFoundError(SourceError):
    """Source file not found."""


class ParseError(SourceError):
    """Error parsing source data."""

    default_category = ErrorCategory.PARSE


# =============================================================================
# PIPELINE / EVENTS / STORAGE
# =============================================================================


class PipelineError(DocPredictError):
    """Prediction run failure."""

    default_category = ErrorCategory.PIPELINE
    default_retryable = False


class PredictionRunError(PipelineError):
    """A run was aborted because a page exhausted its retry budget."""


class EventBusError(DocPredictError):
    """Event bus misuse (unknown or closed topic)."""

    default_category = ErrorCategory.EVENTS
    default_retryable = False


class TopicNotFoundError(EventBusError):
    """Topic does not exist and auto-creation is disabled."""

    def __init__(self, topic: str):
        self.topic = topic
        super().__init__(f"Topic not found: {topic}")


class DatabaseError(DocPredictError):
    """Database query or transaction error."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, DocPredictError):
        return error.retryable
    retryable_types = (
        ConnectionError,
        TimeoutError,
        OSError,
    )
    return isinstance(error, retryable_types)


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, DocPredictError):
        return error.category
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.NETWORK
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    if isinstance(error, KeyError):
        return ErrorCategory.CONFIG
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "DocPredictError",
    # Not found
    "NotFoundError",
    "DocumentNotFoundError",
    "PredictionNotFoundError",
    "ModelNotFoundError",
    # Transient
    "TransientError",
    "TransientPredictionError",
    # Config
    "ConfigError",
    "MissingConfigError",
    "InvalidConfigError",
    "NoDefaultModelError",
    # Validation / source
    "ValidationError",
    "MalformedInputError",
    "SourceError",
    "SourceNotFoundError",
    "ParseError",
    # Pipeline / events / storage
    "PipelineError",
    "PredictionRunError",
    "EventBusError",
    "TopicNotFoundError",
    "DatabaseError",
    # Utilities
    "is_retryable",
    "categorize_error",
]
