"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the indexer.

- Provides clear exception hierarchy
- Enables specific error handling
- Separates non-fatal anomalies from batch-halting failures
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
IndexerException (base)
├── ConfigurationError
│   └── InvalidConfigError
├── DataIntegrityError
├── PricingError
│   ├── PriceFetchError
│   ├── PriceRateLimitError
│   └── PriceParseError
├── DeliveryError
├── PersistenceError
└── BlockStreamError
    ├── BlockSourceError
    └── BlockOrderError

============================================================
HANDLING POLICY
============================================================
- DataIntegrityError: logged at WARNING, event skipped/clamped
- PricingError: logged at ERROR, value degrades to zero
- DeliveryError: logged at ERROR, batch stays buffered
- PersistenceError / BlockStreamError: fatal, halt processor

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for alerting."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, may impact output accuracy."""

    CRITICAL = "critical"
    """Critical issue, processing must stop."""


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Error can be recovered from automatically."""

    TRANSIENT = "transient"
    """Temporary error, retry may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class IndexerException(Exception):
    """
    Base exception for all indexer errors.

    All exceptions carry:
    - severity: for alerting
    - context: for debugging
    - recoverable: for error handling decisions
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_recoverable: bool = True
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.recoverable = recoverable if recoverable is not None else self.default_recoverable
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def is_recoverable(self) -> bool:
        """Check if error is recoverable."""
        return self.classification in (
            ErrorClassification.RECOVERABLE,
            ErrorClassification.TRANSIENT,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def __str__(self) -> str:
        if not self.context:
            return self.message
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({ctx_str})"


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(IndexerException):
    """Error in configuration."""

    default_severity = Severity.HIGH
    default_recoverable = False
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]

        super().__init__(message, context=context, **kwargs)


class InvalidConfigError(ConfigurationError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid configuration for {key}: {reason}",
            config_key=key,
            actual_value=value,
            context={"reason": reason},
        )


# ============================================================
# DATA INTEGRITY
# ============================================================

class DataIntegrityError(IndexerException):
    """
    Malformed or inconsistent upstream data.

    Never fatal: the offending event is clamped or skipped and
    processing continues.
    """

    default_severity = Severity.MEDIUM
    default_recoverable = True
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        asset_id: Optional[str] = None,
        user_id: Optional[str] = None,
        height: Optional[int] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if asset_id:
            context["asset_id"] = asset_id
        if user_id:
            context["user_id"] = user_id
        if height is not None:
            context["height"] = height

        super().__init__(message, context=context, **kwargs)


# ============================================================
# PRICING ERRORS
# ============================================================

class PricingError(IndexerException):
    """Base class for historical price lookup failures."""

    default_severity = Severity.HIGH
    default_recoverable = True
    default_classification = ErrorClassification.TRANSIENT

    def __init__(
        self,
        message: str,
        price_feed_id: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if price_feed_id:
            context["price_feed_id"] = price_feed_id
        super().__init__(message, context=context, **kwargs)
        self.price_feed_id = price_feed_id


class PriceFetchError(PricingError):
    """Network or HTTP failure talking to the price source."""

    def __init__(
        self,
        message: str,
        price_feed_id: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if status_code is not None:
            context["status_code"] = status_code
        super().__init__(message, price_feed_id=price_feed_id, context=context, **kwargs)
        self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        """4xx responses (other than 429) are not worth retrying."""
        return self.status_code is not None and 400 <= self.status_code < 500


class PriceRateLimitError(PricingError):
    """Price source answered 429."""

    def __init__(
        self,
        message: str,
        price_feed_id: Optional[str] = None,
        retry_after_seconds: Optional[float] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if retry_after_seconds is not None:
            context["retry_after_seconds"] = retry_after_seconds
        super().__init__(message, price_feed_id=price_feed_id, context=context, **kwargs)
        self.retry_after_seconds = retry_after_seconds


class PriceParseError(PricingError):
    """Price source returned a body we could not interpret."""

    default_classification = ErrorClassification.NON_RECOVERABLE


# ============================================================
# DELIVERY ERRORS
# ============================================================

class DeliveryError(IndexerException):
    """Failed to hand a batch to the downstream collector."""

    default_severity = Severity.HIGH
    default_recoverable = True
    default_classification = ErrorClassification.TRANSIENT

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        batch_size: Optional[int] = None,
        delivered_count: int = 0,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if status_code is not None:
            context["status_code"] = status_code
        if batch_size is not None:
            context["batch_size"] = batch_size
        if delivered_count:
            context["delivered_count"] = delivered_count
        super().__init__(message, context=context, **kwargs)
        self.status_code = status_code
        # Leading records of the batch that did reach the collector
        self.delivered_count = delivered_count

    @property
    def is_retryable(self) -> bool:
        """Network errors, 429 and 5xx are retried; other 4xx are not."""
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


# ============================================================
# PERSISTENCE ERRORS
# ============================================================

class PersistenceError(IndexerException):
    """
    State snapshot could not be persisted or restored.

    Raised only once the store is considered unrecoverable;
    single write failures are logged by the caller.
    """

    default_severity = Severity.CRITICAL
    default_recoverable = False
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        protocol_key: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if protocol_key:
            context["protocol_key"] = protocol_key
        super().__init__(message, context=context, **kwargs)


# ============================================================
# BLOCK STREAM ERRORS
# ============================================================

class BlockStreamError(IndexerException):
    """Base class for upstream block stream failures (always fatal)."""

    default_severity = Severity.CRITICAL
    default_recoverable = False
    default_classification = ErrorClassification.NON_RECOVERABLE


class BlockSourceError(BlockStreamError):
    """Upstream source is unavailable or produced an unreadable block."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        line: Optional[int] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if source:
            context["source"] = source
        if line is not None:
            context["line"] = line
        super().__init__(message, context=context, **kwargs)


class BlockOrderError(BlockStreamError):
    """Block arrived out of ascending height order."""

    def __init__(self, height: int, last_height: int):
        super().__init__(
            message=f"Block {height} received after block {last_height}",
            context={"height": height, "last_height": last_height},
        )
        self.height = height
        self.last_height = last_height
