"""
Exception hierarchy for the binlog relay.

Every error the relay raises on purpose is a PipelineError carrying an
ErrorCategory. The category is what the rest of the code looks at:

    TRANSIENT  connection loss, store write failures, deadlines
               -> reconnect, or nack the delivery with requeue
    PERMANENT  unparseable bodies, failed shutdown, double resolution
               -> never retried in-process
    UNKNOWN    anything classify_exception cannot place
               -> treated as retryable
"""

# Shared with core.types so category comparisons work across modules
from core.types import ErrorCategory

RETRYABLE_CATEGORIES = (ErrorCategory.TRANSIENT, ErrorCategory.UNKNOWN)


class PipelineError(Exception):
    """
    Base relay error.

    Attributes:
        message: What failed
        category: Retry classification, fixed per subclass
        cause: Driver or library exception that triggered this one
        context: Extra fields merged into the error log line
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, message: str, cause: Exception | None = None, context: dict | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.context = dict(context) if context else {}

    @property
    def is_retryable(self) -> bool:
        return self.category in RETRYABLE_CATEGORIES

    def __str__(self) -> str:
        if self.cause is None:
            return self.message
        return f"{self.message} | Caused by: {self.cause}"


class TransientError(PipelineError):
    category = ErrorCategory.TRANSIENT


class PermanentError(PipelineError):
    category = ErrorCategory.PERMANENT


# Transient


class ConnectionError(TransientError):
    """A broker or store connection could not be established or was lost."""


class BrokerConnectionError(ConnectionError):
    """AMQP connection, channel or topology declaration failed."""


class StoreConnectionError(ConnectionError):
    """MongoDB client creation or the validation ping failed."""


class TimeoutError(TransientError):
    """An operation ran past its deadline."""


class PersistError(TransientError):
    """The store rejected an insert, failed it, or did not finish in time."""


# Permanent


class ParseError(PermanentError):
    """A message body is not valid JSON or not a JSON object."""


class ShutdownError(PermanentError):
    """A connection failed to close during graceful shutdown."""


class MessageAlreadyResolvedError(PermanentError):
    """A delivery was resolved a second time (ack, nack or reject)."""


# Fallback classification for exceptions raised outside the hierarchy

# Matched against str(exc) for errors that never reach classify_exception
TRANSIENT_ERROR_MARKERS = (
    "timeout",
    "timed out",
    "connection",
    "temporarily unavailable",
    "not primary",
    "server selection",
    "broken pipe",
)

# Bodies that failed to decode once fail the same way on every redelivery
_PERMANENT_TYPE_NAMES = ("jsondecodeerror", "unicodedecodeerror")

_NETWORK_MARKERS = (
    "connectionerror",
    "connection refused",
    "connection reset",
    "connection aborted",
    "no route to host",
    "network unreachable",
    "name resolution",
    "socket",
    "broken pipe",
    "timeout",
)


def classify_exception(exc: Exception) -> ErrorCategory:
    """Place an arbitrary exception into an ErrorCategory."""
    if isinstance(exc, PipelineError):
        return exc.category

    type_name = type(exc).__name__.lower()
    if type_name in _PERMANENT_TYPE_NAMES:
        return ErrorCategory.PERMANENT

    text = str(exc).lower()
    if isinstance(exc, OSError) or any(
        marker in type_name or marker in text for marker in _NETWORK_MARKERS
    ):
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def is_transient_error(exc: Exception) -> bool:
    """True for transient PipelineErrors, or any error whose message looks like a network failure."""
    if isinstance(exc, PipelineError):
        return exc.category == ErrorCategory.TRANSIENT
    text = str(exc).lower()
    return any(marker in text for marker in TRANSIENT_ERROR_MARKERS)


def is_retryable_error(exc: Exception) -> bool:
    """Transient and unclassifiable errors are retried; permanent ones are not."""
    if isinstance(exc, PipelineError):
        return exc.is_retryable
    return classify_exception(exc) in RETRYABLE_CATEGORIES


def wrap_exception(
    exc: Exception,
    default_class: type[PipelineError] = PipelineError,
    context: dict | None = None,
) -> PipelineError:
    """
    Convert any exception into a PipelineError.

    PipelineErrors are returned as-is with `context` merged in. Otherwise
    `default_class` is used when its category agrees with the classified
    one, and TransientError / PermanentError when it does not. Unknown
    errors always take `default_class`.
    """
    if isinstance(exc, PipelineError):
        exc.context.update(context or {})
        return exc

    context = dict(context or {})
    context.setdefault("error_type", type(exc).__name__)

    category = classify_exception(exc)
    error_class = default_class
    if category == ErrorCategory.TRANSIENT and not issubclass(default_class, TransientError):
        error_class = TransientError
    elif category == ErrorCategory.PERMANENT and not issubclass(default_class, PermanentError):
        error_class = PermanentError

    return error_class(str(exc), cause=exc, context=context)
