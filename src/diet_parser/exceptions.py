"""Custom exceptions for diet_parser.

This module defines the error taxonomy of the recipe extraction pipeline.
Each exception carries a message plus keyword context that is rendered into
``str(error)``, so log lines show where a failure happened.

Severity is part of the contract:

- ``InvalidConfiguration`` is fatal and stops a whole run
- ``ExtractionParseFailure`` and ``ExtractionTransportFailure`` are per chunk;
  the chunk is skipped and processing continues
- ``PersistenceFailure`` is per recipe; the rest of the batch is still saved
- ``PdfProcessingError`` is per file; the next file is still processed

Example:
    >>> try:
    ...     raise ExtractionParseFailure("Response is not JSON", chunk=2)
    ... except DietParserError as e:
    ...     print(e)
    Response is not JSON (chunk=2)
"""


class DietParserError(Exception):
    """Base exception for all diet_parser errors.

    Attributes:
        message: Human-readable error description
        context: Additional context about where/when the error occurred
    """

    def __init__(self, message: str, **context: str | int | float | bool | None) -> None:
        """Initialize the exception with a message and optional context.

        Args:
            message: Human-readable error description
            **context: Additional context (e.g., file="plan.pdf", chunk=3)
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format error message with context."""
        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


class InvalidConfiguration(DietParserError):
    """Invalid settings or provider configuration.

    Fatal: raised before any file is touched, or when a run cannot start.

    Raised when:
    - max pages per chunk is not positive
    - a configuration file or environment value is invalid
    - no AI provider is configured, or more than one is active
    - a processor is asked to run while already running

    Example:
        >>> raise InvalidConfiguration(
        ...     "max_pages_per_chunk must be positive",
        ...     max_pages_per_chunk=0,
        ... )
    """

    pass


class PdfProcessingError(DietParserError):
    """Error while reading or rendering a PDF file.

    Raised when:
    - the file does not exist or is not a readable PDF
    - a page cannot be rendered to an image
    """

    pass


class ExtractionFailure(DietParserError):
    """Base class for per-chunk extraction failures."""

    pass


class ExtractionParseFailure(ExtractionFailure):
    """Provider response could not be turned into an ExtractionRecord.

    Raised when the response is not valid JSON, or does not match the
    ``{"recipes": [...]}`` schema, even after salvage (code fences and
    surrounding prose removed).

    Example:
        >>> raise ExtractionParseFailure(
        ...     "Response is not valid JSON",
        ...     chunk=3,
        ...     preview="Sure! Here are the recipes",
        ... )
    """

    pass


class ExtractionTransportFailure(ExtractionFailure):
    """Provider call failed on every attempt.

    Raised after the retry budget is exhausted on timeouts, connection
    errors, 5xx responses or rate-limit signals.
    """

    pass


class PersistenceFailure(DietParserError):
    """Error writing to the recipe store or processing ledger.

    Example:
        >>> raise PersistenceFailure(
        ...     "Could not insert recipe",
        ...     recipe="Owsianka z jabłkiem",
        ...     error="database is locked",
        ... )
    """

    pass


class RetryableError(DietParserError):
    """Transient provider failure that might succeed if retried.

    Provider capabilities translate SDK-specific timeouts, connection
    errors, 5xx responses and rate limits into this exception so the
    extraction adapter can retry without knowing which SDK is in use.

    Attributes:
        attempt: Attempt number (1-indexed) that failed, filled in by ``with_retry``
        max_attempts: Maximum number of attempts allowed
    """

    def __init__(
        self,
        message: str,
        attempt: int = 1,
        max_attempts: int = 3,
        **context: str | int | float | bool | None,
    ) -> None:
        """Initialize retryable error with retry metadata.

        Args:
            message: Human-readable error description
            attempt: Current attempt number (1-indexed)
            max_attempts: Maximum number of attempts allowed
            **context: Additional context
        """
        super().__init__(message, **context)
        self.attempt = attempt
        self.max_attempts = max_attempts

    @property
    def should_retry(self) -> bool:
        """Check if another retry attempt should be made."""
        return self.attempt < self.max_attempts

    def __str__(self) -> str:
        """Format error with retry information."""
        base = super().__str__()
        return f"{base} [attempt {self.attempt}/{self.max_attempts}]"


class MealPlanError(DietParserError):
    """Invalid meal-plan request.

    Raised when:
    - a plan would have fewer than 1 or more than 31 days
    - a plan, day, entry, person or recipe id does not exist
    - a plan has no entries to build a shopping list from
    - a person is invalid: blank or duplicate name, calorie target outside
      1000-5000, or more than 5 persons on one plan
    - an entry is scaled on a plan without persons
    """

    pass
