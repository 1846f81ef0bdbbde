"""Error taxonomy for the ingestion pipeline.

Errors raised before the event stream opens (``AuthError``, ``InputError``)
are answered with a synchronous JSON response. Everything else is reported
in-band as a single ``error`` event, after which the stream is closed.
None of these errors is retried internally.
"""


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    kind = "pipeline"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class AuthError(PipelineError):
    """Missing or invalid bearer credential."""

    kind = "auth"


class InputError(PipelineError):
    """Missing file or identifier, oversized upload, or empty source set."""

    kind = "input"


class AcquisitionError(PipelineError):
    """Document decode failure or non-success from a remote profile provider."""

    kind = "acquisition"


class ExtractionError(PipelineError):
    """The transformation service call failed."""

    kind = "extraction"


class ParseError(PipelineError):
    """Model output is not valid structured data or fails the schema check."""

    kind = "parse"


class PersistenceError(PipelineError):
    """A write to the persistent store failed."""

    kind = "persistence"
