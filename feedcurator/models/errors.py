from __future__ import annotations


class PipelineError(Exception):
    """Base class for every error raised by the content pipeline."""


class ValidationError(PipelineError, ValueError):
    """A domain value was malformed at construction time."""


class OracleFailure(PipelineError):
    """An oracle raised or returned nothing usable for a single item."""


class FetchFailure(PipelineError):
    """The work for a stage (a batch, a candidate set) could not be retrieved."""


class PersistenceFailure(PipelineError):
    """A write to the store failed."""
