"""Custom exceptions for the trade candle pipeline.

Every error the pipeline raises on purpose lives here so that the data,
source and web layers can share them without circular imports.
"""


class PipelineError(Exception):
    """Base exception for all pipeline errors."""


class TransportError(PipelineError):
    """Raised on a non-2xx status or network failure talking to the node API."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class InvalidResponseError(PipelineError):
    """Raised when a response body fails schema validation at the boundary."""


class FetchInProgressError(PipelineError):
    """Raised when a fetch is requested for a pair that already has one running."""

    def __init__(self, pair: str) -> None:
        super().__init__(f"A fetch is already running for {pair}")
        self.pair = pair


class CacheNotLoadedError(PipelineError):
    """Raised when the trade store is written before its cache load completed."""
