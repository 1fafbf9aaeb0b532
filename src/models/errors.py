# src/models/errors.py

"""Typed failures surfaced by the analysis pipeline."""


class AnalysisError(Exception):
    """Base class for every failure a pipeline run can report."""

    kind: str = "analysis_error"
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, object]:
        """Serialise the failure for CLI / API output."""
        return {
            "error": self.kind,
            "message": self.message,
            "retryable": self.retryable,
        }


class InvalidInput(AnalysisError):
    """The inbound URL was empty or not a URL at all."""

    kind = "invalid_input"


class UnsupportedSource(AnalysisError):
    """The URL does not belong to a recognised marketplace."""

    kind = "unsupported_source"


class FetchFailure(AnalysisError):
    """The page could not be retrieved (network, timeout, block, non-200)."""

    kind = "fetch_failure"
    retryable = True


class RateUnavailable(AnalysisError):
    """No exchange rate could be obtained and no stale one exists."""

    kind = "rate_unavailable"
    retryable = True
