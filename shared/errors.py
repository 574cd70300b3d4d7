"""
Error types shared by the analysis pipeline.

Recoverable errors (a store window that failed, a batch that could not be
parsed, a transient inference failure) are absorbed by the component that
sees them. Subclasses of ``FatalAnalysisError`` abort the whole job and their
message is surfaced verbatim in the job's progress.
"""


class AnalysisError(Exception):
    """Base class for pipeline errors."""


class InvalidAnalysisRequestError(AnalysisError, ValueError):
    """Raised when a job request violates the input contract."""


class FatalAnalysisError(AnalysisError):
    """Raised when a job cannot continue at all."""


class NoSessionsFoundError(FatalAnalysisError):
    """Raised when sampling finds no qualifying sessions in any window."""


class TranscriptStoreError(AnalysisError):
    """Raised when the transcript store cannot serve a request."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class StoreAuthenticationError(TranscriptStoreError, FatalAnalysisError):
    """Raised when the transcript store rejects the supplied credentials."""


class InferenceError(AnalysisError):
    """Raised when the inference provider fails a request."""


class TransientInferenceError(InferenceError):
    """Raised for timeouts, connection errors, rate limits and 5xx responses."""


class InferenceAuthenticationError(InferenceError, FatalAnalysisError):
    """Raised when the inference provider rejects the API key."""


class QuotaExceededError(InferenceError, FatalAnalysisError):
    """Raised when the inference account has no quota left."""
