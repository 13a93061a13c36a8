"""
Error taxonomy for the grading pipeline.

OCR-tier errors abort the page they belong to and reach the caller.
AdapterFailed never leaves the AI grading adapter: it triggers the next tier
or a zero score.
"""

from typing import Optional


class GradingPipelineError(Exception):
    """Base error carrying a short machine-readable code."""

    error_code = "PIPELINE_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code

    def __str__(self):
        return f"[{self.error_code}] {self.message}"


class ProviderUnavailable(GradingPipelineError):
    """The document-intelligence provider refused or failed a request."""

    error_code = "PROVIDER_UNAVAILABLE"

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class UploadFailed(GradingPipelineError):
    """PUT to the signed upload URL was rejected."""

    error_code = "UPLOAD_FAILED"

    def __init__(self, status: int, body: str = ""):
        super().__init__(f"Upload to signed URL failed ({status}): {body[:200]}")
        self.status = status
        self.body = body


class OcrTimeout(GradingPipelineError):
    """The poll loop ran out of attempts before a terminal state."""

    error_code = "OCR_TIMEOUT"

    def __init__(self, batch_id: str, attempts: int):
        super().__init__(f"OCR batch {batch_id} still processing after {attempts} polls")
        self.batch_id = batch_id
        self.attempts = attempts


class OcrTaskFailed(GradingPipelineError):
    """The provider reported the batch as failed."""

    error_code = "OCR_TASK_FAILED"

    def __init__(self, batch_id: str, reason: Optional[str] = None):
        super().__init__(f"OCR batch {batch_id} failed: {reason or 'unknown error'}")
        self.batch_id = batch_id
        self.reason = reason


class AdapterFailed(GradingPipelineError):
    """One AI grading tier failed (transport, timeout or unparseable reply)."""

    error_code = "ADAPTER_FAILED"

    def __init__(self, tier: str, reason: str):
        super().__init__(f"{tier} tier failed: {reason}")
        self.tier = tier
        self.reason = reason


class PersistenceConflict(GradingPipelineError):
    """Two writers raced on the same submission result."""

    error_code = "PERSISTENCE_CONFLICT"


class TemplateError(GradingPipelineError):
    """Grading template missing or malformed."""

    error_code = "TEMPLATE_ERROR"


class SubmissionNotFound(GradingPipelineError):
    error_code = "SUBMISSION_NOT_FOUND"

    def __init__(self, submission_id: str):
        super().__init__(f"Submission {submission_id} not found")
        self.submission_id = submission_id


# Errors that end a paper before any grading happens
OCR_ERRORS = (ProviderUnavailable, UploadFailed, OcrTimeout, OcrTaskFailed)
