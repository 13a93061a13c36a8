"""Pydantic models for the grading pipeline"""

from .question import QuestionType, QuestionROI, QuestionDefinition, GradingTemplate
from .ocr import (
    OcrSpan,
    PageSize,
    PageOcrResult,
    OcrTaskStatus,
    UploadTarget,
    OcrTaskState,
    MockOcrTask,
    RealOcrTask,
    OcrTask,
)
from .submission import (
    SubmissionStatus,
    GradingMethod,
    GradingResult,
    SubmittedAnswer,
    GradingPayload,
    Submission,
    Assignment,
    ScoreRecord,
    PaperOutcome,
)
