"""Submission and scoring-related Pydantic models"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class SubmissionStatus(str, Enum):
    PROCESSING = "processing"
    DONE = "done"


class GradingMethod(str, Enum):
    RULE = "rule"
    VISION = "vision"
    TEXT = "text"
    MOCK = "mock"
    UNANSWERED = "unanswered"
    FAILED = "failed"
    MANUAL = "manual"


class GradingResult(BaseModel):
    """Score for one question of one paper. 0 <= score <= max points of the question."""
    model_config = ConfigDict(populate_by_name=True)

    question_id: str = Field(alias="questionId")
    student_answer: str = Field(default="", alias="studentAnswer")
    score: float = 0
    feedback: str = ""
    method: GradingMethod = GradingMethod.RULE


class SubmittedAnswer(BaseModel):
    """Answer typed in by hand instead of read from a scan"""
    model_config = ConfigDict(populate_by_name=True)

    question_id: str = Field(alias="questionId")
    answer: Any = None


class GradingPayload(BaseModel):
    """Pre-computed grading (e.g. manually entered scores)"""
    model_config = ConfigDict(populate_by_name=True)

    results: List[GradingResult] = []
    total_score: Optional[float] = Field(default=None, alias="totalScore")
    publish_to_scores: bool = Field(default=False, alias="publishToScores")


class Submission(BaseModel):
    """One uploaded paper of one student for one assignment"""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    tenant_id: str = Field(default="default", alias="tenantId")
    assignment_id: str = Field(alias="assignmentId")
    student_id: str = Field(alias="studentId")
    status: SubmissionStatus = SubmissionStatus.PROCESSING
    total_score: float = Field(default=0, alias="totalScore")
    answers: Optional[List[GradingResult]] = None
    payload_url: Optional[str] = Field(default=None, alias="payloadUrl")
    error: Optional[str] = None  # last OCR/upload failure, submission stays processing
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), alias="createdAt")
    graded_at: Optional[datetime] = Field(default=None, alias="gradedAt")


class Assignment(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    tenant_id: str = Field(default="default", alias="tenantId")
    name: str
    subject: str


class ScoreRecord(BaseModel):
    """Row of the academic-records store, keyed by (tenant, exam, student, subject)"""
    model_config = ConfigDict(populate_by_name=True)

    tenant_id: str = Field(alias="tenantId")
    exam_name: str = Field(alias="examName")
    student_id: str = Field(alias="studentId")
    subject: str
    value: float


class PaperOutcome(BaseModel):
    """What happened to one paper of a batch"""
    model_config = ConfigDict(populate_by_name=True)

    submission_id: str = Field(alias="submissionId")
    status: Literal["done", "failed"]
    total_score: float = Field(default=0, alias="totalScore")
    results: List[GradingResult] = []
    error: Optional[str] = None
