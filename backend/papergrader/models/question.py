"""Question template Pydantic models (regions and answer keys)"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class QuestionType(str, Enum):
    SINGLE_CHOICE = "single_choice"
    TRUE_FALSE = "true_false"
    SUBJECTIVE = "subjective"

    @property
    def is_objective(self) -> bool:
        return self is not QuestionType.SUBJECTIVE


class QuestionROI(BaseModel):
    """Rectangle on the page (pixels) where the answer to one question is written"""
    model_config = ConfigDict(frozen=True)

    id: str
    x: float
    y: float
    w: float
    h: float

    @field_validator("w", "h")
    @classmethod
    def _positive_extent(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("ROI width and height must be positive")
        return value

    def contains(self, px: float, py: float) -> bool:
        # Closed rectangle: points on the border belong to the ROI
        return self.x <= px <= self.x + self.w and self.y <= py <= self.y + self.h

    def overlaps(self, other: "QuestionROI") -> bool:
        return (
            self.x < other.x + other.w and other.x < self.x + self.w
            and self.y < other.y + other.h and other.y < self.y + self.h
        )


class QuestionDefinition(BaseModel):
    """Answer key entry. For subjective questions correct_answer is the rubric."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    type: QuestionType
    correct_answer: str = Field(default="", alias="correctAnswer")
    max_points: float = Field(alias="maxPoints")
    question_text: Optional[str] = Field(default=None, alias="questionText")

    @field_validator("max_points")
    @classmethod
    def _non_negative_points(cls, value: float) -> float:
        if value < 0:
            raise ValueError("maxPoints must be >= 0")
        return value

    @field_validator("correct_answer", mode="before")
    @classmethod
    def _stringify_answer(cls, value):
        return "" if value is None else str(value)


class GradingTemplate(BaseModel):
    """Everything needed to grade one paper layout, loaded once and shared read-only"""
    model_config = ConfigDict(frozen=True)

    rois: List[QuestionROI] = []
    questions: List[QuestionDefinition] = []

    @property
    def total_points(self) -> float:
        return sum(q.max_points for q in self.questions)

    def question(self, question_id: str) -> Optional[QuestionDefinition]:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None
