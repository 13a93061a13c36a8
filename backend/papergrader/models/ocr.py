"""OCR task and span Pydantic models"""

from enum import Enum
from typing import Annotated, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OcrSpan(BaseModel):
    """One recognized text fragment. bbox is [x_min, y_min, x_max, y_max] in page pixels."""
    model_config = ConfigDict(frozen=True)

    content: str
    bbox: Tuple[float, float, float, float]

    @field_validator("bbox", mode="before")
    @classmethod
    def _four_numbers(cls, value):
        if value is None or len(value) != 4:
            raise ValueError("bbox must have exactly four numbers")
        return tuple(value)

    @property
    def center(self) -> Tuple[float, float]:
        x_min, y_min, x_max, y_max = self.bbox
        return (x_min + x_max) / 2, (y_min + y_max) / 2


class PageSize(BaseModel):
    width: float
    height: float


class PageOcrResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    spans: List[OcrSpan] = []
    page_size: Optional[PageSize] = Field(default=None, alias="pageSize")


class OcrTaskStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (OcrTaskStatus.DONE, OcrTaskStatus.ERROR)


class UploadTarget(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    upload_url: str = Field(alias="uploadUrl")
    batch_id: str = Field(alias="batchId")
    trace_id: Optional[str] = Field(default=None, alias="traceId")


class OcrTaskState(BaseModel):
    """Normalized result of one poll. progress is an estimate, status drives control flow."""
    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(alias="taskId")
    status: OcrTaskStatus
    state: Optional[str] = None  # raw provider state string
    progress: int = 0
    full_result_url: Optional[str] = Field(default=None, alias="fullResultUrl")
    error: Optional[str] = None
    trace_id: Optional[str] = Field(default=None, alias="traceId")


class _OcrTaskBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    file_name: str = Field(default="", alias="fileName")
    status: OcrTaskStatus = OcrTaskStatus.QUEUED
    progress: int = 0
    full_result_url: Optional[str] = Field(default=None, alias="fullResultUrl")
    error: Optional[str] = None
    trace_id: Optional[str] = Field(default=None, alias="traceId")

    def advance(self, status: OcrTaskStatus, **changes) -> bool:
        """
        Move the task to a new status. Terminal states are final: returns
        False (and changes nothing) once the task is done or errored.
        """
        if self.status.is_terminal:
            return False
        self.status = status
        for key, value in changes.items():
            if value is not None:
                setattr(self, key, value)
        return True


class MockOcrTask(_OcrTaskBase):
    source: Literal["mock"] = "mock"
    result: Optional[PageOcrResult] = None


class RealOcrTask(_OcrTaskBase):
    source: Literal["real"] = "real"


OcrTask = Annotated[Union[MockOcrTask, RealOcrTask], Field(discriminator="source")]
