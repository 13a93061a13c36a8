"""
AI grading adapter for subjective questions.

Tiers, in priority order:
  mock   - offline/dev, selected by LLM_PROVIDER=mock, overrides everything
  vision - page image + rubric to a vision model (when VLM_ENABLED)
  text   - extracted answer text + rubric to a text model

A failing vision tier falls back to text; if text fails too the question
scores 0 with the failure reason as feedback. Scores are always clamped
to [0, max_points].
"""

import asyncio
import json
import math
import random
import re
from typing import Callable, Optional

from pydantic import BaseModel

from papergrader.config import (
    logger,
    LLM_PROVIDER,
    VLM_ENABLED,
    VLM_MODEL,
    TEXT_MODEL,
    AI_CALL_TIMEOUT,
)
from papergrader.errors import AdapterFailed
from papergrader.models import GradingMethod
from papergrader.services.file_processing import image_info
from papergrader.services.llm import ImageContent, LlmChat, UserMessage

SYSTEM_PROMPT = """You are a professional exam grader.
Grade the student's answer strictly against the rubric and never award more than the maximum points.

Return ONLY a JSON object in this exact format:
{
  "studentAnswer": "the student's answer as you read it",
  "score": number,
  "feedback": "one or two sentences for the student"
}"""

ChatFactory = Callable[[str, str], LlmChat]


def default_chat_factory(model_name: str, system_message: str) -> LlmChat:
    return (
        LlmChat(system_message=system_message)
        .with_model(model_name)
        .with_params(temperature=0.3, max_output_tokens=1024)
        .with_json_output()
    )


class AiGradeRequest(BaseModel):
    question_id: str
    question_text: str = ""
    rubric: str = ""
    max_points: float
    student_text: str = ""
    page_image: Optional[bytes] = None


class AiGradeResult(BaseModel):
    student_answer: str = ""
    score: float = 0
    feedback: str = ""
    method: GradingMethod


def clamp_score(score, max_points: float) -> float:
    """Coerce a model-supplied score into [0, max_points]; anything non-numeric is 0."""
    if isinstance(score, bool):
        return 0.0
    try:
        value = float(score)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value) or value < 0:
        return 0.0
    return min(value, float(max_points))


def parse_grading_reply(text: str) -> Optional[dict]:
    """Extract the grading JSON object from a model reply, or None."""
    text = (text or "").strip()

    # Strategy 1: Direct parse
    try:
        res = json.loads(text)
        if isinstance(res, dict):
            return res
    except json.JSONDecodeError:
        pass

    # Strategy 2: Remove code blocks
    if "```" in text:
        inner = text.split("```")[1]
        if inner.startswith("json"):
            inner = inner[4:]
        try:
            res = json.loads(inner.strip())
            if isinstance(res, dict):
                return res
        except json.JSONDecodeError:
            pass

    # Strategy 3: First JSON object in the reply
    match = re.search(r"\{.*\}", text, re.DOTALL)
    if match:
        try:
            res = json.loads(match.group())
            if isinstance(res, dict):
                return res
        except json.JSONDecodeError:
            pass

    return None


def _build_prompt(request: AiGradeRequest, with_image: bool) -> str:
    question = request.question_text or f"Subjective question {request.question_id}"
    if with_image:
        answer_section = (
            "The student's handwritten answer is on the attached page image. "
            f"OCR read it as: \"{request.student_text}\""
        )
    else:
        answer_section = f"Student answer (OCR text): \"{request.student_text}\""
    return (
        f"Question: \"{question}\"\n"
        f"Rubric / reference answer: \"{request.rubric}\"\n"
        f"Maximum points: {request.max_points}\n"
        f"{answer_section}\n\n"
        "Grade the answer and return valid JSON only."
    )


class AiGrader:
    def __init__(self, provider: str = LLM_PROVIDER, vision_enabled: bool = VLM_ENABLED,
                 vision_model: str = VLM_MODEL, text_model: str = TEXT_MODEL,
                 timeout: float = AI_CALL_TIMEOUT,
                 chat_factory: ChatFactory = default_chat_factory,
                 rng: Optional[random.Random] = None):
        self.provider = provider
        self.vision_enabled = vision_enabled
        self.vision_model = vision_model
        self.text_model = text_model
        self.timeout = timeout
        self._chat_factory = chat_factory
        self._rng = rng or random.Random()

    @property
    def is_mock(self) -> bool:
        return self.provider == "mock"

    async def grade(self, request: AiGradeRequest) -> AiGradeResult:
        if self.is_mock:
            return self._grade_mock(request)

        failures = []
        if self.vision_enabled and request.page_image:
            try:
                result = await self._grade_vision(request)
                logger.info(f"[AI] {request.question_id}: vision tier scored {result.score}/{request.max_points}")
                return result
            except AdapterFailed as e:
                logger.warning(f"[AI] {request.question_id}: {e.message}, falling back to text model")
                failures.append(e.message)

        try:
            result = await self._grade_text(request)
            logger.info(f"[AI] {request.question_id}: text tier scored {result.score}/{request.max_points}")
            return result
        except AdapterFailed as e:
            logger.error(f"[AI] {request.question_id}: {e.message}")
            failures.append(e.message)

        return AiGradeResult(
            student_answer=request.student_text,
            score=0,
            feedback=f"AI grading failed: {'; '.join(failures)}",
            method=GradingMethod.FAILED,
        )

    def _grade_mock(self, request: AiGradeRequest) -> AiGradeResult:
        if request.rubric.strip():
            return AiGradeResult(
                student_answer=request.student_text,
                score=clamp_score(request.max_points, request.max_points),
                feedback="correct (mock)",
                method=GradingMethod.MOCK,
            )
        score = self._rng.randint(0, int(request.max_points))
        return AiGradeResult(
            student_answer=request.student_text,
            score=clamp_score(score, request.max_points),
            feedback="Mock feedback",
            method=GradingMethod.MOCK,
        )

    async def _grade_vision(self, request: AiGradeRequest) -> AiGradeResult:
        try:
            mime_type, _, _ = await asyncio.to_thread(image_info, request.page_image)
        except Exception as e:
            raise AdapterFailed("vision", f"unreadable page image: {e}")
        message = UserMessage(
            text=_build_prompt(request, with_image=True),
            file_contents=[ImageContent(request.page_image, mime_type=mime_type)],
        )
        parsed = await self._call("vision", self.vision_model, message)
        return self._to_result(parsed, request, GradingMethod.VISION)

    async def _grade_text(self, request: AiGradeRequest) -> AiGradeResult:
        message = UserMessage(text=_build_prompt(request, with_image=False))
        parsed = await self._call("text", self.text_model, message)
        return self._to_result(parsed, request, GradingMethod.TEXT)

    async def _call(self, tier: str, model_name: str, message: UserMessage) -> dict:
        chat = self._chat_factory(model_name, SYSTEM_PROMPT)
        try:
            reply = await asyncio.wait_for(chat.send_message(message), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise AdapterFailed(tier, f"timed out after {self.timeout}s")
        except Exception as e:
            raise AdapterFailed(tier, str(e) or type(e).__name__)

        parsed = parse_grading_reply(reply)
        if parsed is None:
            raise AdapterFailed(tier, "reply is not a JSON object")
        return parsed

    @staticmethod
    def _to_result(parsed: dict, request: AiGradeRequest, method: GradingMethod) -> AiGradeResult:
        raw_score = parsed.get("score")
        score = clamp_score(raw_score, request.max_points)
        if score != raw_score:
            logger.warning(f"[AI] {request.question_id}: score {raw_score!r} clamped to {score}")
        return AiGradeResult(
            student_answer=str(parsed.get("studentAnswer") or request.student_text),
            score=score,
            feedback=str(parsed.get("feedback") or "AI grading complete"),
            method=method,
        )
