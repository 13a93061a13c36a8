"""
Grading engine - turns one attributed answer plus its question definition
into a score and feedback.

Objective questions (single choice, true/false) are matched by rule and never
reach a model. Subjective questions go through the AI grading adapter.
"""

from typing import Any, Dict, List, Optional, Sequence

from papergrader.config import logger
from papergrader.models import GradingMethod, GradingResult, QuestionDefinition
from papergrader.services.ai_grading import AiGradeRequest, AiGrader, clamp_score

UNANSWERED_FEEDBACK = "unanswered"
CORRECT_FEEDBACK = "correct"


def normalize_answer(value: Any) -> str:
    """Trim and case-fold; list answers are sorted so option order does not matter."""
    if value is None:
        return ""
    if isinstance(value, (list, tuple, set)):
        return ",".join(sorted(normalize_answer(v) for v in value))
    return str(value).strip().casefold()


def answer_text(value: Any) -> str:
    """Typed-in answer as text; multi-select answers become "A,C" in sorted order."""
    if value is None:
        return ""
    if isinstance(value, (list, tuple, set)):
        return ",".join(sorted(str(v).strip() for v in value))
    return str(value)


def grade_objective(question: QuestionDefinition, answer: str) -> GradingResult:
    is_correct = normalize_answer(answer) == normalize_answer(question.correct_answer)
    return GradingResult(
        question_id=question.id,
        student_answer=answer,
        score=question.max_points if is_correct else 0,
        feedback=CORRECT_FEEDBACK if is_correct else question.correct_answer,
        method=GradingMethod.RULE,
    )


class GradingEngine:
    def __init__(self, ai_grader: Optional[AiGrader] = None):
        self.ai_grader = ai_grader or AiGrader()

    async def grade_question(self, question: QuestionDefinition, answer: str,
                             page_image: Optional[bytes] = None) -> GradingResult:
        answer = answer or ""
        if not answer.strip():
            return GradingResult(question_id=question.id, student_answer="", score=0,
                                 feedback=UNANSWERED_FEEDBACK, method=GradingMethod.UNANSWERED)

        if question.type.is_objective:
            result = grade_objective(question, answer)
            logger.info(f"[Grading] Objective {question.id}: answered {answer!r}, score {result.score}")
        else:
            result = await self._grade_subjective(question, answer, page_image)

        result.score = clamp_score(result.score, question.max_points)
        return result

    async def _grade_subjective(self, question: QuestionDefinition, answer: str,
                                page_image: Optional[bytes]) -> GradingResult:
        request = AiGradeRequest(
            question_id=question.id,
            question_text=question.question_text or "",
            rubric=question.correct_answer,
            max_points=question.max_points,
            student_text=answer,
            page_image=page_image,
        )
        try:
            ai = await self.ai_grader.grade(request)
        except Exception as e:
            # One bad question must not sink the rest of the paper
            logger.error(f"[Grading] Subjective {question.id} failed: {e}", exc_info=True)
            return GradingResult(question_id=question.id, student_answer=answer, score=0,
                                 feedback=f"AI grading failed: {e}", method=GradingMethod.FAILED)

        return GradingResult(
            question_id=question.id,
            student_answer=ai.student_answer or answer,
            score=ai.score,
            feedback=ai.feedback,
            method=ai.method,
        )

    async def grade_answers(self, questions: Sequence[QuestionDefinition], answers: Dict[str, str],
                            page_image: Optional[bytes] = None) -> List[GradingResult]:
        """Grade every question (configuration order). Missing answers count as unanswered."""
        results = []
        for question in questions:
            results.append(await self.grade_question(question, answers.get(question.id, ""), page_image))
        return results
