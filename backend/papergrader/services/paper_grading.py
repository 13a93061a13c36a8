"""
Paper grading orchestrator.

One paper: OCR page -> attribute spans to questions -> grade each question ->
persist results (idempotent) -> optionally publish the total to the
academic-records store. Papers are independent and run concurrently; writes
for one submission id are serialized.
"""

import asyncio
import uuid
from typing import List, Optional, Sequence, Tuple, Union

from papergrader.config import logger, MAX_CONCURRENT_PAPERS
from papergrader.errors import (
    OCR_ERRORS,
    GradingPipelineError,
    PersistenceConflict,
    SubmissionNotFound,
)
from papergrader.models import (
    GradingMethod,
    GradingPayload,
    GradingResult,
    PaperOutcome,
    ScoreRecord,
    Submission,
    SubmittedAnswer,
)
from papergrader.services.ai_grading import clamp_score
from papergrader.services.attribution import attribute_spans
from papergrader.services.document_intelligence import DocumentIntelligenceClient, get_document_client
from papergrader.services.file_processing import correct_orientation, decode_page_image, pdf_to_page_images
from papergrader.services.grading import GradingEngine, answer_text
from papergrader.services.submissions import AcademicRecordsStore, SubmissionStore
from papergrader.services.templates import TemplateStore
from papergrader.utils.concurrency import KeyedLock, gather_bounded

AUTO_GRADED_EXAM_SUFFIX = "(auto graded)"


def synthesize_exam_name(assignment_name: str) -> str:
    return f"{assignment_name} {AUTO_GRADED_EXAM_SUFFIX}"


class PaperGradingService:
    def __init__(self, document_client: Optional[DocumentIntelligenceClient] = None,
                 template_store: Optional[TemplateStore] = None,
                 grading_engine: Optional[GradingEngine] = None,
                 submission_store: Optional[SubmissionStore] = None,
                 records_store: Optional[AcademicRecordsStore] = None,
                 max_concurrent_papers: int = MAX_CONCURRENT_PAPERS):
        self.document_client = document_client or get_document_client()
        self.templates = template_store or TemplateStore()
        self.engine = grading_engine or GradingEngine()
        self.submissions = submission_store or SubmissionStore()
        self.records = records_store or AcademicRecordsStore()
        self.max_concurrent_papers = max_concurrent_papers
        self._locks = KeyedLock()

    # ============== SUBMISSIONS ==============

    async def create_submission(self, tenant_id: str, assignment_id: str, student_id: str,
                                payload_url: Optional[str] = None) -> Submission:
        submission = Submission(
            id=f"sub_{uuid.uuid4().hex[:12]}",
            tenant_id=tenant_id,
            assignment_id=assignment_id,
            student_id=student_id,
            payload_url=payload_url,
        )
        return await self.submissions.create(submission)

    async def _load_submission(self, submission_id: str) -> Submission:
        submission = await self.submissions.get(submission_id)
        if submission is None:
            raise SubmissionNotFound(submission_id)
        return submission

    # ============== GRADING PATHS ==============

    async def grade_paper(self, submission_id: str, image_bytes: Union[bytes, str],
                          publish_to_scores: bool = False) -> PaperOutcome:
        """
        Grade a scanned/photographed page end-to-end. The page is raw image
        bytes or a base64 string (data: URI prefix allowed).
        """
        if isinstance(image_bytes, str):
            image_bytes = decode_page_image(image_bytes)
        async with self._locks.hold(submission_id):
            submission = await self._load_submission(submission_id)
            template = self.templates.for_assignment(submission.assignment_id)
            logger.info(f"[PaperGrader] Starting {submission_id} ({len(template.questions)} questions)")

            page = await asyncio.to_thread(correct_orientation, image_bytes)
            try:
                ocr = await self.document_client.fetch_page(page)
            except OCR_ERRORS as e:
                logger.error(f"[PaperGrader] OCR failed for {submission_id}: {e}")
                await self.submissions.mark_failed(submission_id, str(e))
                raise

            answers = attribute_spans(ocr.spans, template.rois)
            results = await self.engine.grade_answers(template.questions, answers, page_image=page)
            return await self._persist(submission, results, publish_to_scores)

    async def grade_answers(self, submission_id: str, answers: Sequence[SubmittedAnswer],
                            publish_to_scores: bool = False) -> PaperOutcome:
        """Grade typed-in answers; skips OCR and attribution."""
        async with self._locks.hold(submission_id):
            submission = await self._load_submission(submission_id)
            template = self.templates.for_assignment(submission.assignment_id)
            answer_map = {a.question_id: answer_text(a.answer) for a in answers}
            unknown = set(answer_map) - {q.id for q in template.questions}
            if unknown:
                logger.warning(f"[PaperGrader] {submission_id}: ignoring answers for unknown questions {sorted(unknown)}")
            results = await self.engine.grade_answers(template.questions, answer_map)
            return await self._persist(submission, results, publish_to_scores)

    async def record_payload(self, submission_id: str, payload: GradingPayload) -> PaperOutcome:
        """Persist a pre-computed grading payload as-is (scores still kept in range)."""
        async with self._locks.hold(submission_id):
            submission = await self._load_submission(submission_id)
            template = self.templates.for_assignment(submission.assignment_id)

            results = []
            for item in payload.results:
                question = template.question(item.question_id)
                ceiling = question.max_points if question else float("inf")
                results.append(GradingResult(
                    question_id=item.question_id,
                    student_answer=item.student_answer,
                    score=clamp_score(item.score, ceiling),
                    feedback=item.feedback,
                    method=GradingMethod.MANUAL,
                ))
            total = payload.total_score
            if total is not None:
                total = clamp_score(total, float("inf"))
            return await self._persist(submission, results, payload.publish_to_scores, total_score=total)

    # ============== PERSISTENCE ==============

    async def _persist(self, submission: Submission, results: List[GradingResult],
                       publish_to_scores: bool, total_score: Optional[float] = None) -> PaperOutcome:
        total = total_score if total_score is not None else sum(r.score for r in results)
        try:
            await self.submissions.save_results(submission, results, total)
        except PersistenceConflict as e:
            # The upsert is idempotent, a second attempt sees the winner's document
            logger.warning(f"[PaperGrader] {e}; retrying once")
            await self.submissions.save_results(submission, results, total)

        if publish_to_scores:
            await self.publish_score(submission, total)

        logger.info(f"[PaperGrader] Grading complete for {submission.id}. Total score: {total}")
        return PaperOutcome(submission_id=submission.id, status="done", total_score=total, results=results)

    async def publish_score(self, submission: Submission, total: float) -> Optional[ScoreRecord]:
        assignment = await self.records.get_assignment(submission.assignment_id)
        if assignment is None:
            logger.warning(f"Assignment {submission.assignment_id} not found, score for {submission.id} not published")
            return None
        record = ScoreRecord(
            tenant_id=submission.tenant_id,
            exam_name=synthesize_exam_name(assignment.name),
            student_id=submission.student_id,
            subject=assignment.subject,
            value=total,
        )
        await self.records.upsert_score(record, updated_by="papergrader")
        return record

    # ============== BATCHES ==============

    async def _grade_for_batch(self, submission_id: str, image_bytes: bytes,
                               publish_to_scores: bool) -> PaperOutcome:
        try:
            return await self.grade_paper(submission_id, image_bytes, publish_to_scores)
        except GradingPipelineError as e:
            return PaperOutcome(submission_id=submission_id, status="failed", error=str(e))
        except Exception as e:
            logger.error(f"Error processing {submission_id}: {e}", exc_info=True)
            return PaperOutcome(submission_id=submission_id, status="failed", error=str(e))

    async def grade_batch(self, papers: Sequence[Tuple[str, bytes]],
                          publish_to_scores: bool = False) -> List[PaperOutcome]:
        """Grade independent papers concurrently. A failed paper never affects the others."""
        logger.info(f"=== BATCH GRADING START === {len(papers)} papers")
        outcomes = await gather_bounded(
            (self._grade_for_batch(sid, image, publish_to_scores) for sid, image in papers),
            self.max_concurrent_papers,
        )
        failed = sum(1 for o in outcomes if o.status == "failed")
        logger.info(f"=== BATCH GRADING DONE === {len(outcomes) - failed} done, {failed} failed")
        return outcomes

    async def grade_pdf_stack(self, pdf_bytes: bytes, submission_ids: Sequence[str],
                              publish_to_scores: bool = False) -> List[PaperOutcome]:
        """A scanned stack: page i of the PDF is the paper of submission_ids[i]."""
        pages = await asyncio.to_thread(pdf_to_page_images, pdf_bytes)
        if len(pages) != len(submission_ids):
            raise GradingPipelineError(
                f"PDF has {len(pages)} pages but {len(submission_ids)} submissions were given",
                error_code="PAGE_COUNT_MISMATCH",
            )
        return await self.grade_batch(list(zip(submission_ids, pages)), publish_to_scores)
