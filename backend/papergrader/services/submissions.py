"""
Persistence for submissions, their grading results, and published scores.

One grading_results document per submission (upsert keyed by submissionId)
holds the per-question list, so re-grading replaces instead of duplicating.
"""

from datetime import datetime, timezone
from typing import List, Optional

from pymongo.errors import DuplicateKeyError

from papergrader.config import logger
from papergrader.database import get_db
from papergrader.errors import PersistenceConflict
from papergrader.models import (
    Assignment,
    GradingResult,
    ScoreRecord,
    Submission,
    SubmissionStatus,
)
from papergrader.utils.hashing import get_results_hash


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class _MongoStore:
    def __init__(self, db=None):
        self._db = db

    @property
    def db(self):
        return self._db if self._db is not None else get_db()


class SubmissionStore(_MongoStore):

    async def ensure_indexes(self):
        await self.db.submissions.create_index("id", unique=True)
        await self.db.grading_results.create_index("submissionId", unique=True)

    async def create(self, submission: Submission) -> Submission:
        await self.db.submissions.insert_one(submission.model_dump(by_alias=True, mode="json"))
        logger.info(f"Created submission {submission.id} for student {submission.student_id}")
        return submission

    async def get(self, submission_id: str) -> Optional[Submission]:
        doc = await self.db.submissions.find_one({"id": submission_id}, {"_id": 0})
        return Submission.model_validate(doc) if doc else None

    async def get_results(self, submission_id: str) -> Optional[List[GradingResult]]:
        doc = await self.db.grading_results.find_one({"submissionId": submission_id}, {"_id": 0})
        if not doc:
            return None
        return [GradingResult.model_validate(r) for r in doc.get("results", [])]

    async def save_results(self, submission: Submission, results: List[GradingResult],
                           total_score: float) -> None:
        """
        Upsert the result set, then close the submission. Both writes are
        idempotent, so a retried run converges on the same documents.
        """
        now = _now()
        serialized = [r.model_dump(by_alias=True, mode="json") for r in results]
        results_hash = get_results_hash(serialized)
        try:
            await self.db.grading_results.update_one(
                {"submissionId": submission.id},
                {
                    "$set": {
                        "tenantId": submission.tenant_id,
                        "results": serialized,
                        "resultsHash": results_hash,
                        "totalScore": total_score,
                        "updatedAt": now,
                    },
                    "$setOnInsert": {"createdAt": now},
                },
                upsert=True,
            )
        except DuplicateKeyError as e:
            raise PersistenceConflict(f"Concurrent result write for submission {submission.id}: {e}")

        await self.db.submissions.update_one(
            {"id": submission.id},
            {"$set": {
                "status": SubmissionStatus.DONE.value,
                "totalScore": total_score,
                "answers": serialized,
                "gradedAt": now,
                "error": None,
            }},
        )
        logger.info(f"Saved {len(results)} results for submission {submission.id} (total {total_score})")

    async def mark_failed(self, submission_id: str, reason: str) -> None:
        await self.db.submissions.update_one({"id": submission_id}, {"$set": {"error": reason}})


class AcademicRecordsStore(_MongoStore):
    """Collaborator store for assignments and the published score sheet."""

    async def ensure_indexes(self):
        await self.db.scores.create_index(
            [("tenantId", 1), ("examName", 1), ("studentId", 1), ("subject", 1)], unique=True
        )

    async def get_assignment(self, assignment_id: str) -> Optional[Assignment]:
        doc = await self.db.assignments.find_one({"id": assignment_id}, {"_id": 0})
        return Assignment.model_validate(doc) if doc else None

    async def upsert_score(self, record: ScoreRecord, updated_by: Optional[str] = None) -> None:
        key = {
            "tenantId": record.tenant_id,
            "examName": record.exam_name,
            "studentId": record.student_id,
            "subject": record.subject,
        }
        await self.db.scores.update_one(
            key,
            {"$set": {"value": record.value, "updatedBy": updated_by, "updatedAt": _now()}},
            upsert=True,
        )
        logger.info(f"Published score {record.value} for {record.student_id} ({record.exam_name} / {record.subject})")

    async def get_score(self, tenant_id: str, exam_name: str, student_id: str, subject: str) -> Optional[ScoreRecord]:
        doc = await self.db.scores.find_one(
            {"tenantId": tenant_id, "examName": exam_name, "studentId": student_id, "subject": subject},
            {"_id": 0},
        )
        return ScoreRecord.model_validate(doc) if doc else None
