"""Attempt lifecycle: at most one attempt per student per exam.

States are absent -> in-progress -> completed. Starting creates the attempt
or resumes the existing one; submitting (see soes.services.scoring) moves it
to completed exactly once.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from bson.objectid import ObjectId
from pymongo import ReturnDocument
from pymongo.client_session import ClientSession
from pymongo.errors import DuplicateKeyError

from soes.connections.mongo import Database
from soes.models.attempt import Attempt
from soes.models.base import parse_object_id, utcnow
from soes.models.exam import Exam
from soes.services.catalog import ExamCatalog, QuestionStore
from soes.utils.base import AttemptStatus
from soes.utils.base.errors import (
    ExamHasNoQuestionsError,
    ExamNotActiveError,
    UpstreamFailureError,
)


logger = logging.getLogger(__name__)


class AttemptStore:
    """Attempt persistence built on the unique (student, exam) index."""

    # Bounded retries for the rare case where a losing upsert cannot see the winner yet.
    insert_tries = 3

    def __init__(self, db: Database):
        self.db = db

    def find(self, student_id: ObjectId, exam_id: ObjectId) -> Attempt | None:
        return Attempt.objects(student=student_id, exam=exam_id).first()

    def find_for_exams(self, student_id: ObjectId, exams: Iterable[Exam]) -> dict[ObjectId, Attempt]:
        attempts = Attempt.objects(student=student_id, exam__in=list(exams))
        return {attempt.reference_id("exam"): attempt for attempt in attempts}

    def insert_if_absent(self, student_id: ObjectId, exam_id: ObjectId) -> tuple[Attempt, bool]:
        """Create the attempt unless one exists. Returns (attempt, created).

        The upsert only writes on insert, so an existing attempt is never
        touched. A concurrent start for the same pair either matches the
        winner's document or is rejected by the unique index; both cases
        resolve to the stored attempt with created=False.
        """
        key = {"student": student_id, "exam": exam_id}
        coll = Attempt._get_collection()
        for _ in range(self.insert_tries):
            fresh = Attempt(student=student_id, exam=exam_id, started_at=utcnow())
            on_insert = {k: v for k, v in fresh.to_mongo().items() if k not in key}
            created = False
            try:
                outcome = coll.update_one(key, {"$setOnInsert": on_insert}, upsert=True)
                created = outcome.upserted_id is not None
            except DuplicateKeyError:
                logger.warning("Concurrent start for student %s exam %s, loading the stored attempt", student_id, exam_id)

            attempt = self.find(student_id, exam_id)
            if attempt is not None:
                return attempt, created
        raise UpstreamFailureError("Attempt could not be created or loaded")

    def complete_if_in_progress(self, attempt_id: ObjectId, session: Optional[ClientSession] = None) -> Attempt | None:
        """Atomically move an in-progress attempt to completed; None if it was not in progress."""
        now = utcnow()
        doc = Attempt._get_collection().find_one_and_update(
            {"_id": attempt_id, "status": AttemptStatus.IN_PROGRESS.value},
            {"$set": {"status": AttemptStatus.COMPLETED.value, "completed_at": now, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        return Attempt._from_son(doc) if doc else None

    def reopen(self, attempt_id: ObjectId) -> None:
        """Undo complete_if_in_progress when the result could not be stored."""
        Attempt.objects(id=attempt_id, status=AttemptStatus.COMPLETED.value).update_one(
            set__status=AttemptStatus.IN_PROGRESS.value,
            set__updated_at=utcnow(),
            unset__completed_at=True,
        )


class AttemptEngine:
    def __init__(self, db: Database):
        self.db = db
        self.exams = ExamCatalog(db)
        self.questions = QuestionStore(db)
        self.attempts = AttemptStore(db)

    def start_attempt(self, student_id: ObjectId, exam_id: Any) -> dict:
        """Create or resume the student's attempt and return the sanitized paper.

        Raises exam-not-found, exam-not-active or no-questions before any
        attempt is written.
        """
        exam = self.exams.get(exam_id)
        if not exam.is_active:
            raise ExamNotActiveError()

        questions = self.questions.list_for_exam(exam)
        if not questions:
            raise ExamHasNoQuestionsError()

        attempt, created = self.attempts.insert_if_absent(student_id, exam.id)
        if created:
            logger.info("Attempt %s started by student %s on exam %s", attempt.id, student_id, exam.id)
        else:
            logger.info("Attempt %s resumed by student %s", attempt.id, student_id)

        exam_output = exam.public_output()
        exam_output["question_count"] = len(questions)
        return {
            "exam": exam_output,
            "questions": [q.to_student_output(number) for number, q in enumerate(questions, start=1)],
            "attempt_id": str(attempt.id),
            "started_at": attempt.started_at.isoformat(),
            "attempt_status": attempt.status,
            "resumed": not created,
        }

    def check_attempt(self, student_id: ObjectId, exam_id: Any) -> dict:
        attempt = self.attempts.find(student_id, parse_object_id(exam_id))
        return {
            "has_attempted": attempt is not None,
            "attempt_status": attempt.status if attempt else None,
            "started_at": attempt.started_at.isoformat() if attempt else None,
        }

    def available_exams(self, student_id: ObjectId) -> list[dict]:
        """Active exams, newest first, flagged with the student's attempt status."""
        exams = self.exams.list_active()
        attempts = self.attempts.find_for_exams(student_id, exams)
        output = []
        for exam in exams:
            item = exam.public_output()
            item["created_at"] = exam.created_at.isoformat()
            attempt = attempts.get(exam.id)
            item["has_attempted"] = attempt is not None
            item["attempt_status"] = attempt.status if attempt else None
            output.append(item)
        return output
