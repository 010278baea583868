"""Exam catalog and question store.

Both are read by the attempt and scoring engines and written by the admin
surface. Question sets are locked while a student has an attempt in progress
within the exam's duration, so that scoring sees the questions the student
was given.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from mongoengine import ValidationError

from soes.connections.mongo import Database
from soes.models.attempt import Attempt
from soes.models.base import as_utc, parse_object_id, utcnow
from soes.models.exam import Exam
from soes.models.question import Question
from soes.models.user import User
from soes.utils.base import AttemptStatus
from soes.utils.base.errors import (
    ExamNotFoundError,
    InvalidInputError,
    QuestionNotFoundError,
    QuestionsLockedError,
)


logger = logging.getLogger(__name__)


EDITABLE_EXAM_FIELDS = ("title", "description", "duration", "total_marks", "passing_marks", "is_active")


def _invalid(exc: ValidationError) -> InvalidInputError:
    errors = exc.to_dict() or {"__all__": exc.message}
    return InvalidInputError(message="; ".join(str(msg) for msg in errors.values()), detail=errors)


class ExamCatalog:
    def __init__(self, db: Database):
        self.db = db

    def find(self, exam_id: Any) -> Exam | None:
        return Exam.objects(id=parse_object_id(exam_id)).first()

    def get(self, exam_id: Any) -> Exam:
        exam = self.find(exam_id)
        if not exam:
            raise ExamNotFoundError()
        return exam

    def list_active(self) -> list[Exam]:
        return list(Exam.objects(is_active=True).order_by("-created_at"))

    def list_all(self) -> list[dict]:
        """Every exam, newest first, with its creator's name and email."""
        output = []
        for exam in Exam.objects.order_by("-created_at"):
            item = exam.to_output(exclude=["created_by"])
            creator: User | None = exam.created_by
            item["created_by"] = creator.summary() if creator else None
            output.append(item)
        return output

    def create(self, admin: User, **fields: Any) -> Exam:
        exam = Exam(created_by=admin, **fields)
        try:
            exam.save()
        except ValidationError as exc:
            raise _invalid(exc) from exc
        logger.info("Exam %s created by %s", exam.id, admin.id)
        return exam

    def update(self, exam_id: Any, changes: dict[str, Any]) -> Exam:
        """Apply a partial update; the passing/total invariant is checked on the merged exam."""
        exam = self.get(exam_id)
        for field, value in changes.items():
            if field in EDITABLE_EXAM_FIELDS and value is not None:
                setattr(exam, field, value)
        try:
            exam.save()
        except ValidationError as exc:
            raise _invalid(exc) from exc
        return exam

    def delete(self, exam_id: Any) -> None:
        """Delete an exam; questions, attempts and results go with it."""
        exam = self.get(exam_id)
        exam.delete()
        logger.info("Exam %s deleted with its questions, attempts and results", exam.id)

    def sync_question_count(self, exam: Exam) -> int:
        count = Question.objects(exam=exam).count()
        Exam.objects(id=exam.id).update_one(set__question_count=count, set__updated_at=utcnow())
        exam.question_count = count
        return count


class QuestionStore:
    def __init__(self, db: Database):
        self.db = db

    def list_for_exam(self, exam: Exam) -> list[Question]:
        """Questions of an exam in the order they were added."""
        return list(Question.objects(exam=exam).order_by("id"))

    def get(self, question_id: Any) -> Question:
        question = Question.objects(id=parse_object_id(question_id)).first()
        if not question:
            raise QuestionNotFoundError()
        return question

    def add_many(self, exam: Exam, questions: list[dict[str, Any]]) -> list[Question]:
        if not questions:
            raise InvalidInputError("Please provide an array of questions")
        self._ensure_unlocked(exam)
        created = [Question(exam=exam, **payload) for payload in questions]
        try:
            for question in created:
                question.validate()
        except ValidationError as exc:
            raise _invalid(exc) from exc

        for question in created:
            question.save(validate=False)
        ExamCatalog(self.db).sync_question_count(exam)
        logger.info("Added %d questions to exam %s", len(created), exam.id)
        return created

    def delete(self, question_id: Any) -> Question:
        question = self.get(question_id)
        exam: Exam = question.exam
        self._ensure_unlocked(exam)
        question.delete()
        ExamCatalog(self.db).sync_question_count(exam)
        return question

    def _ensure_unlocked(self, exam: Exam) -> None:
        # Attempts past the exam's duration are abandoned and no longer hold the lock
        cutoff = utcnow() - timedelta(minutes=exam.duration)
        open_attempts = Attempt.objects(exam=exam, status=AttemptStatus.IN_PROGRESS.value).only("started_at")
        if any(as_utc(attempt.started_at) > cutoff for attempt in open_attempts):
            raise QuestionsLockedError()
