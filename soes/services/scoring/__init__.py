"""Scoring engine and result store.

A submission is scored against the exam's stored correct answers, then the
attempt is closed and the result written as one unit: inside a transaction
when the deployment supports them, otherwise by claiming the attempt first
and reopening it if the result cannot be stored.
"""
from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Optional, Sequence

from bson.objectid import ObjectId
from pydantic import BaseModel, Field, ValidationError, field_validator
from pymongo.client_session import ClientSession
from pymongo.errors import DuplicateKeyError, OperationFailure, PyMongoError

from soes.connections.mongo import Database
from soes.models.attempt import Attempt
from soes.models.base import parse_object_id
from soes.models.exam import Exam
from soes.models.question import OPTION_COUNT, Question
from soes.models.result import EvaluatedAnswer, Result
from soes.models.user import User
from soes.services.attempt import AttemptStore
from soes.services.catalog import ExamCatalog, QuestionStore
from soes.utils.base.errors import (
    AlreadySubmittedError,
    ForbiddenError,
    InvalidAnswersError,
    InvalidInputError,
    NoActiveAttemptError,
    ResultNotFoundError,
    UpstreamFailureError,
)


logger = logging.getLogger(__name__)

# Server error code for a transaction write conflict
WRITE_CONFLICT = 112


class SubmittedAnswer(BaseModel):
    question_id: str
    selected_answer: int = Field(ge=0, le=OPTION_COUNT - 1)

    @field_validator("question_id")
    @classmethod
    def _valid_question_id(cls, value: str) -> str:
        if not ObjectId.is_valid(value):
            raise ValueError("Invalid question ID")
        return value


def evaluate_answers(questions: Iterable[Question], answers: Iterable[SubmittedAnswer]) -> tuple[int, list[EvaluatedAnswer]]:
    """Score answers against their questions, returns (score, evaluated answers).

    Every submitted answer is evaluated in order. Answers naming a question
    outside the exam are skipped. Unanswered questions score zero and
    produce no entry.
    """
    by_id = {q.id: q for q in questions}
    score = 0
    evaluated: list[EvaluatedAnswer] = []
    for answer in answers:
        question_id = ObjectId(answer.question_id)
        question = by_id.get(question_id)
        if question is None:
            continue

        is_correct = question.correct_answer == answer.selected_answer
        marks_obtained = question.marks if is_correct else 0
        score += marks_obtained
        evaluated.append(EvaluatedAnswer(
            question_id=question_id,
            selected_answer=answer.selected_answer,
            is_correct=is_correct,
            marks_obtained=marks_obtained,
        ))
    return score, evaluated


def grade(score: int, total_marks: int, passing_marks: int) -> tuple[float, bool]:
    """Percentage rounded half-up to two decimals, and pass when score >= passing marks."""
    percentage = (Decimal(score) * 100 / Decimal(total_marks)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return float(percentage), score >= passing_marks


class ResultStore:
    def __init__(self, db: Database):
        self.db = db

    def insert(self, result: Result, session: Optional[ClientSession] = None) -> ObjectId:
        """Validate and write the result, inside `session` when one is given."""
        result.validate()
        result.id = ObjectId()
        Result._get_collection().insert_one(result.to_mongo(), session=session)
        return result.id

    def get(self, result_id: Any) -> Result:
        result = Result.objects(id=parse_object_id(result_id)).first()
        if not result:
            raise ResultNotFoundError()
        return result

    def list_for_student(self, student_id: ObjectId) -> list[dict]:
        results = list(Result.objects(student=student_id).order_by("-submitted_at"))
        exams = self._exams_by_id(r.reference_id("exam") for r in results)
        return [self._with_exam(r, exams) for r in results]

    def list_all(self) -> list[dict]:
        results = list(Result.objects.order_by("-submitted_at"))
        exams = self._exams_by_id(r.reference_id("exam") for r in results)
        students = self._users_by_id(r.reference_id("student") for r in results)
        return [self._with_student(self._with_exam(r, exams), r, students) for r in results]

    def list_for_exam(self, exam: Exam) -> list[dict]:
        results = list(Result.objects(exam=exam).order_by("-score"))
        students = self._users_by_id(r.reference_id("student") for r in results)
        return [self._with_student(r.to_output(), r, students) for r in results]

    @staticmethod
    def _exams_by_id(ids: Iterable[ObjectId]) -> dict[ObjectId, Exam]:
        return {exam.id: exam for exam in Exam.objects(id__in=list(set(ids)))}

    @staticmethod
    def _users_by_id(ids: Iterable[ObjectId]) -> dict[ObjectId, User]:
        return {user.id: user for user in User.objects(id__in=list(set(ids)))}

    @staticmethod
    def _with_exam(result: Result, exams: dict[ObjectId, Exam]) -> dict:
        output = result.to_output()
        exam = exams.get(result.reference_id("exam"))
        if exam:
            output["exam"] = exam.to_output(fields=["title", "total_marks", "passing_marks"])
        return output

    @staticmethod
    def _with_student(output: dict, result: Result, students: dict[ObjectId, User]) -> dict:
        student = students.get(result.reference_id("student"))
        if student:
            output["student"] = student.summary()
        return output


class ScoringEngine:
    def __init__(self, db: Database):
        self.db = db
        self.exams = ExamCatalog(db)
        self.questions = QuestionStore(db)
        self.attempts = AttemptStore(db)
        self.results = ResultStore(db)

    def submit_attempt(
        self,
        student_id: ObjectId,
        exam_id: Any,
        answers: Sequence[SubmittedAnswer | dict],
        time_taken: int | None = None,
    ) -> dict:
        """Score a submission and close the attempt.

        Raises invalid-answers-shape, exam-not-found, no-active-attempt or
        already-submitted. A second submission for the same attempt is always
        rejected, never re-scored.
        """
        parsed = self._parse_answers(answers)
        if time_taken is not None and time_taken < 0:
            raise InvalidInputError("Time taken must be a positive number")

        exam = self.exams.get(exam_id)
        attempt = self.attempts.find(student_id, exam.id)
        if attempt is None:
            raise NoActiveAttemptError()
        if not attempt.in_progress:
            raise AlreadySubmittedError()

        questions = self.questions.list_for_exam(exam)
        score, evaluated = evaluate_answers(questions, parsed)
        percentage, passed = grade(score, exam.total_marks, exam.passing_marks)

        result = Result(
            student=student_id,
            exam=exam,
            score=score,
            total_marks=exam.total_marks,
            passing_marks=exam.passing_marks,
            percentage=percentage,
            passed=passed,
            answers=evaluated,
            time_taken=time_taken,
        )
        self._finalize(attempt, result)
        logger.info(
            "Attempt %s submitted: score %s/%s (%s%%) %s",
            attempt.id, score, exam.total_marks, percentage, "passed" if passed else "failed",
        )

        return {
            "score": score,
            "total_marks": exam.total_marks,
            "percentage": percentage,
            "passed": passed,
            "passing_marks": exam.passing_marks,
            "result_id": str(result.id),
        }

    def get_result_for_student(self, student_id: ObjectId, result_id: Any) -> dict:
        """Result detail with exam summary and each answer's question, for its owner only."""
        result = self.results.get(result_id)
        if result.reference_id("student") != student_id:
            raise ForbiddenError()

        output = result.to_output()
        exam: Exam = result.exam
        output["exam"] = exam.to_output(fields=["title", "total_marks", "passing_marks"])

        questions = {q.id: q for q in self.questions.list_for_exam(exam)}
        for item, answer in zip(output["answers"], result.answers):
            question = questions.get(answer.question_id)
            item["question"] = question.to_output(fields=["question_text", "options", "correct_answer"]) if question else None
        return output

    def _parse_answers(self, answers: Sequence[SubmittedAnswer | dict]) -> list[SubmittedAnswer]:
        if not isinstance(answers, (list, tuple)) or not answers:
            raise InvalidAnswersError()
        try:
            return [a if isinstance(a, SubmittedAnswer) else SubmittedAnswer.model_validate(a) for a in answers]
        except ValidationError as exc:
            raise InvalidAnswersError(
                message="; ".join(err["msg"] for err in exc.errors()),
                detail=exc.errors(include_url=False, include_context=False, include_input=False),
            ) from exc

    def _finalize(self, attempt: Attempt, result: Result) -> None:
        with self.db.transaction() as session:
            # Claiming the attempt first is what makes a racing second submit lose.
            try:
                claimed = self.attempts.complete_if_in_progress(attempt.id, session=session)
            except OperationFailure as exc:
                if exc.code != WRITE_CONFLICT:
                    raise
                raise AlreadySubmittedError() from exc
            if claimed is None:
                raise AlreadySubmittedError()

            try:
                self.results.insert(result, session=session)
            except DuplicateKeyError as exc:
                raise AlreadySubmittedError() from exc
            except PyMongoError as exc:
                if session is None:
                    logger.error("Storing result for attempt %s failed, reopening the attempt", attempt.id)
                    self.attempts.reopen(attempt.id)
                raise UpstreamFailureError() from exc
