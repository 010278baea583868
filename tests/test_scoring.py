from contextlib import contextmanager, nullcontext
from types import SimpleNamespace

import pytest
from bson.objectid import ObjectId
from pymongo.errors import AutoReconnect, OperationFailure

from soes.connections.mongo import Database
from soes.models.attempt import Attempt
from soes.models.question import Question
from soes.models.result import Result
from soes.services.attempt import AttemptEngine, AttemptStore
from soes.services.scoring import ResultStore, ScoringEngine, SubmittedAnswer, evaluate_answers, grade
from soes.utils.base import AttemptStatus
from soes.utils.base.errors import (
    AlreadySubmittedError,
    ExamNotFoundError,
    ForbiddenError,
    InvalidAnswersError,
    InvalidIdError,
    NoActiveAttemptError,
    UpstreamFailureError,
)

from conftest import make_user


def _question(correct: int, marks: int = 5) -> Question:
    return Question(
        id=ObjectId(),
        exam=ObjectId(),
        question_text="q",
        options=["a", "b", "c", "d"],
        correct_answer=correct,
        marks=marks,
    )


def _answer(question: Question, selected: int) -> SubmittedAnswer:
    return SubmittedAnswer(question_id=str(question.id), selected_answer=selected)


class TestEvaluateAnswers:
    def test_one_right_one_wrong(self):
        q1, q2 = _question(0), _question(1)
        score, evaluated = evaluate_answers([q1, q2], [_answer(q1, 0), _answer(q2, 2)])

        assert score == 5
        assert [(e.question_id, e.is_correct, e.marks_obtained) for e in evaluated] == [
            (q1.id, True, 5),
            (q2.id, False, 0),
        ]
        assert grade(score, total_marks=10, passing_marks=4) == (50.0, True)

    def test_unknown_question_is_skipped(self):
        q1 = _question(0)
        stranger = SubmittedAnswer(question_id=str(ObjectId()), selected_answer=0)

        score, evaluated = evaluate_answers([q1], [stranger, _answer(q1, 0)])

        assert score == 5
        assert [e.question_id for e in evaluated] == [q1.id]

    def test_unanswered_question_has_no_entry(self):
        q1, q2 = _question(0), _question(1)

        score, evaluated = evaluate_answers([q1, q2], [_answer(q2, 1)])

        assert score == 5
        assert len(evaluated) == 1
        assert evaluated[0].question_id == q2.id

    def test_every_repeated_answer_is_scored(self):
        q1 = _question(0)

        score, evaluated = evaluate_answers([q1], [_answer(q1, 0), _answer(q1, 0)])

        assert score == 10
        assert [(e.question_id, e.marks_obtained) for e in evaluated] == [(q1.id, 5), (q1.id, 5)]

    def test_repeated_answers_scored_independently(self):
        q1 = _question(0)

        score, evaluated = evaluate_answers([q1], [_answer(q1, 1), _answer(q1, 0)])

        assert score == 5
        assert [e.is_correct for e in evaluated] == [False, True]

    def test_no_partial_credit(self):
        q1 = _question(3, marks=7)
        score, evaluated = evaluate_answers([q1], [_answer(q1, 2)])
        assert score == 0
        assert evaluated[0].marks_obtained == 0


class TestGrade:
    def test_exact_threshold_passes(self):
        assert grade(4, total_marks=10, passing_marks=4) == (40.0, True)

    def test_below_threshold_fails(self):
        assert grade(3, total_marks=10, passing_marks=4) == (30.0, False)

    @pytest.mark.parametrize("score,total,expected", [(1, 3, 33.33), (2, 3, 66.67), (1, 8, 12.5), (1, 6, 16.67)])
    def test_percentage_two_decimals(self, score, total, expected):
        assert grade(score, total_marks=total, passing_marks=0)[0] == expected


class TestSubmitAttempt:
    def _start(self, db, student, exam):
        return AttemptEngine(db).start_attempt(student.id, str(exam.id))

    def test_submit_scores_and_completes_attempt(self, db, student, exam_with_questions):
        exam, (q1, q2) = exam_with_questions
        self._start(db, student, exam)

        outcome = ScoringEngine(db).submit_attempt(
            student.id,
            str(exam.id),
            [{"question_id": str(q1.id), "selected_answer": 0}, {"question_id": str(q2.id), "selected_answer": 2}],
            time_taken=120,
        )

        assert outcome["score"] == 5
        assert outcome["total_marks"] == 10
        assert outcome["percentage"] == 50.0
        assert outcome["passed"] is True
        assert outcome["passing_marks"] == 4

        stored = Result.objects(id=ObjectId(outcome["result_id"])).first()
        assert stored.time_taken == 120
        assert [a.is_correct for a in stored.answers] == [True, False]

        attempt = Attempt.objects(student=student.id, exam=exam.id).first()
        assert attempt.status == AttemptStatus.COMPLETED.value
        assert attempt.completed_at is not None

    def test_second_submit_is_rejected_and_changes_nothing(self, db, student, exam_with_questions):
        exam, (q1, q2) = exam_with_questions
        self._start(db, student, exam)
        engine = ScoringEngine(db)
        first = engine.submit_attempt(student.id, str(exam.id), [{"question_id": str(q1.id), "selected_answer": 0}])

        with pytest.raises(AlreadySubmittedError) as err:
            engine.submit_attempt(
                student.id,
                str(exam.id),
                [{"question_id": str(q1.id), "selected_answer": 0}, {"question_id": str(q2.id), "selected_answer": 1}],
            )

        assert err.value.code == "already-submitted"
        assert Result.objects(exam=exam.id).count() == 1
        stored = Result.objects(id=ObjectId(first["result_id"])).first()
        assert stored.score == 5
        assert stored.percentage == 50.0

    def test_submit_without_attempt(self, db, student, exam_with_questions):
        exam, (q1, _) = exam_with_questions
        with pytest.raises(NoActiveAttemptError):
            ScoringEngine(db).submit_attempt(student.id, str(exam.id), [{"question_id": str(q1.id), "selected_answer": 0}])

    def test_submit_unknown_exam(self, db, student):
        with pytest.raises(ExamNotFoundError):
            ScoringEngine(db).submit_attempt(student.id, str(ObjectId()), [{"question_id": str(ObjectId()), "selected_answer": 0}])

    def test_malformed_exam_id(self, db, student):
        with pytest.raises(InvalidIdError):
            ScoringEngine(db).submit_attempt(student.id, "not-an-id", [{"question_id": str(ObjectId()), "selected_answer": 0}])

    @pytest.mark.parametrize("answers", [
        [],
        "0,1",
        [{"question_id": "abc", "selected_answer": 0}],
        [{"question_id": str(ObjectId()), "selected_answer": 4}],
        [{"question_id": str(ObjectId())}],
    ])
    def test_invalid_answers_shape(self, db, student, exam_with_questions, answers):
        exam, _ = exam_with_questions
        self._start(db, student, exam)

        with pytest.raises(InvalidAnswersError) as err:
            ScoringEngine(db).submit_attempt(student.id, str(exam.id), answers)

        assert err.value.code == "invalid-answers-shape"
        assert Result.objects.count() == 0

    def test_failed_result_write_reopens_attempt(self, db, student, exam_with_questions, monkeypatch):
        exam, (q1, _) = exam_with_questions
        self._start(db, student, exam)
        answers = [{"question_id": str(q1.id), "selected_answer": 0}]

        def broken_insert(self, result, session=None):
            raise AutoReconnect("connection reset")

        with monkeypatch.context() as patch:
            patch.setattr(ResultStore, "insert", broken_insert)
            with pytest.raises(UpstreamFailureError) as err:
                ScoringEngine(db).submit_attempt(student.id, str(exam.id), answers)
        assert err.value.retryable

        attempt = Attempt._get_collection().find_one({"student": student.id, "exam": exam.id})
        assert attempt["status"] == AttemptStatus.IN_PROGRESS.value
        assert "completed_at" not in attempt
        assert Result.objects.count() == 0

        outcome = ScoringEngine(db).submit_attempt(student.id, str(exam.id), answers)
        assert outcome["score"] == 5


class TestTransactionalSubmit:
    """Submit with a session: both writes join it and the attempt is never reopened."""

    session = object()

    def _use_session(self, db, monkeypatch):
        calls = {"complete": [], "insert": [], "reopen": []}
        real_complete = AttemptStore.complete_if_in_progress
        real_insert = ResultStore.insert

        def complete(self, attempt_id, session=None):
            calls["complete"].append(session)
            # The in-memory store has no sessions; the real write runs without one
            return real_complete(self, attempt_id)

        def insert(self, result, session=None):
            calls["insert"].append(session)
            return real_insert(self, result)

        def reopen(self, attempt_id):
            calls["reopen"].append(attempt_id)

        monkeypatch.setattr(db, "transaction", lambda: nullcontext(self.session))
        monkeypatch.setattr(AttemptStore, "complete_if_in_progress", complete)
        monkeypatch.setattr(ResultStore, "insert", insert)
        monkeypatch.setattr(AttemptStore, "reopen", reopen)
        return calls

    def test_both_writes_receive_the_session(self, db, student, exam_with_questions, monkeypatch):
        exam, (q1, _) = exam_with_questions
        AttemptEngine(db).start_attempt(student.id, str(exam.id))
        calls = self._use_session(db, monkeypatch)

        outcome = ScoringEngine(db).submit_attempt(student.id, str(exam.id), [{"question_id": str(q1.id), "selected_answer": 0}])

        assert outcome["score"] == 5
        assert calls["complete"] == [self.session]
        assert calls["insert"] == [self.session]
        assert calls["reopen"] == []

    def test_insert_failure_leaves_rollback_to_the_transaction(self, db, student, exam_with_questions, monkeypatch):
        exam, (q1, _) = exam_with_questions
        AttemptEngine(db).start_attempt(student.id, str(exam.id))
        calls = self._use_session(db, monkeypatch)

        def broken_insert(self, result, session=None):
            calls["insert"].append(session)
            raise AutoReconnect("connection reset")

        monkeypatch.setattr(ResultStore, "insert", broken_insert)

        with pytest.raises(UpstreamFailureError):
            ScoringEngine(db).submit_attempt(student.id, str(exam.id), [{"question_id": str(q1.id), "selected_answer": 0}])

        assert calls["insert"] == [self.session]
        assert calls["reopen"] == []

    def test_write_conflict_is_already_submitted(self, db, student, exam_with_questions, monkeypatch):
        exam, (q1, _) = exam_with_questions
        AttemptEngine(db).start_attempt(student.id, str(exam.id))
        calls = self._use_session(db, monkeypatch)

        def conflicting_complete(self, attempt_id, session=None):
            raise OperationFailure("Write conflict during plan execution", code=112)

        monkeypatch.setattr(AttemptStore, "complete_if_in_progress", conflicting_complete)

        with pytest.raises(AlreadySubmittedError):
            ScoringEngine(db).submit_attempt(student.id, str(exam.id), [{"question_id": str(q1.id), "selected_answer": 0}])

        assert calls["insert"] == []
        assert Result.objects.count() == 0

    def test_other_operation_failures_propagate(self, db, student, exam_with_questions, monkeypatch):
        exam, (q1, _) = exam_with_questions
        AttemptEngine(db).start_attempt(student.id, str(exam.id))
        self._use_session(db, monkeypatch)

        def failing_complete(self, attempt_id, session=None):
            raise OperationFailure("not authorized", code=13)

        monkeypatch.setattr(AttemptStore, "complete_if_in_progress", failing_complete)

        with pytest.raises(OperationFailure):
            ScoringEngine(db).submit_attempt(student.id, str(exam.id), [{"question_id": str(q1.id), "selected_answer": 0}])


class TestResultDetail:
    def test_owner_sees_answers_with_questions(self, db, student, exam_with_questions):
        exam, (q1, q2) = exam_with_questions
        AttemptEngine(db).start_attempt(student.id, str(exam.id))
        outcome = ScoringEngine(db).submit_attempt(student.id, str(exam.id), [{"question_id": str(q2.id), "selected_answer": 1}])

        detail = ScoringEngine(db).get_result_for_student(student.id, outcome["result_id"])

        assert detail["exam"]["title"] == exam.title
        assert detail["student_id"] == str(student.id)
        assert detail["answers"][0]["question"]["correct_answer"] == 1
        assert detail["answers"][0]["question"]["question_text"] == q2.question_text

    def test_other_student_is_forbidden(self, db, student, exam_with_questions):
        exam, (q1, _) = exam_with_questions
        AttemptEngine(db).start_attempt(student.id, str(exam.id))
        outcome = ScoringEngine(db).submit_attempt(student.id, str(exam.id), [{"question_id": str(q1.id), "selected_answer": 0}])
        other = make_user(db)

        with pytest.raises(ForbiddenError):
            ScoringEngine(db).get_result_for_student(other.id, outcome["result_id"])

    def test_results_listing_for_student_and_exam(self, db, student, exam_with_questions):
        exam, (q1, _) = exam_with_questions
        rival = make_user(db)
        for who, selected in ((student, 0), (rival, 3)):
            AttemptEngine(db).start_attempt(who.id, str(exam.id))
            ScoringEngine(db).submit_attempt(who.id, str(exam.id), [{"question_id": str(q1.id), "selected_answer": selected}])

        mine = ResultStore(db).list_for_student(student.id)
        assert len(mine) == 1
        assert mine[0]["exam"]["passing_marks"] == 4

        ranked = ResultStore(db).list_for_exam(exam)
        assert [r["score"] for r in ranked] == [5, 0]
        assert ranked[0]["student"]["id"] == str(student.id)

        everything = ResultStore(db).list_all()
        assert {r["student"]["email"] for r in everything} == {student.email, rival.email}


class RecordingSession:
    def __init__(self, log):
        self.log = log

    def __enter__(self):
        self.log.append("session")
        return self

    def __exit__(self, *exc):
        self.log.append("end-session")

    @contextmanager
    def start_transaction(self):
        self.log.append("transaction")
        yield
        self.log.append("commit")


class TestDatabaseTransaction:
    def test_disabled_yields_no_session(self, db):
        with db.transaction() as session:
            assert session is None

    def test_enabled_wraps_a_transaction(self, db, monkeypatch):
        log = []
        client = SimpleNamespace(start_session=lambda: RecordingSession(log))
        monkeypatch.setattr(Database, "client", property(lambda self: client))
        monkeypatch.setattr(db, "transactions", True)

        with db.transaction() as session:
            assert isinstance(session, RecordingSession)
            log.append("work")

        assert log == ["session", "transaction", "work", "commit", "end-session"]
