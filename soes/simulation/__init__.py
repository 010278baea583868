from __future__ import annotations

import random
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from bson.objectid import ObjectId

from soes.connections.mongo import Database
from soes.models.attempt import Attempt
from soes.models.question import OPTION_COUNT, Question
from soes.services.attempt import AttemptEngine
from soes.services.catalog import ExamCatalog, QuestionStore
from soes.services.scoring import ScoringEngine
from soes.utils.base.errors import AppError


def _random_answers(questions: list[Question]) -> list[dict[str, Any]]:
    """Pick a random option for each question (may be right or wrong)."""
    return [
        {"question_id": str(q.id), "selected_answer": random.randrange(OPTION_COUNT)}
        for q in questions
    ]


def simulate_concurrent_start(db: Database, student_id: str, exam_id: str, workers: int = 10) -> dict:
    """Fire `workers` simultaneous starts for one student, then submit twice.

    Reports how many starts created an attempt (expected: at most one), how
    many attempt documents exist for the pair, and the outcome of a repeated
    submission.
    """
    engine = AttemptEngine(db)
    student = ObjectId(student_id)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        starts = list(pool.map(lambda _: engine.start_attempt(student, exam_id), range(workers)))

    attempt_ids = {s["attempt_id"] for s in starts}
    stored = Attempt.objects(student=student, exam=ObjectId(exam_id)).count()

    scoring = ScoringEngine(db)
    exam = ExamCatalog(db).get(exam_id)
    answers = _random_answers(QuestionStore(db).list_for_exam(exam))
    submissions: list[Any] = []
    for _ in range(2):
        try:
            submissions.append(scoring.submit_attempt(student, exam_id, answers))
        except AppError as exc:
            submissions.append({"error": exc.code})

    return {
        "starts": len(starts),
        "created": sum(1 for s in starts if not s["resumed"]),
        "distinct_attempts": len(attempt_ids),
        "stored_attempts": stored,
        "submissions": submissions,
    }
