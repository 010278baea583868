from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from soes.connections.mongo import Database, get_database
from soes.models.user import User
from soes.services.attempt import AttemptEngine
from soes.services.auth import require_role
from soes.services.rate_limit import limit_route
from soes.services.scoring import ResultStore, ScoringEngine, SubmittedAnswer
from soes.utils.base import Role
from soes.utils.base.responses import success
from soes.utils.config import settings


router = APIRouter()

student_only = require_role(Role.STUDENT)


@router.get("/exams")
def list_available_exams(
    current_user: User = Depends(student_only),
    db: Database = Depends(get_database),
) -> dict:
    """STUDENT: Active exams with the caller's attempt status."""
    exams = AttemptEngine(db).available_exams(current_user.id)
    return success(exams, count=len(exams))


@router.get("/exam/{exam_id}/start")
def start_exam(
    exam_id: str,
    current_user: User = Depends(student_only),
    db: Database = Depends(get_database),
) -> dict:
    """STUDENT: Start or resume the caller's attempt; questions come without answers."""
    data = AttemptEngine(db).start_attempt(current_user.id, exam_id)
    message = "Exam started successfully (resumed)" if data["resumed"] else "Exam started successfully"
    return success(data, message=message)


class SubmitExamBody(BaseModel):
    answers: list[SubmittedAnswer] = Field(min_length=1)
    time_taken: int | None = Field(default=None, ge=0)

@router.post(
    "/exam/{exam_id}/submit",
    status_code=201,
    dependencies=[Depends(limit_route(lambda: settings.submit_cooldown_seconds))],
)
def submit_exam(
    exam_id: str,
    body: SubmitExamBody,
    current_user: User = Depends(student_only),
    db: Database = Depends(get_database),
) -> dict:
    """STUDENT | RATE-LIMITED: Score the caller's answers and close the attempt."""
    data = ScoringEngine(db).submit_attempt(current_user.id, exam_id, body.answers, body.time_taken)
    return success(data, message="Exam submitted successfully")


@router.get("/results")
def my_results(
    current_user: User = Depends(student_only),
    db: Database = Depends(get_database),
) -> dict:
    results = ResultStore(db).list_for_student(current_user.id)
    return success(results, count=len(results))


@router.get("/result/{result_id}")
def result_detail(
    result_id: str,
    current_user: User = Depends(student_only),
    db: Database = Depends(get_database),
) -> dict:
    return success(ScoringEngine(db).get_result_for_student(current_user.id, result_id))


@router.get("/check-attempt/{exam_id}")
def check_attempt(
    exam_id: str,
    current_user: User = Depends(student_only),
    db: Database = Depends(get_database),
) -> dict:
    return success(AttemptEngine(db).check_attempt(current_user.id, exam_id))
