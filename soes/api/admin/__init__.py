from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from soes.connections.mongo import Database, get_database
from soes.models.question import OPTION_COUNT
from soes.models.user import User
from soes.services.auth import require_role
from soes.services.catalog import ExamCatalog, QuestionStore
from soes.services.scoring import ResultStore
from soes.utils.base import Role
from soes.utils.base.responses import success


admin_only = require_role(Role.ADMIN)

# All routes are protected and only accessible by admins
router = APIRouter(dependencies=[Depends(admin_only)])


class CreateExamBody(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    duration: int = Field(ge=1)
    total_marks: int = Field(ge=1)
    passing_marks: int = Field(ge=0)

@router.post("/exam/create", status_code=201)
def create_exam(
    body: CreateExamBody,
    current_user: User = Depends(admin_only),
    db: Database = Depends(get_database),
) -> dict:
    """ADMIN: Create an exam owned by the current admin."""
    exam = ExamCatalog(db).create(current_user, **body.model_dump())
    return success(exam.to_output(), message="Exam created successfully")


class QuestionBody(BaseModel):
    question_text: str = Field(min_length=1)
    options: list[str] = Field(min_length=OPTION_COUNT, max_length=OPTION_COUNT)
    correct_answer: int = Field(ge=0, le=OPTION_COUNT - 1)
    marks: int = Field(default=1, ge=1)


class AddQuestionsBody(BaseModel):
    questions: list[QuestionBody] = Field(min_length=1)

@router.post("/exam/{exam_id}/questions", status_code=201)
def add_questions(exam_id: str, body: AddQuestionsBody, db: Database = Depends(get_database)) -> dict:
    """ADMIN: Bulk-add questions to an exam and resync its question count."""
    exam = ExamCatalog(db).get(exam_id)
    created = QuestionStore(db).add_many(exam, [q.model_dump() for q in body.questions])
    return success(
        {
            "exam": exam.to_output(),
            "questions_added": len(created),
            "total_questions": exam.question_count,
        },
        message=f"{len(created)} questions added successfully",
    )


@router.get("/exams")
def list_exams(db: Database = Depends(get_database)) -> dict:
    exams = ExamCatalog(db).list_all()
    return success(exams, count=len(exams))


@router.get("/exam/{exam_id}")
def get_exam(exam_id: str, db: Database = Depends(get_database)) -> dict:
    """ADMIN: Exam with its full questions, correct answers included."""
    exam = ExamCatalog(db).get(exam_id)
    questions = QuestionStore(db).list_for_exam(exam)
    return success({
        "exam": exam.to_output(),
        "questions": [q.to_output(exclude=["exam", "metadata"]) for q in questions],
    })


class UpdateExamBody(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    duration: int | None = Field(default=None, ge=1)
    total_marks: int | None = Field(default=None, ge=1)
    passing_marks: int | None = Field(default=None, ge=0)
    is_active: bool | None = None

@router.put("/exam/{exam_id}")
def update_exam(exam_id: str, body: UpdateExamBody, db: Database = Depends(get_database)) -> dict:
    exam = ExamCatalog(db).update(exam_id, body.model_dump(exclude_unset=True))
    return success(exam.to_output(), message="Exam updated successfully")


@router.delete("/exam/{exam_id}")
def delete_exam(exam_id: str, db: Database = Depends(get_database)) -> dict:
    """ADMIN: Delete an exam with its questions, attempts and results."""
    ExamCatalog(db).delete(exam_id)
    return success(message="Exam and associated data deleted successfully")


@router.get("/results")
def list_results(db: Database = Depends(get_database)) -> dict:
    results = ResultStore(db).list_all()
    return success(results, count=len(results))


@router.get("/exam/{exam_id}/results")
def exam_results(exam_id: str, db: Database = Depends(get_database)) -> dict:
    """ADMIN: Results of one exam, highest score first."""
    exam = ExamCatalog(db).get(exam_id)
    results = ResultStore(db).list_for_exam(exam)
    return success(
        results,
        exam={"title": exam.title, "total_marks": exam.total_marks},
        count=len(results),
    )


@router.delete("/question/{question_id}")
def delete_question(question_id: str, db: Database = Depends(get_database)) -> dict:
    QuestionStore(db).delete(question_id)
    return success(message="Question deleted successfully")
