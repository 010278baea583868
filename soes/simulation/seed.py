from __future__ import annotations

from soes.connections.mongo import Database
from soes.models.exam import Exam
from soes.models.user import User
from soes.services.auth import UserStore
from soes.services.catalog import ExamCatalog, QuestionStore
from soes.utils.base import Role


SEED_EXAM_TITLE = "Anti-Cheat Verification Exam"

USER_FIXTURES = [
    ("Test Admin", "testadmin@example.com", "password123", Role.ADMIN),
    ("Test Student", "test@student.com", "password123", Role.STUDENT),
]

QUESTION_FIXTURES = [
    {
        "question_text": "What is the capital of France?",
        "options": ["Paris", "London", "Berlin", "Madrid"],
        "correct_answer": 0,
        "marks": 5,
    },
    {
        "question_text": "Which planet is known as the Red Planet?",
        "options": ["Earth", "Mars", "Jupiter", "Saturn"],
        "correct_answer": 1,
        "marks": 5,
    },
]


def _ensure_users(db: Database) -> dict[str, User]:
    store = UserStore(db)
    users: dict[str, User] = {}
    for name, email, pwd, role in USER_FIXTURES:
        user = store.find_by_email(email)
        if not user:
            user = store.register(name=name, email=email, password=pwd, role=role)
        users[role.value] = user
    return users


def _ensure_exam(db: Database, admin: User) -> Exam:
    existing = Exam.objects(title=SEED_EXAM_TITLE).first()
    if existing:
        return existing
    exam = ExamCatalog(db).create(
        admin,
        title=SEED_EXAM_TITLE,
        description="This exam is used to verify the anti-cheat features.",
        duration=10,
        total_marks=10,
        passing_marks=4,
    )
    QuestionStore(db).add_many(exam, QUESTION_FIXTURES)
    return exam


def seed(db: Database) -> dict:
    """Create the test admin, test student and a two-question exam if missing."""
    users = _ensure_users(db)
    exam = _ensure_exam(db, users[Role.ADMIN.value])
    return {
        "admin_id": str(users[Role.ADMIN.value].id),
        "student_id": str(users[Role.STUDENT.value].id),
        "exam_id": str(exam.id),
    }


if __name__ == "__main__":
    database = Database.connect()
    try:
        database.ensure_indexes()
        print(seed(database))
        print("Seed completed.")
    finally:
        database.close()
