import fakeredis
import mongomock
import pytest
from fastapi.testclient import TestClient

from soes.connections.mongo import Database, get_database
from soes.connections.redis import get_redis
from soes.models.exam import Exam
from soes.models.question import Question
from soes.models.user import User
from soes.services.catalog import ExamCatalog, QuestionStore
from soes.simulation.seed import QUESTION_FIXTURES
from soes.utils.base import Role
from soes.utils.config import Settings


@pytest.fixture
def db():
    config = Settings(mongo_url=None, mongo_host="localhost", mongo_db="soes_test", mongo_transactions=False)
    database = Database.connect(config, mongo_client_class=mongomock.MongoClient)
    database.ensure_indexes()
    yield database
    database.drop()
    database.close()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def client(db, redis_client):
    from main import app

    app.dependency_overrides[get_database] = lambda: db
    app.dependency_overrides[get_redis] = lambda: redis_client
    # Lifespan is not entered: no live MongoDB or redis is needed.
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(db: Database, role: Role = Role.STUDENT, email: str | None = None) -> User:
    user = User(
        name=f"{role.value} user",
        email=email or f"{role.value}-{User.objects.count()}@example.com",
        password="not-a-real-hash",
        role=role.value,
    )
    user.save()
    return user


def make_exam(db: Database, admin: User, questions=None, **overrides) -> tuple[Exam, list[Question]]:
    fields = {"title": "Geography", "duration": 10, "total_marks": 10, "passing_marks": 4}
    fields.update(overrides)
    exam = ExamCatalog(db).create(admin, **fields)
    created = []
    if questions:
        created = QuestionStore(db).add_many(exam, questions)
    return exam, created


TWO_QUESTIONS = QUESTION_FIXTURES


@pytest.fixture
def admin(db):
    return make_user(db, Role.ADMIN)


@pytest.fixture
def student(db):
    return make_user(db, Role.STUDENT)


@pytest.fixture
def exam_with_questions(db, admin):
    return make_exam(db, admin, questions=TWO_QUESTIONS)
