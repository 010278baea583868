from mongoengine import CASCADE, DateTimeField, ReferenceField, StringField

from soes.models.base import BaseDocument
from soes.models.exam import Exam
from soes.models.user import User
from soes.utils.base import AttemptStatus


class Attempt(BaseDocument):
    """A student's single attempt at an exam.

    Fields:
    - student/exam (refs): unique together
    - status (str): in-progress/completed
    - started_at (datetime), completed_at (datetime|None): set on completion
    """
    student = ReferenceField(document_type=User, required=True, null=False, reverse_delete_rule=CASCADE)
    exam = ReferenceField(document_type=Exam, required=True, null=False, reverse_delete_rule=CASCADE)
    status = StringField(required=True, null=False, choices=AttemptStatus.choices(), default=AttemptStatus.IN_PROGRESS.value)
    started_at = DateTimeField(required=True, null=False)
    completed_at = DateTimeField(required=False, null=True)

    meta = {
        "collection": "attempts",
        "indexes": [
            # One attempt per student per exam; start_attempt relies on it under concurrency.
            {"fields": ["student", "exam"], "unique": True},
            {"fields": ["exam", "status"]},
        ],
    }

    @property
    def in_progress(self) -> bool:
        return self.status == AttemptStatus.IN_PROGRESS.value
