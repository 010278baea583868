from mongoengine import (
    BooleanField,
    CASCADE,
    DateTimeField,
    EmbeddedDocumentField,
    FloatField,
    IntField,
    ListField,
    ObjectIdField,
    ReferenceField,
)

from soes.models.base import BaseDocument, BaseEmbeddedDocument, utcnow
from soes.models.exam import Exam
from soes.models.user import User


class EvaluatedAnswer(BaseEmbeddedDocument):
    """Embedded: outcome of one submitted answer.

    Fields:
    - question_id (ObjectId): weak reference, the question may be deleted later
    - selected_answer (int), is_correct (bool), marks_obtained (int)
    """
    question_id = ObjectIdField(required=True, null=False)
    selected_answer = IntField(required=True, null=False)
    is_correct = BooleanField(required=True, null=False)
    marks_obtained = IntField(required=True, null=False, default=0)


class Result(BaseDocument):
    """Immutable scored outcome of a completed attempt.

    Fields:
    - student/exam (refs)
    - score (int), total_marks/passing_marks (int): snapshot of the exam at submission
    - percentage (float): two decimals
    - passed (bool)
    - answers (list[EvaluatedAnswer]): in submission order, matched questions only
    - time_taken (int|None): seconds
    - submitted_at (datetime)
    """
    student = ReferenceField(document_type=User, required=True, null=False, reverse_delete_rule=CASCADE)
    exam = ReferenceField(document_type=Exam, required=True, null=False, reverse_delete_rule=CASCADE)
    score = IntField(required=True, null=False, min_value=0)
    total_marks = IntField(required=True, null=False)
    passing_marks = IntField(required=True, null=False)
    percentage = FloatField(required=True, null=False)
    passed = BooleanField(required=True, null=False)
    answers = ListField(EmbeddedDocumentField(EvaluatedAnswer), required=False, null=False, default=list)
    time_taken = IntField(required=False, null=True, min_value=0)
    submitted_at = DateTimeField(required=True, null=False, default=utcnow)

    meta = {
        "collection": "results",
        "indexes": [
            {"fields": ["student", "exam"], "unique": True},
            {"fields": ["exam", "-score"]},
            {"fields": ["-submitted_at"]},
        ],
    }

    def to_output(self, fields=None, exclude=None):
        # References are rendered by the callers that need them
        output = super().to_output(fields, list(exclude or []) + ["student", "exam", "metadata"])
        output["student_id"] = str(self.reference_id("student"))
        output["exam_id"] = str(self.reference_id("exam"))
        return output
