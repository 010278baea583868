from mongoengine import BooleanField, IntField, NULLIFY, ReferenceField, StringField, ValidationError

from soes.models.base import BaseDocument
from soes.models.user import User


class Exam(BaseDocument):
    """Exam document.

    Fields:
    - title/description (str)
    - duration (int): minutes
    - total_marks (int >= 1) / passing_marks (0 <= passing <= total)
    - is_active (bool): only active exams can be started
    - question_count (int): kept in sync with the questions collection
    - created_by (ref): owning admin, cleared if the account is deleted
    """
    title = StringField(required=True, null=False, min_length=1, max_length=100)
    description = StringField(required=False, null=True, max_length=500)
    duration = IntField(required=True, null=False, min_value=1)
    total_marks = IntField(required=True, null=False, min_value=1)
    passing_marks = IntField(required=True, null=False, min_value=0)
    is_active = BooleanField(required=True, null=False, default=True)
    question_count = IntField(required=True, null=False, default=0, min_value=0)
    created_by = ReferenceField(document_type=User, required=False, null=True, reverse_delete_rule=NULLIFY)

    meta = {
        "collection": "exams",
        "indexes": [
            {"fields": ["-created_at"]},
            {"fields": ["is_active"]},
        ],
    }

    def clean(self):
        if self.passing_marks is not None and self.total_marks is not None and self.passing_marks > self.total_marks:
            raise ValidationError("Passing marks cannot exceed total marks")

    def public_output(self) -> dict:
        """Exam metadata safe to show a student."""
        return self.to_output(fields=["title", "description", "duration", "total_marks", "passing_marks", "question_count"])

    def to_output(self, fields=None, exclude=None):
        """Creator is rendered as its id; callers wanting the summary load it themselves."""
        exclude = list(exclude or []) + ["metadata"]
        output = super().to_output(fields, exclude + ["created_by"])
        if "created_by" not in exclude and (fields is None or "created_by" in fields):
            creator = self.reference_id("created_by")
            output["created_by"] = str(creator) if creator else None
        return output
