from mongoengine import CASCADE, IntField, ListField, ReferenceField, StringField, ValidationError

from soes.models.base import BaseDocument
from soes.models.exam import Exam


OPTION_COUNT = 4


def _four_options(value: list) -> None:
    if len(value) != OPTION_COUNT:
        raise ValidationError(f"Must provide exactly {OPTION_COUNT} options")


class Question(BaseDocument):
    """Multiple-choice question owned by an exam.

    Fields:
    - exam (ref): deleted with its exam
    - question_text (str)
    - options (list[str]): exactly four
    - correct_answer (int): index 0-3
    - marks (int >= 1)
    """
    exam = ReferenceField(document_type=Exam, required=True, null=False, reverse_delete_rule=CASCADE)
    question_text = StringField(required=True, null=False, min_length=1)
    options = ListField(StringField(required=True), required=True, null=False, validation=_four_options)
    correct_answer = IntField(required=True, null=False, min_value=0, max_value=OPTION_COUNT - 1)
    marks = IntField(required=True, null=False, default=1, min_value=1)

    meta = {
        "collection": "questions",
        "indexes": [
            {"fields": ["exam"]},
        ],
    }

    def to_student_output(self, number: int) -> dict:
        """Numbered view without the correct answer."""
        return {
            "id": str(self.id),
            "question_number": number,
            "question_text": self.question_text,
            "options": list(self.options),
            "marks": self.marks,
        }
