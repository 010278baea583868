from mongoengine import EmailField, StringField

from soes.models.base import BaseDocument
from soes.utils.base import Role


class User(BaseDocument):
    """User document.

    Fields:
    - name (str): Full name
    - email (EmailStr, unique): Login identifier, stored lowercased
    - password (str, hashed): Bcrypt-hashed password
    - role (str): admin/student
    - token_version (str): Incremented on logout to invalidate tokens
    """
    name = StringField(required=True, null=False, max_length=50)
    password = StringField(required=True, null=False)
    email = EmailField(required=True, null=False, unique=True)
    role = StringField(required=True, null=False, choices=Role.choices(), default=Role.STUDENT.value)
    token_version = StringField(required=True, null=False, default="1")

    meta = {
        "collection": "users",
        "indexes": [
            {"fields": ["email"], "unique": True},
        ],
    }

    def to_output(self, fields=None, exclude=None):
        return super().to_output(fields, list(exclude or []) + ["password", "token_version", "metadata"])

    def summary(self) -> dict:
        return {"id": str(self.id), "name": self.name, "email": self.email}
