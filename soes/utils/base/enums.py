from enum import Enum


class BaseEnum(Enum):
    @classmethod
    def choices(cls):
        return [(item.value, item.name) for item in cls]

    @classmethod
    def values(cls) -> list[str]:
        return [item.value for item in cls]


class Role(str, BaseEnum):
    ADMIN = "admin"
    STUDENT = "student"


class AttemptStatus(str, BaseEnum):
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
