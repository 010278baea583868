from soes.utils.base.enums import BaseEnum, Role, AttemptStatus
from soes.utils.base.errors import AppError, ErrorKind

__all__ = ["BaseEnum", "Role", "AttemptStatus", "AppError", "ErrorKind"]
