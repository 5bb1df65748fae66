from enum import Enum
from typing import List, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_STATE = "invalid_state"


class LibraryError(Exception):
    """Базова помилка бізнес-логіки. HTTP-статус визначає app.main."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, feedback: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.feedback = feedback or []

    def to_dict(self) -> dict:
        body = {"detail": self.message, "kind": self.kind.value}
        if self.feedback:
            body["feedback"] = self.feedback
        return body


class InvalidInputError(LibraryError):
    kind = ErrorKind.VALIDATION


class NotFoundError(LibraryError):
    kind = ErrorKind.NOT_FOUND


class ConflictError(LibraryError):
    kind = ErrorKind.CONFLICT


class InvalidStateError(LibraryError):
    kind = ErrorKind.INVALID_STATE
