"""
Domain exceptions
Services raise these; the handlers in main.py turn them into HTTP responses.

    from eqms.core.exceptions import NotFoundError, InvalidStatusError

    raise NotFoundError("Deviation", deviation_id)
    raise InvalidStatusError("Deviation", current="Draft", expected=["Accepted By QA"])
"""
from typing import Iterable, Optional


class QmsError(Exception):
    """Base class for all domain errors"""

    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(QmsError):
    """Missing or malformed input, or a business-rule violation on input"""

    status_code = 400


class ConflictError(QmsError):
    """A unique value already exists"""

    status_code = 400

    def __init__(self, resource: str, field: str, value: Optional[str] = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field} '{value}' already exists")


class NotFoundError(QmsError):
    """Referenced entity does not exist"""

    status_code = 404

    def __init__(self, resource: str, resource_id: Optional[str] = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource} not found"
        if resource_id is not None:
            msg = f"{resource} not found: {resource_id}"
        super().__init__(msg)


class InvalidStatusError(QmsError):
    """The entity is not in a status that allows the requested action"""

    status_code = 400

    def __init__(
        self,
        resource: str,
        current: Optional[str],
        expected: Iterable[str] = (),
        message: Optional[str] = None,
    ) -> None:
        self.resource = resource
        self.current = current
        self.expected = list(expected)
        if message is None:
            message = f"{resource} is in status '{current}'"
            if self.expected:
                message += f"; expected one of: {', '.join(self.expected)}"
        super().__init__(message)


class ForbiddenError(QmsError):
    """Wrong role, wrong department or not an investigation team member"""

    status_code = 403


class AuthenticationError(QmsError):
    """Missing, invalid or expired credentials"""

    status_code = 401
