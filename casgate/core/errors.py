from typing import Optional


class CASError(Exception):
    """Base class for everything the CAS client raises."""


class ValidationError(CASError):
    """
    Ticket validation could not be completed: the CAS server was unreachable
    or answered with a non-2xx status. Not the same as "not authenticated".
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ParseError(CASError):
    """The CAS server answered 2xx but the body could not be understood."""


class LogoutError(CASError):
    """A single logout notification could not be applied."""


class NoClientBoundError(CASError):
    def __init__(self, message: str = "cas: no client associated with request"):
        super().__init__(message)


class AttributeConversionError(CASError):
    def __init__(self, name: str, value, kind: type):
        super().__init__(f"cas: attribute {name!r} value {value!r} is not a valid {kind.__name__}")
        self.name = name
        self.value = value
        self.kind = kind


class SessionExistsError(CASError):
    pass


class DirectoryError(CASError):
    pass
