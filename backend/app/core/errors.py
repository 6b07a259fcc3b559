class CourierError(Exception):
    """Base class for errors raised by the request engine."""


class MalformedBody(CourierError):
    """Raised when a request body is not valid JSON after placeholder resolution."""

    def __init__(self, message: str = "Body must be valid JSON."):
        super().__init__(message)
