"""
Orchestration Errors

Request-scoped rejections. These are returned only to the caller that sent
the event (HTTP error or a direct error reply) and are never published.
"""


class OrchestrationError(Exception):
    """Base class for rejections of an inbound event."""
    code = "ORCHESTRATION_ERROR"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(OrchestrationError):
    """A required field is missing or malformed."""
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(OrchestrationError):
    """A referenced message or user does not exist."""
    code = "NOT_FOUND"
    status_code = 404
