"""
Error taxonomy for the disposal schedule engine.
Routes translate these into HTTP responses; batch imports record them per item.
"""


class DisposalError(Exception):
    """Base class for all disposal planner errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DisposalError):
    """Missing required field, invalid enum value or malformed payload."""


class NotFoundError(DisposalError):
    """The targeted schedule entry does not exist."""


class ReferentialError(DisposalError):
    """A referenced waste item or user does not exist."""


class InfrastructureError(DisposalError):
    """The backing store is unreachable or failed."""
