from rest_framework import status


class MarketplaceError(Exception):
    """
    Base class for errors raised by the marketplace services.

    Each subclass carries the HTTP status views respond with.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal error."

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(MarketplaceError):
    """A referenced item, user or category does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found."


class PreconditionFailed(MarketplaceError):
    """The entities exist but their current state forbids the operation."""

    status_code = status.HTTP_412_PRECONDITION_FAILED
    default_message = "Precondition failed."


class InvalidInput(MarketplaceError):
    """A caller-supplied value violates a domain constraint."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input."


class Unauthorized(MarketplaceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Wrong user id or password."


class Internal(MarketplaceError):
    """The store or other infrastructure failed."""
