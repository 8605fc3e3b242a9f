"""Custom HTTP exceptions for the AuctionHub API.

Each exception maps to a specific HTTP status code and error code.
Global exception handlers in api/main.py convert these to ErrorResponse.
"""


class AuctionHubError(Exception):
    """Base exception for all AuctionHub errors."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, detail: dict[str, object] | None = None):
        self.message = message or self.__class__.message
        self.detail = detail
        super().__init__(self.message)


class UnauthorisedError(AuctionHubError):
    status_code = 401
    code = "unauthorised"
    message = "Authentication required."


class ValidationError(AuctionHubError):
    status_code = 422
    code = "unprocessable_entity"
    message = "Request could not be processed."


# ---------------------------------------------------------------------------
# Message bus
# ---------------------------------------------------------------------------


class BrokerError(AuctionHubError):
    """Base exception for message bus failures."""

    status_code = 502
    code = "broker_error"
    message = "Message bus request failed."


class BrokerSubscribeError(BrokerError):
    """Dedicated bus connection could not be opened or the subscribe was rejected."""

    code = "broker_subscribe_error"
    message = "Could not subscribe to the notification channel."


class PublishError(BrokerError):
    """Publishing an event to the bus failed."""

    code = "publish_error"
    message = "Could not publish the notification event."
