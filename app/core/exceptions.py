"""Service-layer exceptions, mapped to HTTP responses in app.main."""


class WebhookServiceError(Exception):
    """Base error for the webhook service layer."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WebhookServiceError):
    """Raised for malformed URLs, unknown event tags or missing fields."""


class NotFoundError(WebhookServiceError):
    """Raised when a referenced webhook subscription does not exist."""
