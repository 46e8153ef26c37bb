"""Domain errors raised by the services and mapped to HTTP responses by the error middleware."""


class PromptLabError(Exception):
    """Base class for errors with a human-readable message."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(PromptLabError):
    status_code = 404


class PriceNotFoundError(PromptLabError):
    status_code = 400


class AllowanceExhaustedError(PromptLabError):
    status_code = 403


class BillingProviderError(PromptLabError):
    status_code = 502
