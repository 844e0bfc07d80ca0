class PayflowError(Exception):
    """Base exception for the payment engine.

    Every subclass carries the HTTP status and a stable machine-readable code so
    the API layer can render it without inspecting the message.
    """

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class InvalidRequest(PayflowError):
    """Malformed or unacceptable input from the caller."""

    status_code = 400
    code = "invalid_request"


class ProviderUnavailable(PayflowError):
    """Payment provider could not be reached or refused our credentials."""

    status_code = 502
    code = "provider_unavailable"

    def __init__(self, provider: str, message: str = ""):
        self.provider = provider
        super().__init__(message or f"Payment provider '{provider}' is unavailable")


class SignatureInvalid(PayflowError):
    """Webhook signature verification failed."""

    status_code = 400
    code = "signature_invalid"


class DuplicatePayment(PayflowError):
    """An unexpired pending payment already exists for this order and provider."""

    status_code = 409
    code = "duplicate_payment"

    def __init__(self, order_id: str, provider: str, existing_id: str | None = None):
        self.order_id = order_id
        self.provider = provider
        self.existing_id = existing_id
        super().__init__(f"Pending payment already exists for order '{order_id}' with provider '{provider}'")


class NotFound(PayflowError):
    """Requested payment does not exist."""

    status_code = 404
    code = "not_found"


class InternalError(PayflowError):
    """Unexpected failure. The message is never shown to callers."""

    status_code = 500
    code = "internal_error"
