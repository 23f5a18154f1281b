class PaymentServiceError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PaymentServiceError):
    status_code = 400


class AuthenticationError(PaymentServiceError):
    """Provider credentials were rejected or the auth endpoint stayed unreachable."""

    status_code = 502


class AuthorizationError(PaymentServiceError):
    status_code = 403


class OrderNotFoundError(PaymentServiceError):
    status_code = 404


class InvalidStateError(PaymentServiceError):
    status_code = 400


class AlreadyPaidError(InvalidStateError):
    pass


class UnsupportedMethodError(ValidationError):
    pass


class MissingPhoneNumberError(ValidationError):
    pass


class UnsupportedProviderError(ValidationError):
    pass


class SignatureVerificationError(PaymentServiceError):
    status_code = 400


class PaymentInitiationError(PaymentServiceError):
    """The provider refused or never acknowledged a payment request."""

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.error_code = error_code
        if error_code == "AUTHENTICATION_FAILED":
            self.status_code = AuthenticationError.status_code
