# storefront/errors.py


class StorefrontError(Exception):
    """Базовая ошибка: сообщение показывается пользователю как уведомление."""

    status_code = 400
    default_message = "Something went wrong"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthError(StorefrontError):
    status_code = 401
    default_message = "Please sign in to continue"


class ValidationError(StorefrontError):
    status_code = 400
    default_message = "Invalid request"


class EmptyCartError(ValidationError):
    default_message = "Your cart is empty"


class CheckoutInProgressError(ValidationError):
    status_code = 409
    default_message = "Checkout is already in progress"


class GatewayError(StorefrontError):
    """Шлюз ответил не-2xx; сообщение шлюза передаётся как есть."""

    status_code = 502
    default_message = "Failed to create checkout session"


class NetworkError(StorefrontError):
    status_code = 503
    default_message = "Network error, please try again"


class NotFoundError(StorefrontError):
    status_code = 404
    default_message = "Not found"


class OrderNotFoundError(NotFoundError):
    default_message = "Order not found"
