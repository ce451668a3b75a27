from starlette import status


class StorefrontError(Exception):
    """
    Base class for every error the service layer raises on purpose.

    Each subclass carries the HTTP status it maps to, so the API layer
    needs a single exception handler for the whole family.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Request could not be processed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# --- CATEGORIES ---

class ValidationError(StorefrontError):
    """Malformed input, rejected before any transaction starts."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class AuthorizationError(StorefrontError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Not authenticated"


class AuthenticationFailed(AuthorizationError):
    """
    Raised when a request carries no token or an invalid/expired JWT.

    Expected Result: 401 Unauthorized
    """
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Token is invalid or has expired"


class NotAuthorized(AuthorizationError):
    """
    Raised when the caller is authenticated but may not act
    (e.g. the account has been disabled).

    Expected Result: 403 Forbidden
    """
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not authorized"


class NotFoundError(StorefrontError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ConflictError(StorefrontError):
    """The request clashes with current state; the caller can change it and retry."""
    status_code = status.HTTP_409_CONFLICT
    default_message = "Request conflicts with current state"


class SecurityError(StorefrontError):
    """Proof of payment failed verification. Never retried automatically."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Payment verification failed"


class DataIntegrityError(StorefrontError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "An unexpected error occurred."


# --- NOT FOUND ---

class OrderNotFoundError(NotFoundError):
    default_message = "Order not found"


class AddressNotFoundError(NotFoundError):
    default_message = "Shipping address not found"


class ProductNotFoundError(NotFoundError):
    default_message = "Product not found"


class CartItemNotFoundError(NotFoundError):
    default_message = "Item not found in cart"


# --- CONFLICTS ---

class EmptyCartError(ConflictError):
    default_message = "Cart is empty"


class ProductUnavailableError(ConflictError):
    def __init__(self, product_name: str):
        self.product_name = product_name
        super().__init__(f'"{product_name}" is no longer available')


class InsufficientStockError(ConflictError):
    """
    Raised when the requested quantity exceeds what is on the shelf.

    `available` is the quantity the caller may still request.
    """

    def __init__(self, product_name: str, available: int, message: str | None = None):
        self.product_name = product_name
        self.available = available
        if message is None:
            if available <= 0:
                message = f'"{product_name}" is out of stock'
            else:
                message = f'Only {available} unit(s) of "{product_name}" available'
        super().__init__(message)


class CartChangedError(ConflictError):
    default_message = "Cart changed while the order was being placed, please retry"


class AlreadyPaidError(ConflictError):
    default_message = "Order is already paid"


class OrderNumberCollisionError(ConflictError):
    default_message = "Could not allocate an order number, please retry"


# --- SECURITY ---

class InvalidSignatureError(SecurityError):
    pass


class SessionMismatchError(SecurityError):
    pass


# --- GATEWAY ---

class GatewayNotConfiguredError(StorefrontError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Payment gateway is not configured"


class PaymentGatewayError(StorefrontError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Payment provider request failed"
