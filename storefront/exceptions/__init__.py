"""Custom exceptions for the storefront checkout service."""


class StorefrontError(Exception):
    """Base exception for all application errors."""
    kind = 'INTERNAL_ERROR'

    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        rv['error'] = self.kind
        return rv


class BusinessLogicError(StorefrontError):
    """Exception raised for business logic violations."""
    kind = 'BUSINESS_RULE'

    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class NotFoundError(StorefrontError):
    """Exception raised when a resource is not found."""
    kind = 'NOT_FOUND'

    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class InvalidInputError(BusinessLogicError):
    """Malformed quantities, missing payment fields, failed form validation."""
    kind = 'INVALID_INPUT'

    def __init__(self, message="Invalid input", errors=None):
        payload = {'errors': errors} if errors else None
        super().__init__(message, 400, payload)


class UnauthorizedError(StorefrontError):
    """Raised when the caller is not authenticated for an action."""
    kind = 'UNAUTHORIZED'

    def __init__(self, message="Authentication required"):
        super().__init__(message, 401)


class ForbiddenError(StorefrontError):
    """Raised when a user lacks permission for an action."""
    kind = 'FORBIDDEN'

    def __init__(self, message="Forbidden"):
        super().__init__(message, 403)


# Discount ledger

class DiscountError(BusinessLogicError):
    """Base class for discount validity failures."""
    kind = 'DISCOUNT_INVALID'

    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class DiscountExpiredError(DiscountError):
    kind = 'DISCOUNT_EXPIRED'

    def __init__(self, code):
        super().__init__(f'Discount code {code} has expired')


class DiscountNotYetActiveError(DiscountError):
    kind = 'DISCOUNT_NOT_YET_ACTIVE'

    def __init__(self, code):
        super().__init__(f'Discount code {code} is not active yet')


class DiscountInactiveError(DiscountError):
    kind = 'DISCOUNT_INACTIVE'

    def __init__(self, code):
        super().__init__(f'Discount code {code} is inactive')


class DiscountLimitReachedError(DiscountError):
    kind = 'DISCOUNT_LIMIT_REACHED'

    def __init__(self, code):
        super().__init__(f'Discount code {code} usage limit reached', status_code=409)


class DiscountNotApplicableError(DiscountError):
    kind = 'DISCOUNT_NOT_APPLICABLE'


class BelowMinimumError(DiscountError):
    """Order amount is below the code's minimum purchase amount."""
    kind = 'BELOW_MINIMUM'

    def __init__(self, min_purchase_amount):
        super().__init__(
            f'Minimum purchase amount of ${min_purchase_amount:.2f} required for this discount',
            payload={'minPurchaseAmount': float(min_purchase_amount)}
        )


# Loyalty ledger

class InsufficientPointsError(BusinessLogicError):
    """Raised when a redemption exceeds the available balance."""
    kind = 'INSUFFICIENT_POINTS'

    def __init__(self, requested, available):
        super().__init__(
            f'Insufficient points: requested {requested}, available {available}',
            status_code=409,
            payload={'requested': int(requested), 'available': int(available)}
        )


class LoyaltyInactiveError(BusinessLogicError):
    kind = 'LOYALTY_INACTIVE'

    def __init__(self, message='Loyalty program is currently inactive'):
        super().__init__(message)


# Checkout

class EmptyCartError(BusinessLogicError):
    kind = 'EMPTY_CART'

    def __init__(self, message='Cart is empty'):
        super().__init__(message)


class InvalidTransitionError(BusinessLogicError):
    """Order status change not allowed by the order state machine."""
    kind = 'INVALID_TRANSITION'

    def __init__(self, current, requested):
        super().__init__(
            f'Cannot move order from {current} to {requested}',
            status_code=409,
            payload={'currentStatus': current, 'requestedStatus': requested}
        )


class DuplicateCheckoutError(BusinessLogicError):
    """Raised when an idempotency key was already used for a completed checkout."""
    kind = 'DUPLICATE_CHECKOUT'

    def __init__(self, order_id, order_number):
        super().__init__(
            f'This checkout was already processed (order {order_number})',
            status_code=409,
            payload={'orderId': order_id, 'orderNumber': order_number}
        )
