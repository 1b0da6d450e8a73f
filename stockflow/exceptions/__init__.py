"""Custom exceptions for the StockFlow billing engine."""

class SaasError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv

class BusinessLogicError(SaasError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)

class NotFoundError(SaasError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)

class InvalidStateError(BusinessLogicError):
    """A subscription transition was requested from a state that does not allow it."""
    def __init__(self, message, payload=None):
        super().__init__(message, status_code=409, payload=payload)

class DuplicateChargeError(InvalidStateError):
    """Another run already claimed the recurring charge for this billing period."""
    def __init__(self, subscription_id, billing_period_end):
        super().__init__(
            f"Ya existe un cobro recurrente para la suscripción {subscription_id} "
            f"con vencimiento {billing_period_end}",
            payload={'subscription_id': subscription_id}
        )
        self.subscription_id = subscription_id
        self.billing_period_end = billing_period_end

class ConfigurationError(SaasError):
    """Required settings (gateway keys, secrets) are missing."""
    def __init__(self, message):
        super().__init__(message, 500)

class GatewayError(SaasError):
    """Base class for payment gateway failures."""
    def __init__(self, message, status_code=502, payload=None):
        super().__init__(message, status_code, payload)

class GatewayResponseError(GatewayError):
    """The gateway answered with a non-2xx status."""
    def __init__(self, gateway_status, status_text, body=None):
        super().__init__(
            f"Wompi API error: {gateway_status} {status_text}",
            payload={'gateway_status': gateway_status}
        )
        self.gateway_status = gateway_status
        self.status_text = status_text
        self.body = body

class GatewayTimeoutError(GatewayError):
    """The request was cancelled after the timeout; the charge outcome is unknown."""
    def __init__(self, message):
        super().__init__(message, status_code=504)

class GatewayConnectionError(GatewayError):
    """Transport failure before any gateway response was received."""

class SignatureInvalidError(SaasError):
    """Webhook payload failed checksum verification."""
    def __init__(self, message="Invalid webhook signature"):
        super().__init__(message, 400)

class LimitReachedError(SaasError):
    """The tenant's plan quota for a resource is exhausted."""
    def __init__(self, resource, current, limit):
        super().__init__(
            f"Límite de {resource} alcanzado ({limit}). Mejora tu plan.",
            403,
            payload={'resource': resource, 'current': current, 'limit': limit}
        )
        self.resource = resource
        self.current = current
        self.limit = limit

class UnauthorizedError(SaasError):
    """Raised when a user lacks permission for an action."""
    def __init__(self, message="Unauthorized access"):
        super().__init__(message, 403)

class AuthenticationError(SaasError):
    """Raised when no authenticated user (or admin) is present."""
    def __init__(self, message="Authentication required"):
        super().__init__(message, 401)
