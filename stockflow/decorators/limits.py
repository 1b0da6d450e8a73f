"""Plan limit decorator for resource-creating routes."""
from functools import wraps

from flask import g

from stockflow.database import get_session
from stockflow.services.limit_service import LimitType, enforce_limit


def check_limit(limit_type: LimitType):
    """
    Decorator: reject the request with 403 when the tenant's quota is exhausted.

    Must be used AFTER require_login and require_tenant.

    Usage:
        @check_limit(LimitType.WAREHOUSES)
        def create_warehouse(): ...
    """
    limit_type = LimitType(limit_type)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            enforce_limit(get_session(), g.tenant_id, limit_type)
            return f(*args, **kwargs)
        return decorated_function
    return decorator
