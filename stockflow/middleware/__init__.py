"""Middleware for authentication and tenant context."""
from functools import wraps
from flask import session, g, current_app
from stockflow.database import get_session
from stockflow.exceptions import AuthenticationError, UnauthorizedError
from stockflow.models import AppUser, UserTenant, Tenant


ROLE_HIERARCHY = {'OWNER': 3, 'ADMIN': 2, 'STAFF': 1, 'ACCOUNTANT': 1}


def load_user_and_tenant():
    """
    Load current user and tenant into g (Flask's per-request global).

    Called before each request to establish user and tenant context.
    Sets g.user, g.tenant_id, and g.user_role if authenticated.
    Suspended tenants still load, so they can reach billing to pay.
    """
    g.user = None
    g.tenant_id = None
    g.user_role = None

    try:
        user_id = session.get('user_id')
        if not user_id:
            return

        db_session = get_session()
        user = db_session.query(AppUser).filter_by(id=user_id, active=True).first()
        if not user:
            return
        g.user = user

        tenant_id = session.get('tenant_id')
        if tenant_id:
            # Verify user has access to this tenant
            user_tenant = db_session.query(UserTenant).filter_by(
                user_id=user.id,
                tenant_id=tenant_id,
                active=True
            ).first()

            if user_tenant:
                g.tenant_id = tenant_id
                g.user_role = user_tenant.role
            else:
                session.pop('tenant_id', None)
    except Exception as e:
        # Avoid crashing the whole app if context loading fails
        current_app.logger.error(f"Error in load_user_and_tenant: {e}")


def require_login(f):
    """Decorator: Require user to be logged in."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('user') is None:
            raise AuthenticationError('Debes iniciar sesión para acceder.')
        return f(*args, **kwargs)
    return decorated_function


def require_tenant(f):
    """
    Decorator: Require tenant to be selected.

    Must be used AFTER require_login.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('tenant_id') is None:
            raise UnauthorizedError('Debes seleccionar un negocio primero.')
        return f(*args, **kwargs)
    return decorated_function


def require_role(min_role='STAFF'):
    """
    Decorator: Require minimum role for tenant.

    Roles hierarchy: OWNER > ADMIN > STAFF

    Must be used AFTER require_login and require_tenant.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user_role_level = ROLE_HIERARCHY.get(g.get('user_role'), 0)
            required_level = ROLE_HIERARCHY.get(min_role, 1)
            if user_role_level < required_level:
                raise UnauthorizedError(f'Necesitas rol de {min_role} o superior.')
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def require_active_tenant(f):
    """Decorator: block writes for tenants suspended by expiry or by an operator."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        tenant = get_session().get(Tenant, g.tenant_id)
        if tenant is None or tenant.is_suspended:
            raise UnauthorizedError('Este negocio está suspendido. Renueva tu plan para continuar.')
        return f(*args, **kwargs)
    return decorated_function
