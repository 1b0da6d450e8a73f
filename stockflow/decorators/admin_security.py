"""
Admin security decorators.
Provides authentication for platform operator routes.
"""

from functools import wraps
from flask import session, g


def admin_required(f):
    """
    Decorator: Require admin user to be logged in.

    IMPORTANT: This checks session['admin_user_id'], NOT g.user or g.tenant_id.
    Admin authentication is completely separate from tenant user authentication.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        from stockflow.database import get_session
        from stockflow.exceptions import AuthenticationError
        from stockflow.models import AdminUser

        admin_user_id = session.get('admin_user_id')
        if not admin_user_id:
            raise AuthenticationError('Debes iniciar sesión como administrador.')

        admin_user = get_session().query(AdminUser).filter_by(id=admin_user_id).first()
        if not admin_user:
            # Admin user no longer exists in database
            session.pop('admin_user_id', None)
            raise AuthenticationError('Sesión de administrador inválida.')

        # Store admin user in g for use in route
        g.admin_user = admin_user

        return f(*args, **kwargs)

    return decorated_function
