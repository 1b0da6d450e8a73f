"""
Best-effort delivery of subscription notifications.

Notifications are sent after the billing transition has committed. Each
send has its own error boundary: failures are logged and counted, never
propagated to the caller.
"""
import logging
from typing import Callable, List

from sqlalchemy.orm import Session

from stockflow.models import AppUser, UserTenant, ADMIN_ROLES

logger = logging.getLogger(__name__)


def get_admin_recipients(session: Session, tenant_id: int) -> List[AppUser]:
    """Active OWNER/ADMIN members of a tenant, ordered by membership age."""
    return (
        session.query(AppUser)
        .join(UserTenant, UserTenant.user_id == AppUser.id)
        .filter(
            UserTenant.tenant_id == tenant_id,
            UserTenant.active.is_(True),
            UserTenant.role.in_(ADMIN_ROLES),
            AppUser.active.is_(True),
        )
        .order_by(UserTenant.created_at, UserTenant.id)
        .all()
    )


def notify_admins(session: Session, tenant, send: Callable[..., bool], event: str, **kwargs) -> int:
    """
    Send one notification per admin of ``tenant``.

    Args:
        session: Database session used to look up recipients
        tenant: Tenant the event is about
        send: Sender from email_service (or a test double)
        event: Short name used in logs
        **kwargs: Event-specific arguments for ``send``

    Returns:
        Number of notifications delivered
    """
    try:
        recipients = get_admin_recipients(session, tenant.id)
    except Exception as e:
        logger.error(f"[NOTIFY] Could not load recipients for tenant {tenant.id} ({event}): {e}")
        return 0

    if not recipients:
        logger.warning(f"[NOTIFY] Tenant {tenant.id} has no admin users for {event} notification")
        return 0

    delivered = 0
    for user in recipients:
        try:
            if send(
                to_email=user.email,
                first_name=user.first_name,
                tenant_name=tenant.name,
                **kwargs
            ):
                delivered += 1
            else:
                logger.warning(f"[NOTIFY] {event} notification to {user.email} was not delivered")
        except Exception as e:
            logger.error(f"[NOTIFY] {event} notification to {user.email} failed: {e}")
    return delivered
