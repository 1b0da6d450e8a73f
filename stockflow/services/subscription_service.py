"""
Subscription Service: the per-tenant subscription state machine.

States are ACTIVE, SUSPENDED and EXPIRED, plus "no plan" (no row).
Every transition that touches both Subscription and Tenant runs in a
single database transaction; notifications go out only after commit.
"""

import logging
from datetime import timedelta
from typing import Optional, List, Dict, Any, Union

from sqlalchemy.orm import Session

from stockflow.database import transaction
from stockflow.exceptions import InvalidStateError, NotFoundError
from stockflow.models import Tenant, TenantStatus, Subscription, SubscriptionStatus, BillingTransaction
from stockflow.services import email_service
from stockflow.services import plan_catalog
from stockflow.services.billing_metrics import subscription_transitions_total
from stockflow.services.notification_service import notify_admins
from stockflow.services.plan_catalog import SubscriptionPlan, SubscriptionPeriod
from stockflow.utils.dates import utcnow

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Servicio de ciclo de vida de suscripciones."""

    def __init__(self, db_session: Session, notifier=None):
        """
        Initialize subscription service.

        Args:
            db_session: SQLAlchemy session
            notifier: Object exposing the send_subscription_* functions
                (defaults to the email service)
        """
        self.db = db_session
        self.notifier = notifier or email_service

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _get_tenant(self, tenant_id: int) -> Tenant:
        tenant = self.db.get(Tenant, tenant_id)
        if not tenant:
            raise NotFoundError(f"Tenant {tenant_id} no encontrado")
        return tenant

    def get_subscription(self, tenant_id: int) -> Optional[Subscription]:
        return self.db.query(Subscription).filter_by(tenant_id=tenant_id).first()

    def _require_subscription(self, tenant_id: int) -> Subscription:
        subscription = self.get_subscription(tenant_id)
        if not subscription:
            raise NotFoundError(f"El tenant {tenant_id} no tiene suscripción")
        return subscription

    def list_subscriptions(self, status: Optional[str] = None) -> List[Subscription]:
        query = self.db.query(Subscription)
        if status:
            query = query.filter(Subscription.status == SubscriptionStatus(status).value)
        return query.order_by(Subscription.end_date).all()

    def get_expiring_subscriptions(self, days: int = 7) -> List[Subscription]:
        """ACTIVE subscriptions whose end_date falls within the next ``days`` days."""
        now = utcnow()
        return self.db.query(Subscription).filter(
            Subscription.status == SubscriptionStatus.ACTIVE.value,
            Subscription.end_date >= now,
            Subscription.end_date <= now + timedelta(days=days),
        ).order_by(Subscription.end_date).all()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def activate(
        self,
        tenant_id: int,
        plan: Union[str, SubscriptionPlan],
        period: Union[str, SubscriptionPeriod],
        activated_by_id: Optional[int] = None,
        customer_email: Optional[str] = None,
        billing_transaction_id: Optional[int] = None
    ) -> Subscription:
        """
        Any state -> ACTIVE. Creates the subscription if absent.

        Args:
            tenant_id: ID of the tenant
            plan: Plan to apply
            period: Billing period, determines end_date
            activated_by_id: AdminUser id for manual activations
            customer_email: Billing email to remember on the tenant
            billing_transaction_id: Ledger row that paid for it

        Returns:
            Subscription: The active subscription
        """
        plan = plan_catalog.as_plan(plan)
        period = plan_catalog.as_period(period)
        limits = plan_catalog.get_plan_limits(plan)
        tenant = self._get_tenant(tenant_id)

        now = utcnow()
        end_date = now + timedelta(days=plan_catalog.get_period_days(period))

        with transaction(self.db):
            subscription = self.get_subscription(tenant_id)
            if subscription is None:
                subscription = Subscription(tenant_id=tenant_id)
                self.db.add(subscription)

            subscription.plan = plan.value
            subscription.status = SubscriptionStatus.ACTIVE.value
            subscription.period_type = period.value
            subscription.start_date = now
            subscription.end_date = end_date
            subscription.suspended_at = None
            subscription.suspended_reason = None
            if activated_by_id is not None:
                subscription.activated_by_id = activated_by_id

            tenant.plan = plan.value
            tenant.status = TenantStatus.ACTIVE.value
            tenant.apply_limits(limits)
            if customer_email:
                tenant.wompi_customer_email = customer_email

            self.db.flush()
            self._link_transaction(billing_transaction_id, subscription)

        subscription_transitions_total.labels(transition='activate').inc()
        logger.info(
            f"[BILLING] Plan {plan.value} activado para tenant {tenant_id} hasta {end_date.isoformat()}"
        )

        notify_admins(
            self.db, tenant, self.notifier.send_subscription_activated_email, 'activation',
            plan_name=limits.display_name,
            period_label=plan_catalog.PERIOD_LABELS[period],
            end_date=end_date,
        )
        return subscription

    def extend(
        self,
        tenant_id: int,
        period: Union[str, SubscriptionPeriod],
        billing_transaction_id: Optional[int] = None
    ) -> Subscription:
        """
        ACTIVE -> ACTIVE renewal.

        New end_date = max(end_date, now) + period days, so a renewal that
        lands after the period lapsed starts from now.
        """
        period = plan_catalog.as_period(period)
        tenant = self._get_tenant(tenant_id)
        subscription = self._require_subscription(tenant_id)
        if not subscription.is_active:
            raise InvalidStateError(
                f"Solo se puede renovar una suscripción activa (estado actual: {subscription.status})"
            )

        now = utcnow()
        base = subscription.end_date if subscription.end_date > now else now
        new_end = base + timedelta(days=plan_catalog.get_period_days(period))

        with transaction(self.db):
            subscription.end_date = new_end
            subscription.period_type = period.value
            subscription.status = SubscriptionStatus.ACTIVE.value
            self._link_transaction(billing_transaction_id, subscription)

        subscription_transitions_total.labels(transition='extend').inc()
        logger.info(f"[BILLING] Suscripción del tenant {tenant_id} extendida hasta {new_end.isoformat()}")

        notify_admins(
            self.db, tenant, self.notifier.send_subscription_activated_email, 'renewal',
            plan_name=plan_catalog.get_plan_limits(subscription.plan).display_name,
            period_label=plan_catalog.PERIOD_LABELS[period],
            end_date=new_end,
            renewal=True,
        )
        return subscription

    def suspend(self, tenant_id: int, reason: str) -> Subscription:
        """ACTIVE -> SUSPENDED. Suspending twice is an error."""
        tenant = self._get_tenant(tenant_id)
        subscription = self._require_subscription(tenant_id)
        if subscription.is_suspended:
            raise InvalidStateError("La suscripción ya está suspendida")
        if not subscription.is_active:
            raise InvalidStateError(
                f"Solo se puede suspender una suscripción activa (estado actual: {subscription.status})"
            )

        with transaction(self.db):
            subscription.status = SubscriptionStatus.SUSPENDED.value
            subscription.suspended_at = utcnow()
            subscription.suspended_reason = reason
            tenant.status = TenantStatus.SUSPENDED.value

        subscription_transitions_total.labels(transition='suspend').inc()
        logger.info(f"[BILLING] Suscripción del tenant {tenant_id} suspendida: {reason}")

        notify_admins(
            self.db, tenant, self.notifier.send_subscription_suspended_email, 'suspension',
            plan_name=plan_catalog.get_plan_limits(subscription.plan).display_name,
            reason=reason,
        )
        return subscription

    def reactivate(self, tenant_id: int) -> Subscription:
        """SUSPENDED -> ACTIVE, only while end_date is still in the future."""
        tenant = self._get_tenant(tenant_id)
        subscription = self._require_subscription(tenant_id)
        if not subscription.is_suspended:
            raise InvalidStateError("La suscripción no está suspendida")
        if subscription.end_date <= utcnow():
            raise InvalidStateError("La suscripción ya venció. Activa un nuevo plan.")

        with transaction(self.db):
            subscription.status = SubscriptionStatus.ACTIVE.value
            subscription.suspended_at = None
            subscription.suspended_reason = None
            tenant.status = TenantStatus.ACTIVE.value

        subscription_transitions_total.labels(transition='reactivate').inc()
        logger.info(f"[BILLING] Suscripción del tenant {tenant_id} reactivada")

        notify_admins(
            self.db, tenant, self.notifier.send_subscription_activated_email, 'reactivation',
            plan_name=plan_catalog.get_plan_limits(subscription.plan).display_name,
            period_label=plan_catalog.PERIOD_LABELS[plan_catalog.as_period(subscription.period_type)],
            end_date=subscription.end_date,
        )
        return subscription

    def change_plan(self, tenant_id: int, new_plan: Union[str, SubscriptionPlan]) -> Subscription:
        """ACTIVE -> ACTIVE with a different plan. end_date is untouched."""
        new_plan = plan_catalog.as_plan(new_plan)
        limits = plan_catalog.get_plan_limits(new_plan)
        tenant = self._get_tenant(tenant_id)
        subscription = self._require_subscription(tenant_id)
        if not subscription.is_active:
            raise InvalidStateError(
                f"Solo se puede cambiar el plan de una suscripción activa (estado actual: {subscription.status})"
            )
        if subscription.plan == new_plan.value:
            raise InvalidStateError(f"El tenant ya tiene el plan {new_plan.value}")

        old_plan = subscription.plan
        with transaction(self.db):
            subscription.plan = new_plan.value
            tenant.plan = new_plan.value
            tenant.apply_limits(limits)

        subscription_transitions_total.labels(transition='change_plan').inc()
        logger.info(f"[BILLING] Tenant {tenant_id} cambió de plan {old_plan} a {new_plan.value}")

        notify_admins(
            self.db, tenant, self.notifier.send_subscription_changed_email, 'plan change',
            old_plan_name=plan_catalog.get_plan_limits(old_plan).display_name,
            new_plan_name=limits.display_name,
            end_date=subscription.end_date,
        )
        return subscription

    def expire(self, subscription: Subscription) -> bool:
        """
        ACTIVE -> EXPIRED once end_date has passed; the tenant is suspended too.

        Returns:
            True if the subscription was expired, False if it no longer qualified
        """
        now = utcnow()
        with transaction(self.db):
            self.db.refresh(subscription)
            if not subscription.is_active or subscription.end_date >= now:
                return False
            subscription.status = SubscriptionStatus.EXPIRED.value
            subscription.tenant.status = TenantStatus.SUSPENDED.value

        subscription_transitions_total.labels(transition='expire').inc()
        logger.info(f"[EXPIRY] Suscripción del tenant {subscription.tenant_id} vencida")
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _link_transaction(self, billing_transaction_id: Optional[int], subscription: Subscription):
        if billing_transaction_id is None:
            return
        billing_tx = self.db.get(BillingTransaction, billing_transaction_id)
        if billing_tx is not None:
            billing_tx.subscription_id = subscription.id

    @staticmethod
    def calculate_price(plan, period) -> Dict[str, Any]:
        total = plan_catalog.calculate_plan_price(plan, period)
        return {
            'plan': plan_catalog.as_plan(plan).value,
            'period': plan_catalog.as_period(period).value,
            'total': total,
            'total_in_cents': total * 100,
            'monthly': plan_catalog.effective_monthly_price(plan, period),
            'discount': float(plan_catalog.PERIOD_DISCOUNTS[plan_catalog.as_period(period)]),
        }
