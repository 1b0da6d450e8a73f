"""
Recurring billing job: renews subscriptions that are about to end by
charging the tenant's stored payment source.

Meant to run once a day (`flask billing charge-recurring` from cron).
"""
import logging
from datetime import timedelta
from typing import Dict, Optional

from sqlalchemy.orm import Session

from stockflow.exceptions import DuplicateChargeError
from stockflow.models import BillingTransaction, BillingStatus, Subscription, SubscriptionStatus, Tenant
from stockflow.services import email_service, plan_catalog
from stockflow.services.notification_service import notify_admins
from stockflow.utils.dates import utcnow, days_remaining

logger = logging.getLogger(__name__)


class RecurringBillingService:
    """Daily zero-touch renewal."""

    def __init__(self, db_session: Session, billing_service, notifier=None,
                 lookahead_days: int = 3, lookback_days: int = 7):
        self.db = db_session
        self.billing = billing_service
        self.notifier = notifier or email_service
        self.lookahead_days = lookahead_days
        self.lookback_days = lookback_days

    def find_candidates(self):
        """ACTIVE subscriptions ending within the lookahead whose tenant has a stored card."""
        now = utcnow()
        return (
            self.db.query(Subscription)
            .join(Tenant, Tenant.id == Subscription.tenant_id)
            .filter(
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.end_date >= now,
                Subscription.end_date <= now + timedelta(days=self.lookahead_days),
                Tenant.wompi_payment_source_id.isnot(None),
            )
            .order_by(Subscription.end_date)
            .all()
        )

    def already_billed(self, subscription: Subscription) -> bool:
        """True when a recurring charge exists within the lookback window before end_date."""
        window_start = subscription.end_date - timedelta(days=self.lookback_days)
        existing = self.db.query(BillingTransaction.id).filter(
            BillingTransaction.subscription_id == subscription.id,
            BillingTransaction.is_recurring.is_(True),
            BillingTransaction.created_at >= window_start,
        ).first()
        return existing is not None

    def process_recurring_charges(self) -> Dict[str, int]:
        """
        Charge every candidate once.

        Per-subscription failures are isolated: they are counted, the
        tenant's admins are notified, and the batch continues.

        Returns:
            {'attempted': n, 'succeeded': n, 'pending': n, 'failed': n}
        """
        result = {'attempted': 0, 'succeeded': 0, 'pending': 0, 'failed': 0}
        candidates = self.find_candidates()
        logger.info(f"[RECURRING] {len(candidates)} subscriptions due for renewal")

        for subscription in candidates:
            tenant_id = subscription.tenant_id
            if self.already_billed(subscription):
                logger.info(f"[RECURRING] Tenant {tenant_id} already billed this period, skipping")
                continue

            try:
                status = self.billing.charge_recurring(tenant_id)
            except DuplicateChargeError:
                logger.info(f"[RECURRING] Tenant {tenant_id} charge claimed by another run, skipping")
                continue
            except Exception as e:
                self.db.rollback()
                result['attempted'] += 1
                result['failed'] += 1
                logger.error(f"[RECURRING] Charge failed for tenant {tenant_id}: {e}")
                self._notify_failure(subscription)
                continue

            result['attempted'] += 1
            if status.get('last_transaction_status') == BillingStatus.APPROVED.value:
                result['succeeded'] += 1
            elif status.get('last_transaction_status') == BillingStatus.PENDING.value:
                # Final status arrives through the webhook
                result['pending'] += 1
                logger.info(f"[RECURRING] Tenant {tenant_id} charge pending gateway confirmation")
            else:
                result['failed'] += 1
                logger.warning(
                    f"[RECURRING] Tenant {tenant_id} charge ended as {status.get('last_transaction_status')}"
                )
                self._notify_failure(subscription)

        logger.info(
            f"[RECURRING] Done: {result['attempted']} attempted, "
            f"{result['succeeded']} succeeded, {result['pending']} pending, {result['failed']} failed"
        )
        return result

    def run(self) -> Optional[Dict[str, int]]:
        """Job entry point. Never raises."""
        try:
            return self.process_recurring_charges()
        except Exception as e:
            self.db.rollback()
            logger.exception(f"[RECURRING] Job aborted: {e}")
            return None

    def _notify_failure(self, subscription: Subscription):
        try:
            self.db.refresh(subscription)
            try:
                plan_name = plan_catalog.get_plan_limits(subscription.plan).display_name
            except ValueError:
                plan_name = subscription.plan
            notify_admins(
                self.db, subscription.tenant, self.notifier.send_subscription_expiring_email,
                'charge failure',
                plan_name=plan_name,
                end_date=subscription.end_date,
                days_remaining=days_remaining(subscription.end_date),
            )
        except Exception as e:
            logger.error(f"[RECURRING] Could not notify charge failure for tenant {subscription.tenant_id}: {e}")
