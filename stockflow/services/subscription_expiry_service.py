"""
Subscription expiry job: expiration warnings and lapse handling.

Three independent steps; an error in one is logged and does not stop
the others. Meant to run once a day (`flask billing check-expiry`).
"""
import logging
from datetime import timedelta
from typing import Dict

from sqlalchemy.orm import Session

from stockflow.models import Subscription, SubscriptionStatus
from stockflow.services import email_service, plan_catalog
from stockflow.services.notification_service import notify_admins
from stockflow.utils.dates import utcnow

logger = logging.getLogger(__name__)


class SubscriptionExpiryService:
    """Daily expiry checks."""

    def __init__(self, db_session: Session, subscription_service, notifier=None):
        self.db = db_session
        self.subscriptions = subscription_service
        self.notifier = notifier or email_service

    def _active_ending_between(self, start, end):
        return self.db.query(Subscription).filter(
            Subscription.status == SubscriptionStatus.ACTIVE.value,
            Subscription.end_date >= start,
            Subscription.end_date <= end,
        ).all()

    def _lapsed(self):
        return self.db.query(Subscription).filter(
            Subscription.status == SubscriptionStatus.ACTIVE.value,
            Subscription.end_date < utcnow(),
        ).all()

    def _warning_window(self, days: int):
        now = utcnow()
        if days <= 1:
            return now, now + timedelta(days=1)
        return now + timedelta(days=days - 1), now + timedelta(days=days)

    def notify_expiring(self, days: int) -> int:
        """
        Warn admins of subscriptions ending in about ``days`` days.

        Returns:
            Number of subscriptions warned
        """
        start, end = self._warning_window(days)
        subscriptions = self._active_ending_between(start, end)
        for subscription in subscriptions:
            notify_admins(
                self.db, subscription.tenant, self.notifier.send_subscription_expiring_email,
                f'expiring ({days}d)',
                plan_name=plan_catalog.get_plan_limits(subscription.plan).display_name,
                end_date=subscription.end_date,
                days_remaining=days,
            )
        logger.info(f"[EXPIRY] {len(subscriptions)} subscriptions warned ({days} days)")
        return len(subscriptions)

    def expire_subscriptions(self) -> int:
        """Expire lapsed ACTIVE subscriptions and notify each tenant's admins once."""
        expired = 0
        for subscription in self._lapsed():
            try:
                if not self.subscriptions.expire(subscription):
                    continue
            except Exception as e:
                self.db.rollback()
                logger.error(f"[EXPIRY] Could not expire subscription {subscription.id}: {e}")
                continue

            expired += 1
            notify_admins(
                self.db, subscription.tenant, self.notifier.send_subscription_expired_email, 'expired',
                plan_name=plan_catalog.get_plan_limits(subscription.plan).display_name,
            )
        logger.info(f"[EXPIRY] {expired} subscriptions expired")
        return expired

    def handle_subscription_expiry(self) -> Dict[str, int]:
        """
        Job entry point. Never raises.

        Returns:
            Counts per step; a step that failed reports 0
        """
        result = {'expiring_7_days': 0, 'expiring_tomorrow': 0, 'expired': 0}
        steps = (
            ('expiring_7_days', lambda: self.notify_expiring(7)),
            ('expiring_tomorrow', lambda: self.notify_expiring(1)),
            ('expired', self.expire_subscriptions),
        )
        for key, step in steps:
            try:
                result[key] = step()
            except Exception as e:
                self.db.rollback()
                logger.exception(f"[EXPIRY] Step {key} failed: {e}")
        return result

    def run_expiry_check(self) -> Dict[str, int]:
        """Counts of what the next run would touch, without writing anything."""
        week_start, week_end = self._warning_window(7)
        day_start, day_end = self._warning_window(1)
        return {
            'expiring_7_days': len(self._active_ending_between(week_start, week_end)),
            'expiring_tomorrow': len(self._active_ending_between(day_start, day_end)),
            'expired': len(self._lapsed()),
        }
