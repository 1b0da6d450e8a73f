"""Wiring for the daily billing jobs, shared by the CLI and the admin API."""
from flask import current_app

from stockflow.database import get_session
from stockflow.services.billing_service import BillingService
from stockflow.services.recurring_billing_service import RecurringBillingService
from stockflow.services.subscription_expiry_service import SubscriptionExpiryService
from stockflow.services.subscription_service import SubscriptionService


def build_recurring_billing_service(db_session=None) -> RecurringBillingService:
    db_session = db_session or get_session()
    return RecurringBillingService(
        db_session,
        BillingService(db_session),
        lookahead_days=current_app.config.get('RECURRING_BILLING_LOOKAHEAD_DAYS', 3),
        lookback_days=current_app.config.get('RECURRING_BILLING_LOOKBACK_DAYS', 7),
    )


def build_expiry_service(db_session=None) -> SubscriptionExpiryService:
    db_session = db_session or get_session()
    return SubscriptionExpiryService(db_session, SubscriptionService(db_session))


def run_recurring_billing(db_session=None):
    return build_recurring_billing_service(db_session).run()


def run_subscription_expiry(db_session=None):
    return build_expiry_service(db_session).handle_subscription_expiry()
