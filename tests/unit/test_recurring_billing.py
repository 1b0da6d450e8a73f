"""
Unit tests for the recurring billing job.
"""

import pytest
from datetime import timedelta

from stockflow.exceptions import GatewayConnectionError
from stockflow.models import Subscription
from stockflow.services.recurring_billing_service import RecurringBillingService


@pytest.fixture
def recurring(session, billing_service, notifier):
    return RecurringBillingService(session, billing_service, notifier=notifier, lookahead_days=3, lookback_days=7)


class TestCandidates:
    def test_only_active_with_card_inside_lookahead(self, session, recurring, make_tenant, make_subscription):
        due = make_subscription(make_tenant(payment_source_id='3001'), end_in_days=2)
        make_subscription(make_tenant(), end_in_days=2)  # no card
        make_subscription(make_tenant(payment_source_id='3002'), end_in_days=10)  # too early
        make_subscription(make_tenant(payment_source_id='3003'), end_in_days=2, status='SUSPENDED')
        make_subscription(make_tenant(payment_source_id='3004'), end_in_days=-1)  # already lapsed

        assert [s.id for s in recurring.find_candidates()] == [due.id]


class TestProcessRecurringCharges:
    """Daily renewal run."""

    def test_charges_due_subscription_once(self, session, recurring, gateway, make_tenant, make_subscription):
        subscription = make_subscription(make_tenant(payment_source_id='3001'), plan='PYME', end_in_days=2)
        original_end = subscription.end_date

        result = recurring.process_recurring_charges()

        assert result == {'attempted': 1, 'succeeded': 1, 'pending': 0, 'failed': 0}
        assert len(gateway.charges) == 1
        assert session.get(Subscription, subscription.id).end_date == original_end + timedelta(days=30)

    def test_second_run_skips_billed_subscription(self, session, recurring, gateway, make_tenant,
                                                  make_subscription):
        make_subscription(make_tenant(payment_source_id='3001'), end_in_days=2)
        gateway.charge_status = 'DECLINED'
        recurring.process_recurring_charges()

        result = recurring.process_recurring_charges()

        assert result == {'attempted': 0, 'succeeded': 0, 'pending': 0, 'failed': 0}
        assert len(gateway.charges) == 1

    def test_declined_charge_counts_as_failed_and_notifies(self, session, recurring, gateway, notifier,
                                                           make_tenant, make_member, make_subscription):
        tenant = make_tenant(payment_source_id='3001')
        make_member(tenant, role='OWNER')
        make_subscription(tenant, end_in_days=2)
        gateway.charge_status = 'DECLINED'

        result = recurring.process_recurring_charges()

        assert result == {'attempted': 1, 'succeeded': 0, 'pending': 0, 'failed': 1}
        assert notifier.send_subscription_expiring_email.call_count == 1

    def test_pending_charge_is_not_a_failure(self, session, recurring, gateway, notifier,
                                             make_tenant, make_member, make_subscription):
        """A charge awaiting confirmation is neither failed nor reported to admins."""
        tenant = make_tenant(payment_source_id='3001')
        make_member(tenant, role='OWNER')
        subscription = make_subscription(tenant, end_in_days=2)
        original_end = subscription.end_date
        gateway.charge_status = 'PENDING'

        result = recurring.process_recurring_charges()

        assert result == {'attempted': 1, 'succeeded': 0, 'pending': 1, 'failed': 0}
        assert notifier.send_subscription_expiring_email.call_count == 0
        assert session.get(Subscription, subscription.id).end_date == original_end

    def test_one_failure_does_not_stop_the_batch(self, session, recurring, gateway, make_tenant,
                                                 make_subscription, monkeypatch):
        first = make_subscription(make_tenant(payment_source_id='3001'), end_in_days=1)
        second = make_subscription(make_tenant(payment_source_id='3002'), end_in_days=2)
        second_end = second.end_date

        original = gateway.create_transaction
        calls = []

        def flaky(**kwargs):
            calls.append(kwargs)
            if len(calls) == 1:
                raise GatewayConnectionError('connection reset')
            return original(**kwargs)

        monkeypatch.setattr(gateway, 'create_transaction', flaky)

        result = recurring.process_recurring_charges()

        assert result == {'attempted': 2, 'succeeded': 1, 'pending': 0, 'failed': 1}
        assert session.get(Subscription, second.id).end_date == second_end + timedelta(days=30)
        assert session.get(Subscription, first.id).status == 'ACTIVE'

    def test_run_never_raises(self, session, recurring, monkeypatch):
        def boom():
            raise RuntimeError('database unavailable')

        monkeypatch.setattr(recurring, 'find_candidates', boom)

        assert recurring.run() is None
