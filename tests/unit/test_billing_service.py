"""
Unit tests for BillingService: checkout, verification, ledger, recurring charges and webhooks.
"""

import json
import pytest
from datetime import timedelta

from stockflow.exceptions import (
    BusinessLogicError, DuplicateChargeError, GatewayResponseError, GatewayTimeoutError,
    InvalidStateError, SignatureInvalidError,
)
from stockflow.models import BillingTransaction, Subscription, Tenant
from stockflow.utils.dates import utcnow


def _ledger(session, tenant_id):
    return session.query(BillingTransaction).filter_by(tenant_id=tenant_id).all()


class TestCheckoutConfig:
    """Signed widget parameters."""

    def test_checkout_config(self, session, billing_service, gateway, make_tenant):
        tenant = make_tenant()

        config = billing_service.get_checkout_config(tenant.id, 'PYME', 'QUARTERLY')

        assert config['amount_in_cents'] == 21573000
        assert config['currency'] == 'COP'
        assert config['reference'].startswith(f'SF-{tenant.id}-')
        assert config['integrity_hash'] == gateway.generate_integrity_hash(
            config['reference'], 21573000, 'COP'
        )
        assert config['acceptance_token'] == 'acc-token'
        assert config['redirect_url'] == 'http://frontend.test/billing?success=true'
        assert config['price_formatted'] == '$215.730'

    def test_free_plan_cannot_be_purchased(self, session, billing_service, make_tenant):
        tenant = make_tenant()
        with pytest.raises(BusinessLogicError):
            billing_service.get_checkout_config(tenant.id, 'EMPRENDEDOR', 'MONTHLY')

    def test_invalid_period(self, session, billing_service, make_tenant):
        tenant = make_tenant()
        with pytest.raises(BusinessLogicError):
            billing_service.get_checkout_config(tenant.id, 'PYME', 'WEEKLY')

    def test_checkout_does_not_write_ledger(self, session, billing_service, make_tenant):
        tenant = make_tenant()
        billing_service.get_checkout_config(tenant.id, 'PRO', 'MONTHLY')
        assert _ledger(session, tenant.id) == []


class TestVerifyPayment:
    """Checkout verification drives activation."""

    def test_approved_without_plan_activates(self, session, billing_service, gateway, notifier,
                                             make_tenant, make_member, approved_tx):
        tenant = make_tenant()
        make_member(tenant)
        gateway.transactions['tx-1'] = approved_tx('tx-1', 'PYME', 'MONTHLY', tenant_id=tenant.id)

        status = billing_service.verify_payment(tenant.id, 'tx-1', 'PYME', 'MONTHLY')

        assert status['status'] == 'ACTIVE'
        assert status['plan'] == 'PYME'
        assert status['limits']['max_users'] == 5
        assert status['limits']['max_products'] == 500
        assert status['days_remaining'] == 30

        tenant = session.get(Tenant, tenant.id)
        assert tenant.wompi_customer_email == 'pagos@example.com'

        rows = _ledger(session, tenant.id)
        assert len(rows) == 1
        assert rows[0].status == 'APPROVED'
        assert rows[0].subscription_id == session.query(Subscription).filter_by(tenant_id=tenant.id).one().id
        assert notifier.send_subscription_activated_email.call_count == 1

    def test_verify_twice_is_idempotent(self, session, billing_service, gateway, notifier,
                                        make_tenant, make_member, approved_tx):
        tenant = make_tenant()
        make_member(tenant)
        gateway.transactions['tx-1'] = approved_tx('tx-1', tenant_id=tenant.id)

        first = billing_service.verify_payment(tenant.id, 'tx-1', 'PYME', 'MONTHLY')
        second = billing_service.verify_payment(tenant.id, 'tx-1', 'PYME', 'MONTHLY')

        assert second['end_date'] == first['end_date']
        assert len(_ledger(session, tenant.id)) == 1
        assert notifier.send_subscription_activated_email.call_count == 1

    def test_pending_records_without_activation(self, session, billing_service, gateway, make_tenant,
                                                approved_tx):
        tenant = make_tenant()
        gateway.transactions['tx-2'] = approved_tx('tx-2', status='PENDING', tenant_id=tenant.id)

        status = billing_service.verify_payment(tenant.id, 'tx-2', 'PYME', 'MONTHLY')

        assert status['status'] is None
        assert _ledger(session, tenant.id)[0].status == 'PENDING'

    def test_unknown_gateway_status_is_error(self, session, billing_service, gateway, make_tenant, approved_tx):
        tenant = make_tenant()
        gateway.transactions['tx-3'] = approved_tx('tx-3', status='SOMETHING_NEW', tenant_id=tenant.id)

        billing_service.verify_payment(tenant.id, 'tx-3', 'PYME', 'MONTHLY')

        assert _ledger(session, tenant.id)[0].status == 'ERROR'

    def test_amount_mismatch_does_not_activate(self, session, billing_service, gateway, make_tenant,
                                               approved_tx):
        tenant = make_tenant()
        gateway.transactions['tx-4'] = approved_tx('tx-4', amount_in_cents=100, tenant_id=tenant.id)

        with pytest.raises(BusinessLogicError):
            billing_service.verify_payment(tenant.id, 'tx-4', 'PYME', 'MONTHLY')

        assert session.query(Subscription).filter_by(tenant_id=tenant.id).first() is None

    def test_same_plan_payment_extends_active(self, session, billing_service, gateway, make_tenant,
                                              make_subscription, approved_tx):
        tenant = make_tenant()
        subscription = make_subscription(tenant, plan='PYME', end_in_days=10)
        original_end = subscription.end_date
        gateway.transactions['tx-5'] = approved_tx('tx-5', 'PYME', 'MONTHLY', tenant_id=tenant.id)

        billing_service.verify_payment(tenant.id, 'tx-5', 'PYME', 'MONTHLY')

        assert session.get(Subscription, subscription.id).end_date == original_end + timedelta(days=30)

    def test_other_plan_payment_activates(self, session, billing_service, gateway, make_tenant,
                                          make_subscription, approved_tx):
        tenant = make_tenant()
        subscription = make_subscription(tenant, plan='PYME', end_in_days=10)
        gateway.transactions['tx-6'] = approved_tx('tx-6', 'PRO', 'ANNUAL', tenant_id=tenant.id)

        status = billing_service.verify_payment(tenant.id, 'tx-6', 'PRO', 'ANNUAL')

        assert status['plan'] == 'PRO'
        assert status['period_type'] == 'ANNUAL'
        assert status['days_remaining'] == 365
        assert session.get(Subscription, subscription.id).plan == 'PRO'

    def test_transaction_of_another_tenant(self, session, billing_service, gateway, make_tenant, approved_tx):
        owner = make_tenant()
        intruder = make_tenant()
        gateway.transactions['tx-7'] = approved_tx('tx-7', tenant_id=owner.id)
        billing_service.verify_payment(owner.id, 'tx-7', 'PYME', 'MONTHLY')

        with pytest.raises(BusinessLogicError):
            billing_service.verify_payment(intruder.id, 'tx-7', 'PYME', 'MONTHLY')

    def test_first_verification_by_another_tenant(self, session, billing_service, gateway, make_tenant,
                                                  approved_tx):
        """A checkout reference names its tenant; nobody else can claim the payment."""
        owner = make_tenant()
        intruder = make_tenant()
        gateway.transactions['tx-8'] = approved_tx('tx-8', tenant_id=owner.id)

        with pytest.raises(BusinessLogicError):
            billing_service.verify_payment(intruder.id, 'tx-8', 'PYME', 'MONTHLY')

        assert session.query(Subscription).filter_by(tenant_id=intruder.id).first() is None
        assert _ledger(session, intruder.id) == []

        status = billing_service.verify_payment(owner.id, 'tx-8', 'PYME', 'MONTHLY')
        assert status['status'] == 'ACTIVE'

    def test_gateway_errors_propagate(self, session, billing_service, make_tenant):
        tenant = make_tenant()
        with pytest.raises(GatewayResponseError):
            billing_service.verify_payment(tenant.id, 'missing', 'PYME', 'MONTHLY')


class TestPaymentSource:
    def test_create_payment_source(self, session, billing_service, gateway, make_tenant):
        tenant = make_tenant(email='dueno@negocio.co')

        result = billing_service.create_payment_source(tenant.id, 'tok_test_1', 'acc-token')

        tenant = session.get(Tenant, tenant.id)
        assert result['payment_source_id'] == '3001'
        assert tenant.wompi_payment_source_id == '3001'
        assert tenant.wompi_customer_email == 'dueno@negocio.co'

    def test_replacing_source_voids_previous(self, session, billing_service, gateway, make_tenant):
        tenant = make_tenant(payment_source_id='2999')

        billing_service.create_payment_source(tenant.id, 'tok_test_2', 'acc-token')

        assert gateway.voided == ['2999']

    def test_remove_payment_source(self, session, billing_service, gateway, make_tenant):
        tenant = make_tenant(payment_source_id='3005')

        billing_service.remove_payment_source(tenant.id)

        assert session.get(Tenant, tenant.id).wompi_payment_source_id is None
        assert gateway.voided == ['3005']

    def test_remove_without_source(self, session, billing_service, make_tenant):
        tenant = make_tenant()
        with pytest.raises(BusinessLogicError):
            billing_service.remove_payment_source(tenant.id)


class TestChargeRecurring:
    """Stored-card renewals."""

    def test_approved_charge_extends(self, session, billing_service, gateway, make_tenant, make_subscription):
        tenant = make_tenant(payment_source_id='3001')
        subscription = make_subscription(tenant, plan='PYME', end_in_days=2)
        original_end = subscription.end_date

        status = billing_service.charge_recurring(tenant.id)

        assert status['last_transaction_status'] == 'APPROVED'
        assert session.get(Subscription, subscription.id).end_date == original_end + timedelta(days=30)
        assert gateway.charges[0]['amount_in_cents'] == 7990000
        assert gateway.charges[0]['payment_source_id'] == 3001
        assert gateway.charges[0]['recurrent'] is True

        row = _ledger(session, tenant.id)[0]
        assert row.is_recurring is True
        assert row.billing_period_end == original_end

    def test_declined_charge_keeps_end_date(self, session, billing_service, gateway, make_tenant,
                                            make_subscription):
        tenant = make_tenant(payment_source_id='3001')
        subscription = make_subscription(tenant, end_in_days=2)
        original_end = subscription.end_date
        gateway.charge_status = 'DECLINED'

        status = billing_service.charge_recurring(tenant.id)

        assert status['last_transaction_status'] == 'DECLINED'
        assert session.get(Subscription, subscription.id).end_date == original_end
        assert _ledger(session, tenant.id)[0].failure_reason == 'Fondos insuficientes'

    def test_webhook_during_charge_call_extends_once(self, session, billing_service, gateway, make_tenant,
                                                     make_subscription, build_event, approved_tx, monkeypatch):
        tenant = make_tenant(payment_source_id='3001')
        subscription = make_subscription(tenant, plan='PYME', end_in_days=2)
        original_end = subscription.end_date
        gateway.charge_status = 'PENDING'
        original = gateway.create_transaction

        def charge_then_notify(**kwargs):
            result = original(**kwargs)
            event = build_event(approved_tx(result['id'], reference=kwargs['reference']))
            billing_service.handle_webhook(json.dumps(event))
            return result

        monkeypatch.setattr(gateway, 'create_transaction', charge_then_notify)

        status = billing_service.charge_recurring(tenant.id)

        assert status['last_transaction_status'] == 'APPROVED'
        row = _ledger(session, tenant.id)[0]
        assert row.wompi_transaction_id == status['last_transaction_id']
        assert session.get(Subscription, subscription.id).end_date == original_end + timedelta(days=30)

    def test_second_claim_for_same_period(self, session, billing_service, gateway, make_tenant,
                                          make_subscription):
        tenant = make_tenant(payment_source_id='3001')
        make_subscription(tenant, end_in_days=2)
        gateway.charge_status = 'DECLINED'
        billing_service.charge_recurring(tenant.id)

        with pytest.raises(DuplicateChargeError):
            billing_service.charge_recurring(tenant.id)
        assert len(gateway.charges) == 1

    def test_gateway_failure_marks_row_error(self, session, billing_service, gateway, make_tenant,
                                             make_subscription):
        tenant = make_tenant(payment_source_id='3001')
        make_subscription(tenant, end_in_days=2)
        gateway.charge_error = GatewayTimeoutError('timeout')

        with pytest.raises(GatewayTimeoutError):
            billing_service.charge_recurring(tenant.id)

        row = _ledger(session, tenant.id)[0]
        assert row.status == 'ERROR'
        assert 'timeout' in row.failure_reason

    def test_requires_payment_source(self, session, billing_service, make_tenant, make_subscription):
        tenant = make_tenant()
        make_subscription(tenant)
        with pytest.raises(BusinessLogicError):
            billing_service.charge_recurring(tenant.id)

    def test_requires_active_subscription(self, session, billing_service, make_tenant, make_subscription):
        tenant = make_tenant(payment_source_id='3001')
        make_subscription(tenant, status='SUSPENDED')
        with pytest.raises(InvalidStateError):
            billing_service.charge_recurring(tenant.id)


class TestWebhook:
    """transaction.updated processing."""

    def test_invalid_signature(self, session, billing_service, build_event, approved_tx):
        body = build_event(approved_tx('tx-1'), secret='wrong')
        with pytest.raises(SignatureInvalidError):
            billing_service.handle_webhook(json.dumps(body))

    def test_invalid_json(self, session, billing_service):
        with pytest.raises(SignatureInvalidError):
            billing_service.handle_webhook('{not json')

    def test_approved_event_activates_pending_row(self, session, billing_service, gateway, make_tenant,
                                                  build_event, approved_tx):
        tenant = make_tenant()
        gateway.transactions['tx-1'] = approved_tx('tx-1', status='PENDING', tenant_id=tenant.id)
        billing_service.verify_payment(tenant.id, 'tx-1', 'PYME', 'MONTHLY')

        billing_service.handle_webhook(json.dumps(build_event(approved_tx('tx-1'))))

        subscription = session.query(Subscription).filter_by(tenant_id=tenant.id).one()
        assert subscription.status == 'ACTIVE'
        assert subscription.plan == 'PYME'
        assert _ledger(session, tenant.id)[0].status == 'APPROVED'

    def test_duplicate_delivery_extends_once(self, session, billing_service, gateway, make_tenant,
                                             make_subscription, build_event, approved_tx):
        tenant = make_tenant()
        subscription = make_subscription(tenant, plan='PYME', end_in_days=10)
        original_end = subscription.end_date
        gateway.transactions['tx-2'] = approved_tx('tx-2', status='PENDING', tenant_id=tenant.id)
        billing_service.verify_payment(tenant.id, 'tx-2', 'PYME', 'MONTHLY')

        body = json.dumps(build_event(approved_tx('tx-2')))
        billing_service.handle_webhook(body)
        billing_service.handle_webhook(body)

        assert session.get(Subscription, subscription.id).end_date == original_end + timedelta(days=30)

    def test_approved_row_is_not_downgraded(self, session, billing_service, gateway, make_tenant,
                                            build_event, approved_tx):
        tenant = make_tenant()
        gateway.transactions['tx-3'] = approved_tx('tx-3', tenant_id=tenant.id)
        billing_service.verify_payment(tenant.id, 'tx-3', 'PYME', 'MONTHLY')

        billing_service.handle_webhook(json.dumps(build_event(approved_tx('tx-3', status='DECLINED'))))

        assert _ledger(session, tenant.id)[0].status == 'APPROVED'

    def test_approved_event_links_recurring_claim_by_reference(self, session, billing_service, make_tenant,
                                                               make_subscription, build_event, approved_tx):
        """The event can arrive before the charge call stored the gateway id."""
        tenant = make_tenant(payment_source_id='3001')
        subscription = make_subscription(tenant, plan='PYME', end_in_days=2)
        original_end = subscription.end_date
        claim = BillingTransaction(
            tenant_id=tenant.id,
            subscription_id=subscription.id,
            wompi_reference='SF-claim-1',
            plan='PYME',
            period='MONTHLY',
            amount_in_cents=7990000,
            currency='COP',
            status='PENDING',
            is_recurring=True,
            billing_period_end=original_end,
        )
        session.add(claim)
        session.commit()

        event = build_event(approved_tx('rec-77', reference='SF-claim-1'))
        billing_service.handle_webhook(json.dumps(event))

        row = session.get(BillingTransaction, claim.id)
        assert row.wompi_transaction_id == 'rec-77'
        assert row.status == 'APPROVED'
        assert session.get(Subscription, subscription.id).end_date == original_end + timedelta(days=30)

    def test_unknown_transaction_is_acknowledged(self, session, billing_service, build_event, approved_tx):
        billing_service.handle_webhook(json.dumps(build_event(approved_tx('never-seen'))))

    def test_other_events_are_ignored(self, session, billing_service, build_event, approved_tx):
        billing_service.handle_webhook(build_event(approved_tx('tx-9'), event='nequi_token.updated'))

    def test_processing_errors_are_absorbed(self, session, billing_service, gateway, make_tenant,
                                            build_event, approved_tx):
        tenant = make_tenant()
        gateway.transactions['tx-4'] = approved_tx(
            'tx-4', status='PENDING', amount_in_cents=100, tenant_id=tenant.id
        )
        billing_service.verify_payment(tenant.id, 'tx-4', 'PYME', 'MONTHLY')

        billing_service.handle_webhook(json.dumps(build_event(approved_tx('tx-4', amount_in_cents=100))))

        assert session.query(Subscription).filter_by(tenant_id=tenant.id).first() is None


class TestStatusAndHistory:
    def test_status_without_subscription(self, session, billing_service, make_tenant):
        tenant = make_tenant()

        status = billing_service.get_subscription_status(tenant.id)

        assert status['status'] is None
        assert status['days_remaining'] is None
        assert status['limits']['max_warehouses'] == 1
        assert status['usage']['warehouses'] == {'current': 0, 'limit': 1}

    def test_history_newest_first(self, session, billing_service, gateway, make_tenant, approved_tx):
        tenant = make_tenant()
        gateway.transactions['tx-a'] = approved_tx('tx-a', status='DECLINED', tenant_id=tenant.id)
        gateway.transactions['tx-b'] = approved_tx('tx-b', status='DECLINED', tenant_id=tenant.id)
        billing_service.verify_payment(tenant.id, 'tx-a', 'PYME', 'MONTHLY')
        billing_service.verify_payment(tenant.id, 'tx-b', 'PYME', 'MONTHLY')

        history = billing_service.get_billing_history(tenant.id)

        assert [row['wompi_transaction_id'] for row in history] == ['tx-b', 'tx-a']
