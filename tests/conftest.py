import hashlib
import pytest
import uuid
from datetime import timedelta
from unittest.mock import Mock

from stockflow import create_app
from stockflow.database import Base, get_session, create_all
from stockflow.exceptions import GatewayResponseError
from stockflow.models import Tenant, AppUser, UserTenant, AdminUser, Subscription
from stockflow.services import plan_catalog
from stockflow.services.billing_service import BillingService
from stockflow.services.subscription_service import SubscriptionService
from stockflow.services.wompi_client import WompiClient
from stockflow.utils.dates import utcnow

EVENT_SECRET = 'test_events_secret'
INTEGRITY_SECRET = 'test_integrity_secret'
BILLING_CONFIG = {'BILLING_CURRENCY': 'COP', 'FRONTEND_URL': 'http://frontend.test'}


class FakeGateway:
    """In-memory stand-in for WompiClient. Signatures use the real algorithms."""

    enabled = True

    def __init__(self):
        self._signer = WompiClient(event_secret=EVENT_SECRET, integrity_secret=INTEGRITY_SECRET)
        self.transactions = {}
        self.charges = []
        self.payment_sources = []
        self.voided = []
        self.charge_status = 'APPROVED'
        self.charge_error = None

    def get_public_key(self):
        return 'pub_test_key'

    def get_acceptance_tokens(self):
        return {'acceptance_token': 'acc-token', 'personal_data_auth_token': 'pda-token'}

    def generate_integrity_hash(self, reference, amount_in_cents, currency, expiration_time=None):
        return self._signer.generate_integrity_hash(reference, amount_in_cents, currency, expiration_time)

    def verify_webhook_signature(self, body):
        return self._signer.verify_webhook_signature(body)

    def get_transaction(self, transaction_id):
        if transaction_id not in self.transactions:
            raise GatewayResponseError(404, 'Not Found', '{"error": "NOT_FOUND_ERROR"}')
        return dict(self.transactions[transaction_id])

    def create_transaction(self, **kwargs):
        if self.charge_error is not None:
            raise self.charge_error
        self.charges.append(kwargs)
        return {
            'id': f"rec-{len(self.charges)}-{uuid.uuid4().hex[:6]}",
            'status': self.charge_status,
            'reference': kwargs['reference'],
            'amount_in_cents': kwargs['amount_in_cents'],
            'currency': kwargs['currency'],
            'payment_method_type': 'CARD',
            'status_message': None if self.charge_status == 'APPROVED' else 'Fondos insuficientes',
        }

    def create_payment_source(self, token, customer_email, acceptance_token, personal_auth_token=None):
        source = {'id': 3000 + len(self.payment_sources) + 1, 'status': 'AVAILABLE', 'token': token}
        self.payment_sources.append(source)
        return source

    def void_payment_source(self, payment_source_id):
        self.voided.append(str(payment_source_id))


def approved_transaction(tx_id, plan='PYME', period='MONTHLY', tenant_id=None, **overrides):
    """Gateway transaction payload paying exactly the catalog price."""
    data = {
        'id': tx_id,
        'status': 'APPROVED',
        'reference': f'SF-{tenant_id}-1700000000000' if tenant_id else f'SF-test-{tx_id}',
        'amount_in_cents': plan_catalog.calculate_price_in_cents(plan, period),
        'currency': 'COP',
        'payment_method_type': 'CARD',
        'customer_email': 'pagos@example.com',
    }
    data.update(overrides)
    return data


def signed_event(transaction, secret=EVENT_SECRET, timestamp=1530291411, event='transaction.updated'):
    """transaction.updated body signed the way the gateway signs it."""
    properties = ['transaction.id', 'transaction.status', 'transaction.amount_in_cents']
    values = f"{transaction['id']}{transaction['status']}{transaction['amount_in_cents']}"
    checksum = hashlib.sha256(f"{values}{timestamp}{secret}".encode('utf-8')).hexdigest()
    return {
        'event': event,
        'data': {'transaction': transaction},
        'environment': 'test',
        'signature': {'properties': properties, 'checksum': checksum},
        'timestamp': timestamp,
        'sent_at': '2018-07-20T16:45:05.000Z',
    }


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app('config.TestingConfig')
    with app.app_context():
        create_all()
    return app


@pytest.fixture(autouse=True)
def app_context(app):
    """Keep one app context per test so requests share the test's session."""
    with app.app_context():
        yield


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Database session; every table is emptied after the test."""
    session = get_session()
    yield session
    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    session.remove()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    """Records every notification; each send reports success."""
    return Mock()


@pytest.fixture
def subscription_service(session, notifier):
    return SubscriptionService(session, notifier=notifier)


@pytest.fixture
def billing_service(session, gateway, notifier, subscription_service):
    return BillingService(
        session, gateway=gateway, subscriptions=subscription_service, notifier=notifier, config=BILLING_CONFIG
    )


@pytest.fixture
def make_tenant(session):
    """Factory for tenants. Quotas follow the plan when one is given."""
    def _make(plan=None, payment_source_id=None, **kwargs):
        suffix = str(uuid.uuid4())[:8]
        tenant = Tenant(
            slug=kwargs.pop('slug', f'tenant-{suffix}'),
            name=kwargs.pop('name', f'Negocio {suffix}'),
            email=kwargs.pop('email', f'billing-{suffix}@test.com'),
            plan=plan,
            wompi_payment_source_id=payment_source_id,
            **kwargs
        )
        if plan:
            tenant.apply_limits(plan_catalog.get_plan_limits(plan))
        session.add(tenant)
        session.commit()
        return tenant
    return _make


@pytest.fixture
def make_member(session):
    """Factory for a user attached to a tenant with a role."""
    def _make(tenant, role='OWNER', full_name='Ana Torres', active=True):
        suffix = str(uuid.uuid4())[:8]
        user = AppUser(email=f'user-{suffix}@test.com', full_name=full_name, active=True)
        user.set_password('password123')
        session.add(user)
        session.flush()
        session.add(UserTenant(user_id=user.id, tenant_id=tenant.id, role=role, active=active))
        session.commit()
        return user
    return _make


@pytest.fixture
def make_subscription(session):
    """Factory for a subscription row ending ``end_in_days`` from now (negative = lapsed)."""
    def _make(tenant, plan='PYME', period='MONTHLY', end_in_days=20, status='ACTIVE'):
        now = utcnow()
        subscription = Subscription(
            tenant_id=tenant.id,
            plan=plan,
            status=status,
            period_type=period,
            start_date=now - timedelta(days=plan_catalog.get_period_days(period) - end_in_days),
            end_date=now + timedelta(days=end_in_days),
            suspended_at=now if status == 'SUSPENDED' else None,
            suspended_reason='Pago pendiente' if status == 'SUSPENDED' else None,
        )
        tenant.plan = plan
        tenant.status = 'ACTIVE' if status == 'ACTIVE' else 'SUSPENDED'
        tenant.apply_limits(plan_catalog.get_plan_limits(plan))
        session.add(subscription)
        session.commit()
        return subscription
    return _make


@pytest.fixture
def tenant1(make_tenant):
    return make_tenant()


@pytest.fixture
def user1(make_member, tenant1):
    return make_member(tenant1, role='OWNER')


@pytest.fixture
def admin_user(session):
    admin = AdminUser(email=f'ops-{uuid.uuid4().hex[:8]}@stockflow.test')
    admin.set_password('admin-password')
    session.add(admin)
    session.commit()
    return admin


@pytest.fixture(scope='function')
def authenticated_client(client, user1, tenant1):
    """Create authenticated client for tenant1 (OWNER)."""
    with client.session_transaction() as sess:
        sess['user_id'] = user1.id
        sess['tenant_id'] = tenant1.id
    return client


@pytest.fixture
def admin_client(client, admin_user):
    with client.session_transaction() as sess:
        sess['admin_user_id'] = admin_user.id
    return client


@pytest.fixture
def fake_app_gateway(app, gateway):
    """Swap the app-wide Wompi client for the fake during one test."""
    original = app.extensions['wompi']
    app.extensions['wompi'] = gateway
    yield gateway
    app.extensions['wompi'] = original


@pytest.fixture
def approved_tx():
    return approved_transaction


@pytest.fixture
def build_event():
    return signed_event
