"""Billing service: checkout, payment verification, recurring charges and webhooks."""
import json
import logging
import time
from typing import Dict, Any, Optional, List, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockflow.database import transaction
from stockflow.exceptions import (
    BusinessLogicError, ConfigurationError, DuplicateChargeError, InvalidStateError,
    NotFoundError, SignatureInvalidError,
)
from stockflow.models import BillingTransaction, BillingStatus, Tenant, map_gateway_status
from stockflow.services import email_service
from stockflow.services import plan_catalog
from stockflow.services.billing_metrics import billing_charges_total, webhooks_total
from stockflow.services.limit_service import get_usage_summary
from stockflow.services.subscription_service import SubscriptionService
from stockflow.services.wompi_client import get_wompi_client
from stockflow.utils.dates import days_remaining
from stockflow.utils.formatters import money_cop

logger = logging.getLogger(__name__)

APPROVED = BillingStatus.APPROVED.value


class BillingService:
    """Servicio de facturación con Wompi."""

    def __init__(self, db_session: Session, gateway=None, subscriptions=None, notifier=None, config=None):
        """
        Initialize billing service.

        Args:
            db_session: SQLAlchemy session
            gateway: WompiClient (defaults to the app-wide client)
            subscriptions: SubscriptionService (built from the session if None)
            notifier: Notification sender (defaults to the email service)
            config: Settings mapping (defaults to current_app.config)
        """
        self.db = db_session
        self.config = config if config is not None else current_app.config
        self.gateway = gateway or get_wompi_client()
        self.notifier = notifier or email_service
        self.subscriptions = subscriptions or SubscriptionService(db_session, notifier=self.notifier)

    @property
    def currency(self) -> str:
        return self.config.get('BILLING_CURRENCY', 'COP')

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_tenant(self, tenant_id: int) -> Tenant:
        tenant = self.db.get(Tenant, tenant_id)
        if not tenant:
            raise NotFoundError(f"Tenant {tenant_id} no encontrado")
        return tenant

    @staticmethod
    def _parse_plan_period(plan, period) -> Tuple[plan_catalog.SubscriptionPlan, plan_catalog.SubscriptionPeriod]:
        try:
            return plan_catalog.as_plan(plan), plan_catalog.as_period(period)
        except ValueError:
            raise BusinessLogicError(f"Plan o periodo inválido: {plan} / {period}")

    @staticmethod
    def _generate_reference(tenant_id: int) -> str:
        return f"SF-{tenant_id}-{int(time.time() * 1000)}"

    def _find_by_gateway_id(self, wompi_transaction_id: str) -> Optional[BillingTransaction]:
        return self.db.query(BillingTransaction).filter_by(
            wompi_transaction_id=str(wompi_transaction_id)
        ).first()

    def _find_unlinked_claim(self, reference: Optional[str]) -> Optional[BillingTransaction]:
        """Recurring claim whose gateway id has not been stored yet."""
        if not reference:
            return None
        return self.db.query(BillingTransaction).filter_by(
            wompi_reference=reference, wompi_transaction_id=None
        ).first()

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def get_subscription_status(self, tenant_id: int) -> Dict[str, Any]:
        """
        Plan, state, period dates, limits and current usage of a tenant.

        Read-only; days_remaining is None when the tenant has no subscription.
        """
        tenant = self._get_tenant(tenant_id)
        subscription = self.subscriptions.get_subscription(tenant_id)
        accountant_seats = plan_catalog.get_plan_limits(tenant.plan).max_accountants if tenant.plan else 0

        return {
            'tenant_id': tenant.id,
            'plan': tenant.plan,
            'status': subscription.status if subscription else None,
            'tenant_status': tenant.status,
            'period_type': subscription.period_type if subscription else None,
            'start_date': subscription.start_date.isoformat() if subscription else None,
            'end_date': subscription.end_date.isoformat() if subscription else None,
            'suspended_reason': subscription.suspended_reason if subscription else None,
            'limits': {
                'max_users': tenant.max_users,
                'max_accountants': accountant_seats,
                'max_products': tenant.max_products,
                'max_invoices': tenant.max_invoices,
                'max_warehouses': tenant.max_warehouses,
                'max_employees': tenant.max_employees,
            },
            'usage': get_usage_summary(self.db, tenant),
            'has_payment_source': tenant.has_payment_source,
            'days_remaining': days_remaining(subscription.end_date) if subscription else None,
        }

    @staticmethod
    def get_plans() -> List[Dict[str, Any]]:
        return plan_catalog.get_plan_catalog()

    def get_billing_history(self, tenant_id: int, limit: int = 50) -> List[Dict[str, Any]]:
        self._get_tenant(tenant_id)
        rows = self.db.query(BillingTransaction).filter_by(tenant_id=tenant_id).order_by(
            BillingTransaction.created_at.desc(), BillingTransaction.id.desc()
        ).limit(limit).all()
        return [row.to_dict() for row in rows]

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def get_checkout_config(self, tenant_id: int, plan, period) -> Dict[str, Any]:
        """
        Parameters for the hosted checkout widget.

        The integrity hash binds reference, amount and currency so the
        browser cannot change them. The free tier cannot be purchased.
        """
        plan, period = self._parse_plan_period(plan, period)
        if plan_catalog.is_free_plan(plan):
            raise BusinessLogicError("El plan Emprendedor es gratuito y no requiere pago")

        self._get_tenant(tenant_id)
        public_key = self.gateway.get_public_key()
        if not public_key:
            raise ConfigurationError("WOMPI_PUBLIC_KEY is not configured")

        reference = self._generate_reference(tenant_id)
        total = plan_catalog.calculate_plan_price(plan, period)
        amount_in_cents = total * 100
        integrity_hash = self.gateway.generate_integrity_hash(reference, amount_in_cents, self.currency)
        tokens = self.gateway.get_acceptance_tokens()
        limits = plan_catalog.get_plan_limits(plan)
        frontend_url = self.config.get('FRONTEND_URL', 'http://localhost:5173').rstrip('/')

        logger.info(f"[BILLING] Checkout {reference} for tenant {tenant_id}: {plan.value}/{period.value}")

        return {
            'public_key': public_key,
            'reference': reference,
            'amount_in_cents': amount_in_cents,
            'currency': self.currency,
            'integrity_hash': integrity_hash,
            'redirect_url': f"{frontend_url}/billing?success=true",
            'acceptance_token': tokens.get('acceptance_token'),
            'personal_data_auth_token': tokens.get('personal_data_auth_token'),
            'plan': plan.value,
            'period': period.value,
            'display_name': limits.display_name,
            'price_formatted': money_cop(total),
        }

    def verify_payment(self, tenant_id: int, transaction_id: str, plan, period) -> Dict[str, Any]:
        """
        Fetch a checkout transaction, record it and activate or extend on approval.

        Gateway failures propagate as GatewayError subclasses.
        """
        plan, period = self._parse_plan_period(plan, period)
        tenant = self._get_tenant(tenant_id)

        gateway_tx = self.gateway.get_transaction(transaction_id)
        billing_tx, previous_status = self._record_gateway_transaction(tenant, gateway_tx, plan, period)

        logger.info(
            f"[BILLING] Verified transaction {billing_tx.wompi_transaction_id} for tenant {tenant_id}: "
            f"{previous_status or 'NEW'} -> {billing_tx.status}"
        )

        if billing_tx.is_approved and previous_status != APPROVED:
            self._apply_approved(billing_tx, customer_email=gateway_tx.get('customer_email'))

        return self.get_subscription_status(tenant_id)

    def _record_gateway_transaction(self, tenant: Tenant, gateway_tx: Dict[str, Any], plan, period):
        """
        Insert or merge the ledger row for a gateway transaction.

        Returns:
            (billing_tx, previous_status) where previous_status is None for new rows
        """
        wompi_id = str(gateway_tx.get('id') or '')
        if not wompi_id:
            raise BusinessLogicError("La pasarela devolvió una transacción sin id")
        status = map_gateway_status(gateway_tx.get('status'))

        existing = self._find_by_gateway_id(wompi_id)
        if existing is None:
            if not str(gateway_tx.get('reference') or '').startswith(f"SF-{tenant.id}-"):
                logger.warning(
                    f"[BILLING] Tenant {tenant.id} tried to verify transaction {wompi_id} "
                    f"with reference {gateway_tx.get('reference')}"
                )
                raise BusinessLogicError("La transacción no pertenece a este negocio")
            billing_tx = BillingTransaction(
                tenant_id=tenant.id,
                wompi_transaction_id=wompi_id,
                wompi_reference=gateway_tx.get('reference') or '',
                plan=plan.value,
                period=period.value,
                amount_in_cents=int(gateway_tx.get('amount_in_cents') or 0),
                currency=gateway_tx.get('currency') or self.currency,
                status=status,
                payment_method_type=gateway_tx.get('payment_method_type'),
                failure_reason=gateway_tx.get('status_message'),
                is_recurring=False,
            )
            self.db.add(billing_tx)
            try:
                self.db.commit()
                billing_charges_total.labels(kind='checkout', status=status).inc()
                return billing_tx, None
            except IntegrityError:
                # A webhook or a second verify inserted it first
                self.db.rollback()
                existing = self._find_by_gateway_id(wompi_id)
                if existing is None:
                    raise

        if existing.tenant_id != tenant.id:
            raise BusinessLogicError("La transacción no pertenece a este negocio")

        previous_status = existing.status
        with transaction(self.db):
            self._merge_status(existing, status, gateway_tx)
        return existing, previous_status

    @staticmethod
    def _merge_status(billing_tx: BillingTransaction, status: str, gateway_tx: Dict[str, Any]):
        if billing_tx.is_approved:
            if status != APPROVED:
                logger.warning(
                    f"[BILLING] Ignoring {status} for already approved transaction "
                    f"{billing_tx.wompi_transaction_id}"
                )
            return
        billing_tx.status = status
        billing_tx.payment_method_type = gateway_tx.get('payment_method_type') or billing_tx.payment_method_type
        billing_tx.failure_reason = gateway_tx.get('status_message')

    def _apply_approved(self, billing_tx: BillingTransaction, customer_email: Optional[str] = None):
        """
        Drive the state machine for a transaction that just became APPROVED.

        Recurring charges and same-plan payments on an ACTIVE subscription
        extend it; everything else activates the paid plan.
        """
        expected = plan_catalog.calculate_price_in_cents(billing_tx.plan, billing_tx.period)
        if billing_tx.amount_in_cents != expected or billing_tx.currency != self.currency:
            logger.error(
                f"[BILLING] Transaction {billing_tx.wompi_transaction_id} paid "
                f"{billing_tx.amount_in_cents} {billing_tx.currency}, expected {expected} {self.currency}"
            )
            raise BusinessLogicError("El monto pagado no coincide con el precio del plan")

        subscription = self.subscriptions.get_subscription(billing_tx.tenant_id)
        renew = (
            subscription is not None
            and subscription.is_active
            and (billing_tx.is_recurring or subscription.plan == billing_tx.plan)
        )
        if renew:
            self.subscriptions.extend(
                billing_tx.tenant_id, billing_tx.period, billing_transaction_id=billing_tx.id
            )
        else:
            self.subscriptions.activate(
                billing_tx.tenant_id,
                billing_tx.plan,
                billing_tx.period,
                customer_email=customer_email,
                billing_transaction_id=billing_tx.id,
            )

    # ------------------------------------------------------------------
    # Payment sources
    # ------------------------------------------------------------------

    def create_payment_source(
        self,
        tenant_id: int,
        card_token: str,
        acceptance_token: str,
        personal_auth_token: Optional[str] = None
    ) -> Dict[str, str]:
        """Store a tokenized card for recurring charges, voiding any previous one."""
        tenant = self._get_tenant(tenant_id)
        customer_email = tenant.billing_email
        if not customer_email:
            raise BusinessLogicError("El negocio no tiene un email de facturación")

        source = self.gateway.create_payment_source(
            token=card_token,
            customer_email=customer_email,
            acceptance_token=acceptance_token,
            personal_auth_token=personal_auth_token,
        )
        source_id = str(source['id'])
        previous = tenant.wompi_payment_source_id

        with transaction(self.db):
            tenant.wompi_payment_source_id = source_id
            tenant.wompi_customer_email = customer_email

        logger.info(f"[BILLING] Payment source {source_id} stored for tenant {tenant_id}")

        if previous and previous != source_id:
            self._void_quietly(previous)
        return {'payment_source_id': source_id}

    def remove_payment_source(self, tenant_id: int) -> None:
        tenant = self._get_tenant(tenant_id)
        source_id = tenant.wompi_payment_source_id
        if not source_id:
            raise BusinessLogicError("El negocio no tiene un método de pago registrado")

        with transaction(self.db):
            tenant.wompi_payment_source_id = None

        logger.info(f"[BILLING] Payment source {source_id} removed for tenant {tenant_id}")
        self._void_quietly(source_id)

    def _void_quietly(self, source_id: str):
        try:
            self.gateway.void_payment_source(source_id)
        except Exception as e:
            logger.warning(f"[BILLING] Could not void payment source {source_id}: {e}")

    # ------------------------------------------------------------------
    # Recurring
    # ------------------------------------------------------------------

    def charge_recurring(self, tenant_id: int) -> Dict[str, Any]:
        """
        Charge the stored payment source for the next period.

        The ledger row is claimed as PENDING before calling the gateway.
        A second claim for the same subscription end_date raises
        DuplicateChargeError instead of charging twice.

        Returns:
            Subscription status plus last_transaction_status
        """
        tenant = self._get_tenant(tenant_id)
        subscription = self.subscriptions.get_subscription(tenant_id)
        if subscription is None:
            raise NotFoundError(f"El tenant {tenant_id} no tiene suscripción")
        if not tenant.wompi_payment_source_id:
            raise BusinessLogicError("El negocio no tiene un método de pago registrado")
        if not subscription.is_active:
            raise InvalidStateError(
                f"Solo se renuevan suscripciones activas (estado actual: {subscription.status})"
            )
        if not self.gateway.enabled:
            raise ConfigurationError("WOMPI_PRIVATE_KEY is not configured")
        customer_email = tenant.billing_email
        if not customer_email:
            raise BusinessLogicError("El negocio no tiene un email de facturación")

        subscription_id = subscription.id
        period_end = subscription.end_date
        source_id = tenant.wompi_payment_source_id
        amount_in_cents = plan_catalog.calculate_price_in_cents(subscription.plan, subscription.period_type)
        reference = self._generate_reference(tenant_id)

        billing_tx = BillingTransaction(
            tenant_id=tenant_id,
            subscription_id=subscription_id,
            wompi_reference=reference,
            plan=subscription.plan,
            period=subscription.period_type,
            amount_in_cents=amount_in_cents,
            currency=self.currency,
            status=BillingStatus.PENDING.value,
            is_recurring=True,
            billing_period_end=period_end,
        )
        self.db.add(billing_tx)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateChargeError(subscription_id, period_end)

        logger.info(f"[RECURRING] Charging tenant {tenant_id} {amount_in_cents} {self.currency} ({reference})")

        try:
            tokens = self.gateway.get_acceptance_tokens()
            gateway_tx = self.gateway.create_transaction(
                amount_in_cents=amount_in_cents,
                currency=self.currency,
                customer_email=customer_email,
                reference=reference,
                acceptance_token=tokens.get('acceptance_token'),
                payment_source_id=int(source_id) if str(source_id).isdigit() else source_id,
                recurrent=True,
            )
        except Exception as e:
            with transaction(self.db):
                billing_tx.status = BillingStatus.ERROR.value
                billing_tx.failure_reason = str(e)[:500]
            billing_charges_total.labels(kind='recurring', status=BillingStatus.ERROR.value).inc()
            raise

        # The webhook may have linked and settled the claim in the meantime
        self.db.refresh(billing_tx)
        previous_status = billing_tx.status
        with transaction(self.db):
            if billing_tx.wompi_transaction_id is None:
                billing_tx.wompi_transaction_id = str(gateway_tx['id'])
            if previous_status == BillingStatus.PENDING.value:
                self._merge_status(billing_tx, map_gateway_status(gateway_tx.get('status')), gateway_tx)

        billing_charges_total.labels(kind='recurring', status=billing_tx.status).inc()
        logger.info(f"[RECURRING] Tenant {tenant_id} charge {billing_tx.wompi_transaction_id}: {billing_tx.status}")

        if billing_tx.is_approved and previous_status != APPROVED:
            self._apply_approved(billing_tx)

        status = self.get_subscription_status(tenant_id)
        status['last_transaction_status'] = billing_tx.status
        status['last_transaction_id'] = billing_tx.wompi_transaction_id
        return status

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def handle_webhook(self, raw_body) -> None:
        """
        Verify and process a gateway event.

        Raises SignatureInvalidError for unverifiable payloads. Anything that
        goes wrong after verification is logged and absorbed so the gateway
        gets its acknowledgment.
        """
        body = raw_body
        if isinstance(raw_body, (bytes, str)):
            try:
                body = json.loads(raw_body)
            except ValueError:
                webhooks_total.labels(outcome='invalid_signature').inc()
                raise SignatureInvalidError("Webhook body is not valid JSON")

        if not self.gateway.verify_webhook_signature(body):
            webhooks_total.labels(outcome='invalid_signature').inc()
            logger.warning("[WEBHOOK] Invalid signature, event rejected")
            raise SignatureInvalidError()

        event = body.get('event')
        outcome = 'processed'
        try:
            if event == 'transaction.updated':
                transaction_data = (body.get('data') or {}).get('transaction') or {}
                self._handle_transaction_updated(transaction_data)
            else:
                logger.info(f"[WEBHOOK] Unhandled event type: {event}")
                outcome = 'ignored'
        except Exception as e:
            self.db.rollback()
            logger.exception(f"[WEBHOOK] Error processing {event}: {e}")
            outcome = 'error'

        webhooks_total.labels(outcome=outcome).inc()

    def _handle_transaction_updated(self, transaction_data: Dict[str, Any]):
        wompi_id = transaction_data.get('id')
        if not wompi_id:
            logger.warning("[WEBHOOK] transaction.updated without transaction id")
            return

        billing_tx = self._find_by_gateway_id(wompi_id)
        if billing_tx is None:
            billing_tx = self._find_unlinked_claim(transaction_data.get('reference'))
        if billing_tx is None:
            logger.warning(f"[WEBHOOK] Transaction {wompi_id} not found in ledger")
            return

        previous_status = billing_tx.status
        new_status = map_gateway_status(transaction_data.get('status'))
        with transaction(self.db):
            if billing_tx.wompi_transaction_id is None:
                billing_tx.wompi_transaction_id = str(wompi_id)
            self._merge_status(billing_tx, new_status, transaction_data)

        logger.info(f"[WEBHOOK] Transaction {wompi_id}: {previous_status} -> {billing_tx.status}")

        if new_status == APPROVED and previous_status != APPROVED:
            customer_email = (
                transaction_data.get('customer_email')
                or (transaction_data.get('customer_data') or {}).get('email')
            )
            self._apply_approved(billing_tx, customer_email=customer_email)
