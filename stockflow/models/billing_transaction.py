"""BillingTransaction model - one row per charge attempt against the gateway."""
import enum
from sqlalchemy import (
    Column, String, DateTime, Boolean, ForeignKey, CheckConstraint, UniqueConstraint, Text, BigInteger
)
from sqlalchemy.orm import relationship
from stockflow.database import Base, BigIntegerType
from stockflow.utils.dates import utcnow


class BillingStatus(enum.Enum):
    """Gateway transaction status."""
    PENDING = 'PENDING'
    APPROVED = 'APPROVED'
    DECLINED = 'DECLINED'
    VOIDED = 'VOIDED'
    ERROR = 'ERROR'


def map_gateway_status(raw_status):
    """Normalize a gateway status string. Anything unrecognized is ERROR."""
    try:
        return BillingStatus(raw_status).value
    except ValueError:
        return BillingStatus.ERROR.value


class BillingTransaction(Base):
    """
    Ledger of charge attempts (checkout verification and recurring renewals).

    A recurring row is claimed before the gateway call, keyed by the
    subscription end_date it renews; the unique constraint makes a second
    claim for the same period fail instead of double charging.
    """
    __tablename__ = 'billing_transactions'

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    tenant_id = Column(BigIntegerType, ForeignKey('tenant.id', ondelete='CASCADE'), nullable=False, index=True)
    subscription_id = Column(BigIntegerType, ForeignKey('tenant_subscriptions.id', ondelete='SET NULL'),
                             nullable=True, index=True)

    wompi_transaction_id = Column(String(100), nullable=True, unique=True)
    wompi_reference = Column(String(100), nullable=False)

    plan = Column(String(20), nullable=False)
    period = Column(String(20), nullable=False)
    amount_in_cents = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False, default='COP')

    status = Column(String(20), nullable=False, default=BillingStatus.PENDING.value, index=True)
    payment_method_type = Column(String(50), nullable=True)
    failure_reason = Column(Text, nullable=True)

    is_recurring = Column(Boolean, nullable=False, default=False)
    billing_period_end = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    tenant = relationship('Tenant')
    subscription = relationship('Subscription', back_populates='transactions')

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'DECLINED', 'VOIDED', 'ERROR')",
            name='check_billing_status'
        ),
        UniqueConstraint('subscription_id', 'billing_period_end', 'is_recurring',
                         name='uq_billing_recurring_period'),
    )

    def __repr__(self):
        return (f"<BillingTransaction(id={self.id}, tenant_id={self.tenant_id}, "
                f"wompi_id='{self.wompi_transaction_id}', status='{self.status}')>")

    @property
    def is_approved(self):
        return self.status == BillingStatus.APPROVED.value

    @property
    def is_pending(self):
        return self.status == BillingStatus.PENDING.value

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'subscription_id': self.subscription_id,
            'wompi_transaction_id': self.wompi_transaction_id,
            'reference': self.wompi_reference,
            'plan': self.plan,
            'period': self.period,
            'amount_in_cents': self.amount_in_cents,
            'currency': self.currency,
            'status': self.status,
            'payment_method_type': self.payment_method_type,
            'failure_reason': self.failure_reason,
            'is_recurring': self.is_recurring,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
