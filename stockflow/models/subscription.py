"""
Subscription model - the per-tenant plan lifecycle record.
"""
import enum
from sqlalchemy import Column, String, DateTime, ForeignKey, CheckConstraint, Text
from sqlalchemy.orm import relationship
from stockflow.database import Base, BigIntegerType
from stockflow.utils.dates import utcnow, days_remaining


class SubscriptionStatus(enum.Enum):
    """Lifecycle states. No row at all means the tenant has no plan."""
    ACTIVE = 'ACTIVE'
    SUSPENDED = 'SUSPENDED'
    EXPIRED = 'EXPIRED'


class Subscription(Base):
    """
    Tenant subscription plan and billing period.

    Relationship: One-to-One with Tenant.
    end_date is the single source of truth for expiry.
    """
    __tablename__ = 'tenant_subscriptions'

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    tenant_id = Column(BigIntegerType, ForeignKey('tenant.id', ondelete='CASCADE'), nullable=False, unique=True)

    # Plan and Status
    plan = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False)
    period_type = Column(String(20), nullable=False)

    # Dates
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False, index=True)

    # Suspension
    suspended_at = Column(DateTime, nullable=True)
    suspended_reason = Column(Text, nullable=True)

    # Manual activation audit
    activated_by_id = Column(BigIntegerType, ForeignKey('admin_users.id', ondelete='SET NULL'), nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    tenant = relationship('Tenant', back_populates='subscription')
    transactions = relationship('BillingTransaction', back_populates='subscription')

    # Table constraints
    __table_args__ = (
        CheckConstraint("plan IN ('EMPRENDEDOR', 'PYME', 'PRO', 'PLUS')", name='check_subscription_plan'),
        CheckConstraint("status IN ('ACTIVE', 'SUSPENDED', 'EXPIRED')", name='check_subscription_status'),
        CheckConstraint("period_type IN ('MONTHLY', 'QUARTERLY', 'ANNUAL')", name='check_subscription_period'),
        CheckConstraint("status != 'SUSPENDED' OR suspended_at IS NOT NULL", name='check_suspended_at'),
    )

    def __repr__(self):
        return f'<Subscription tenant_id={self.tenant_id} plan={self.plan} status={self.status}>'

    @property
    def is_active(self):
        return self.status == SubscriptionStatus.ACTIVE.value

    @property
    def is_suspended(self):
        return self.status == SubscriptionStatus.SUSPENDED.value

    @property
    def is_expired(self):
        return self.status == SubscriptionStatus.EXPIRED.value

    @property
    def days_remaining(self):
        return days_remaining(self.end_date)

    def to_dict(self):
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'plan': self.plan,
            'status': self.status,
            'period_type': self.period_type,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'suspended_at': self.suspended_at.isoformat() if self.suspended_at else None,
            'suspended_reason': self.suspended_reason,
            'activated_by_id': self.activated_by_id,
            'days_remaining': self.days_remaining,
        }
