"""Tenant model - each business/organization using the platform."""
import enum
from sqlalchemy import Column, String, DateTime, Integer, CheckConstraint
from sqlalchemy.orm import relationship
from stockflow.database import Base, BigIntegerType
from stockflow.utils.dates import utcnow


class TenantStatus(enum.Enum):
    """Operational status of a tenant."""
    ACTIVE = 'ACTIVE'
    SUSPENDED = 'SUSPENDED'


class Tenant(Base):
    """
    Tenant model.

    The max_* columns mirror the Plan Catalog at the moment a plan is applied.
    They are written together with plan changes, never recomputed lazily.
    Defaults match the free tier.
    """

    __tablename__ = 'tenant'

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    slug = Column(String(80), nullable=False, unique=True)  # URL-safe identifier
    name = Column(String(200), nullable=False)  # Display name
    email = Column(String(255), nullable=True)  # Billing contact

    plan = Column(String(20), nullable=True)  # None = no plan yet
    status = Column(String(20), nullable=False, default=TenantStatus.ACTIVE.value)

    # Quotas (-1 = unlimited)
    max_users = Column(Integer, nullable=False, default=2)
    max_products = Column(Integer, nullable=False, default=100)
    max_invoices = Column(Integer, nullable=False, default=50)
    max_warehouses = Column(Integer, nullable=False, default=1)
    max_employees = Column(Integer, nullable=False, default=3)

    # Gateway stored payment method
    wompi_payment_source_id = Column(String(64), nullable=True)
    wompi_customer_email = Column(String(255), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    user_tenants = relationship('UserTenant', back_populates='tenant')
    subscription = relationship('Subscription', back_populates='tenant', uselist=False,
                                cascade='all, delete-orphan')

    __table_args__ = (
        CheckConstraint("status IN ('ACTIVE', 'SUSPENDED')", name='check_tenant_status'),
        CheckConstraint("plan IS NULL OR plan IN ('EMPRENDEDOR', 'PYME', 'PRO', 'PLUS')",
                        name='check_tenant_plan'),
    )

    def __repr__(self):
        return f"<Tenant(id={self.id}, slug='{self.slug}', plan='{self.plan}', status='{self.status}')>"

    @property
    def is_suspended(self):
        return self.status == TenantStatus.SUSPENDED.value

    @property
    def has_payment_source(self):
        return bool(self.wompi_payment_source_id)

    @property
    def billing_email(self):
        """Email the gateway knows the customer by."""
        return self.wompi_customer_email or self.email

    def apply_limits(self, limits):
        """Copy quota ceilings from a PlanLimits entry."""
        self.max_users = limits.max_users
        self.max_products = limits.max_products
        self.max_invoices = limits.max_invoices
        self.max_warehouses = limits.max_warehouses
        self.max_employees = limits.max_employees

    def to_dict(self):
        return {
            'id': self.id,
            'slug': self.slug,
            'name': self.name,
            'email': self.email,
            'plan': self.plan,
            'status': self.status,
            'max_users': self.max_users,
            'max_products': self.max_products,
            'max_invoices': self.max_invoices,
            'max_warehouses': self.max_warehouses,
            'max_employees': self.max_employees,
            'has_payment_source': self.has_payment_source,
        }
