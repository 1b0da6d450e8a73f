"""UserTenant model - many-to-many relationship between users and tenants with roles."""
import enum
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from stockflow.database import Base, BigIntegerType
from stockflow.utils.dates import utcnow


class UserRole(enum.Enum):
    """User roles within a tenant."""
    OWNER = 'OWNER'
    ADMIN = 'ADMIN'
    STAFF = 'STAFF'
    ACCOUNTANT = 'ACCOUNTANT'  # External bookkeeper, counted against accountant seats


ADMIN_ROLES = (UserRole.OWNER.value, UserRole.ADMIN.value)


class UserTenant(Base):
    """UserTenant model - links users to tenants with roles."""

    __tablename__ = 'user_tenant'

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    user_id = Column(BigIntegerType, ForeignKey('app_user.id'), nullable=False)
    tenant_id = Column(BigIntegerType, ForeignKey('tenant.id'), nullable=False)
    role = Column(String(20), nullable=False, default='STAFF')
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    user = relationship('AppUser', back_populates='user_tenants')
    tenant = relationship('Tenant', back_populates='user_tenants')

    def __repr__(self):
        return f"<UserTenant(user_id={self.user_id}, tenant_id={self.tenant_id}, role='{self.role}')>"

    def is_owner(self):
        """Check if user is owner of tenant."""
        return self.role == UserRole.OWNER.value

    def is_admin(self):
        """Check if user is admin or owner."""
        return self.role in ADMIN_ROLES

    def is_accountant(self):
        return self.role == UserRole.ACCOUNTANT.value
