"""Models package - exports all SQLAlchemy models."""
# SaaS Core Models
from stockflow.models.admin_user import AdminUser
from stockflow.models.app_user import AppUser
from stockflow.models.tenant import Tenant, TenantStatus
from stockflow.models.user_tenant import UserTenant, UserRole, ADMIN_ROLES

# Billing Models
from stockflow.models.subscription import Subscription, SubscriptionStatus
from stockflow.models.billing_transaction import BillingTransaction, BillingStatus, map_gateway_status

# Quota-bound resources
from stockflow.models.product import Product
from stockflow.models.warehouse import Warehouse
from stockflow.models.invoice import Invoice
from stockflow.models.employee import Employee, EmployeeStatus

__all__ = [
    # SaaS Core
    'AdminUser', 'AppUser', 'Tenant', 'TenantStatus', 'UserTenant', 'UserRole', 'ADMIN_ROLES',
    # Billing
    'Subscription', 'SubscriptionStatus', 'BillingTransaction', 'BillingStatus', 'map_gateway_status',
    # Resources
    'Product', 'Warehouse', 'Invoice', 'Employee', 'EmployeeStatus',
]
