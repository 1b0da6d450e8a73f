"""
Plan limit enforcement for quota-bound resources.

Usage in a blueprint:
    @check_limit(LimitType.WAREHOUSES)
    def create_warehouse(): ...

Or directly from a service:
    enforce_limit(session, tenant_id, LimitType.PRODUCTS)

The check is a read-then-act: two concurrent creators can both pass it
and leave the tenant one unit over quota.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from stockflow.exceptions import LimitReachedError, NotFoundError
from stockflow.models import (
    Tenant, UserTenant, UserRole, Product, Warehouse, Invoice, Employee, EmployeeStatus
)
from stockflow.services import plan_catalog
from stockflow.services.plan_catalog import UNLIMITED
from stockflow.utils.dates import utcnow, start_of_month

logger = logging.getLogger(__name__)


class LimitType(str, enum.Enum):
    USERS = 'users'
    ACCOUNTANTS = 'accountants'
    PRODUCTS = 'products'
    INVOICES = 'invoices'
    WAREHOUSES = 'warehouses'
    EMPLOYEES = 'employees'


@dataclass(frozen=True)
class _LimitRule:
    label: str
    limit: Callable[[Tenant], int]
    count: Callable[[Session, int], int]


def _accountant_seats(tenant: Tenant) -> int:
    if not tenant.plan:
        return 0
    return plan_catalog.get_plan_limits(tenant.plan).max_accountants


def _count_members(session: Session, tenant_id: int, accountants: bool) -> int:
    role_filter = (UserTenant.role == UserRole.ACCOUNTANT.value) if accountants \
        else (UserTenant.role != UserRole.ACCOUNTANT.value)
    return session.query(func.count(UserTenant.id)).filter(
        UserTenant.tenant_id == tenant_id,
        UserTenant.active.is_(True),
        role_filter,
    ).scalar() or 0


def _count_rows(model, *extra):
    def count(session: Session, tenant_id: int) -> int:
        return session.query(func.count(model.id)).filter(model.tenant_id == tenant_id, *extra).scalar() or 0
    return count


def _count_invoices_this_month(session: Session, tenant_id: int) -> int:
    month_start = start_of_month(utcnow())
    return session.query(func.count(Invoice.id)).filter(
        Invoice.tenant_id == tenant_id,
        Invoice.created_at >= month_start,
    ).scalar() or 0


_LIMIT_RULES: Dict[LimitType, _LimitRule] = {
    LimitType.USERS: _LimitRule(
        label='usuarios',
        limit=lambda t: plan_catalog.regular_user_limit(t.plan, t.max_users),
        count=lambda s, tid: _count_members(s, tid, accountants=False),
    ),
    LimitType.ACCOUNTANTS: _LimitRule(
        label='contadores',
        limit=_accountant_seats,
        count=lambda s, tid: _count_members(s, tid, accountants=True),
    ),
    LimitType.PRODUCTS: _LimitRule(
        label='productos',
        limit=lambda t: t.max_products,
        count=_count_rows(Product),
    ),
    LimitType.INVOICES: _LimitRule(
        label='facturas del mes',
        limit=lambda t: t.max_invoices,
        count=_count_invoices_this_month,
    ),
    LimitType.WAREHOUSES: _LimitRule(
        label='bodegas',
        limit=lambda t: t.max_warehouses,
        count=_count_rows(Warehouse),
    ),
    LimitType.EMPLOYEES: _LimitRule(
        label='empleados',
        limit=lambda t: t.max_employees,
        count=_count_rows(Employee, Employee.status != EmployeeStatus.TERMINATED.value),
    ),
}

_missing = set(LimitType) - set(_LIMIT_RULES)
if _missing:
    raise RuntimeError(f"_LIMIT_RULES is missing entries for: {sorted(m.value for m in _missing)}")


def _get_tenant(session: Session, tenant_id: int) -> Tenant:
    tenant = session.get(Tenant, tenant_id)
    if not tenant:
        raise NotFoundError(f"Tenant {tenant_id} no encontrado")
    return tenant


def get_limit(tenant: Tenant, limit_type: LimitType) -> int:
    return _LIMIT_RULES[LimitType(limit_type)].limit(tenant)


def count_resource(session: Session, tenant_id: int, limit_type: LimitType) -> int:
    return _LIMIT_RULES[LimitType(limit_type)].count(session, tenant_id)


def enforce_limit(session: Session, tenant_id: int, limit_type: LimitType, tenant: Optional[Tenant] = None):
    """
    Raise LimitReachedError when the tenant cannot create one more resource.

    Returns:
        (current, limit) when creation is allowed
    """
    limit_type = LimitType(limit_type)
    tenant = tenant or _get_tenant(session, tenant_id)
    limit = get_limit(tenant, limit_type)
    current = count_resource(session, tenant_id, limit_type)

    if limit != UNLIMITED and current >= limit:
        logger.info(f"[LIMITS] Tenant {tenant_id} reached {limit_type.value} limit ({current}/{limit})")
        raise LimitReachedError(_LIMIT_RULES[limit_type].label, current, limit)

    return current, limit


def get_usage_summary(session: Session, tenant: Tenant) -> Dict[str, Dict[str, int]]:
    """Current count and limit for every limit type."""
    return {
        limit_type.value: {
            'current': rule.count(session, tenant.id),
            'limit': rule.limit(tenant),
        }
        for limit_type, rule in _LIMIT_RULES.items()
    }
