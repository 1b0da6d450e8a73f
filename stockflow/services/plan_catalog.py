"""
Plan catalog: subscription tiers, their resource limits and period pricing.

Pure data and pricing math. Unknown plan or period values raise ValueError
when coerced, they never fall back to a default tier.
"""
import enum
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Tuple, Union

UNLIMITED = -1


class SubscriptionPlan(str, enum.Enum):
    """Subscription tiers, free base tier first."""
    EMPRENDEDOR = 'EMPRENDEDOR'
    PYME = 'PYME'
    PRO = 'PRO'
    PLUS = 'PLUS'


class SubscriptionPeriod(str, enum.Enum):
    """Billing cadence."""
    MONTHLY = 'MONTHLY'
    QUARTERLY = 'QUARTERLY'
    ANNUAL = 'ANNUAL'


FREE_PLAN = SubscriptionPlan.EMPRENDEDOR


@dataclass(frozen=True)
class PlanLimits:
    """Ceiling values for one plan. -1 means unlimited."""
    display_name: str
    description: str
    price_monthly: int  # COP, whole pesos
    max_users: int
    max_accountants: int
    max_products: int
    max_invoices: int  # per calendar month
    max_warehouses: int
    max_employees: int
    features: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self):
        return {
            'display_name': self.display_name,
            'description': self.description,
            'price_monthly': self.price_monthly,
            'max_users': self.max_users,
            'max_accountants': self.max_accountants,
            'max_products': self.max_products,
            'max_invoices': self.max_invoices,
            'max_warehouses': self.max_warehouses,
            'max_employees': self.max_employees,
            'features': list(self.features),
        }


PLAN_LIMITS: Dict[SubscriptionPlan, PlanLimits] = {
    SubscriptionPlan.EMPRENDEDOR: PlanLimits(
        display_name='Emprendedor',
        description='Para empezar a ordenar tu inventario',
        price_monthly=0,
        max_users=2,
        max_accountants=0,
        max_products=100,
        max_invoices=50,
        max_warehouses=1,
        max_employees=3,
        features=('inventory', 'invoices'),
    ),
    SubscriptionPlan.PYME: PlanLimits(
        display_name='Pyme',
        description='Para negocios en crecimiento',
        price_monthly=79900,
        max_users=5,
        max_accountants=1,
        max_products=500,
        max_invoices=UNLIMITED,
        max_warehouses=2,
        max_employees=10,
        features=('inventory', 'invoices', 'reports', 'accountant_access'),
    ),
    SubscriptionPlan.PRO: PlanLimits(
        display_name='Pro',
        description='Para empresas con varias bodegas',
        price_monthly=149900,
        max_users=10,
        max_accountants=1,
        max_products=2000,
        max_invoices=UNLIMITED,
        max_warehouses=10,
        max_employees=50,
        features=('inventory', 'invoices', 'reports', 'accountant_access', 'payroll'),
    ),
    SubscriptionPlan.PLUS: PlanLimits(
        display_name='Plus',
        description='Sin límites para operaciones grandes',
        price_monthly=249900,
        max_users=25,
        max_accountants=3,
        max_products=UNLIMITED,
        max_invoices=UNLIMITED,
        max_warehouses=100,
        max_employees=UNLIMITED,
        features=('inventory', 'invoices', 'reports', 'accountant_access', 'payroll', 'priority_support'),
    ),
}

PERIOD_DAYS: Dict[SubscriptionPeriod, int] = {
    SubscriptionPeriod.MONTHLY: 30,
    SubscriptionPeriod.QUARTERLY: 90,
    SubscriptionPeriod.ANNUAL: 365,
}

PERIOD_MULTIPLIERS: Dict[SubscriptionPeriod, int] = {
    SubscriptionPeriod.MONTHLY: 1,
    SubscriptionPeriod.QUARTERLY: 3,
    SubscriptionPeriod.ANNUAL: 12,
}

PERIOD_DISCOUNTS: Dict[SubscriptionPeriod, Decimal] = {
    SubscriptionPeriod.MONTHLY: Decimal('0'),
    SubscriptionPeriod.QUARTERLY: Decimal('0.10'),
    SubscriptionPeriod.ANNUAL: Decimal('0.20'),
}

PERIOD_LABELS: Dict[SubscriptionPeriod, str] = {
    SubscriptionPeriod.MONTHLY: 'Mensual',
    SubscriptionPeriod.QUARTERLY: 'Trimestral',
    SubscriptionPeriod.ANNUAL: 'Anual',
}


def _check_exhaustive(table, enum_cls, name):
    missing = set(enum_cls) - set(table)
    if missing:
        raise RuntimeError(f"{name} is missing entries for: {sorted(m.value for m in missing)}")


# Adding a plan or period without pricing it fails at import time
_check_exhaustive(PLAN_LIMITS, SubscriptionPlan, 'PLAN_LIMITS')
for _table, _name in ((PERIOD_DAYS, 'PERIOD_DAYS'), (PERIOD_MULTIPLIERS, 'PERIOD_MULTIPLIERS'),
                      (PERIOD_DISCOUNTS, 'PERIOD_DISCOUNTS'), (PERIOD_LABELS, 'PERIOD_LABELS')):
    _check_exhaustive(_table, SubscriptionPeriod, _name)


def as_plan(plan: Union[str, SubscriptionPlan]) -> SubscriptionPlan:
    return SubscriptionPlan(plan)


def as_period(period: Union[str, SubscriptionPeriod]) -> SubscriptionPeriod:
    return SubscriptionPeriod(period)


def get_plan_limits(plan: Union[str, SubscriptionPlan]) -> PlanLimits:
    """Return the limits for a plan. Raises ValueError for unknown plans."""
    return PLAN_LIMITS[as_plan(plan)]


def get_all_plan_limits() -> Dict[SubscriptionPlan, PlanLimits]:
    return dict(PLAN_LIMITS)


def get_period_days(period: Union[str, SubscriptionPeriod]) -> int:
    return PERIOD_DAYS[as_period(period)]


def calculate_plan_price(plan: Union[str, SubscriptionPlan], period: Union[str, SubscriptionPeriod]) -> int:
    """
    Total price for one billing period, in whole currency units.

    monthly price x period multiplier x (1 - period discount), rounded half-up.

    Example:
        calculate_plan_price('PYME', 'QUARTERLY') -> 215730
    """
    period = as_period(period)
    limits = get_plan_limits(plan)
    total = Decimal(limits.price_monthly) * PERIOD_MULTIPLIERS[period] * (1 - PERIOD_DISCOUNTS[period])
    return int(total.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def calculate_price_in_cents(plan: Union[str, SubscriptionPlan], period: Union[str, SubscriptionPeriod]) -> int:
    """Price in minor currency units, as the gateway expects it."""
    return calculate_plan_price(plan, period) * 100


def effective_monthly_price(plan, period) -> int:
    period = as_period(period)
    total = Decimal(calculate_plan_price(plan, period)) / PERIOD_MULTIPLIERS[period]
    return int(total.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def is_free_plan(plan) -> bool:
    return as_plan(plan) == FREE_PLAN


def regular_user_limit(plan, max_users: int) -> int:
    """
    Seats available for non-accountant members.

    Accountant seats are carved out of max_users when the plan grants them.
    """
    if max_users == UNLIMITED or plan is None:
        return max_users
    accountants = get_plan_limits(plan).max_accountants
    if accountants in (0, UNLIMITED):
        return max_users
    return max(0, max_users - accountants)


def get_plan_catalog():
    """Public listing with per-period prices, cheapest tier first."""
    catalog = []
    for plan, limits in PLAN_LIMITS.items():
        prices = {}
        for period in SubscriptionPeriod:
            total = calculate_plan_price(plan, period)
            prices[period.value] = {
                'total': total,
                'total_in_cents': total * 100,
                'monthly': effective_monthly_price(plan, period),
                'discount': float(PERIOD_DISCOUNTS[period]),
            }
        entry = limits.to_dict()
        entry['plan'] = plan.value
        entry['prices'] = prices
        catalog.append(entry)
    return catalog
