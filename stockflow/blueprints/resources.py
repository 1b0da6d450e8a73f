"""
Quota-bound resource creation.

Each route runs the plan limit check before touching the database.
"""
from flask import Blueprint, request, g, jsonify

from stockflow.database import get_session
from stockflow.decorators.limits import check_limit
from stockflow.exceptions import BusinessLogicError, NotFoundError
from stockflow.middleware import require_login, require_tenant, require_role, require_active_tenant
from stockflow.models import AppUser, UserTenant, UserRole, Product, Warehouse, Invoice, Employee
from stockflow.services.limit_service import LimitType, enforce_limit

resources_bp = Blueprint('resources', __name__, url_prefix='/api')


def _payload():
    return request.get_json(silent=True) or {}


def _required(data, name):
    value = data.get(name)
    if value in (None, ''):
        raise BusinessLogicError(f"El campo '{name}' es requerido")
    return value


@resources_bp.route('/products', methods=['POST'])
@require_login
@require_tenant
@require_active_tenant
@check_limit(LimitType.PRODUCTS)
def create_product():
    data = _payload()
    db_session = get_session()
    product = Product(
        tenant_id=g.tenant_id,
        name=_required(data, 'name'),
        sku=data.get('sku'),
        sale_price=data.get('sale_price') or 0,
    )
    db_session.add(product)
    db_session.commit()
    return jsonify(product.to_dict()), 201


@resources_bp.route('/warehouses', methods=['POST'])
@require_login
@require_tenant
@require_active_tenant
@require_role('ADMIN')
@check_limit(LimitType.WAREHOUSES)
def create_warehouse():
    data = _payload()
    db_session = get_session()
    warehouse = Warehouse(tenant_id=g.tenant_id, name=_required(data, 'name'), address=data.get('address'))
    db_session.add(warehouse)
    db_session.commit()
    return jsonify(warehouse.to_dict()), 201


@resources_bp.route('/invoices', methods=['POST'])
@require_login
@require_tenant
@require_active_tenant
@check_limit(LimitType.INVOICES)
def create_invoice():
    data = _payload()
    db_session = get_session()
    invoice = Invoice(
        tenant_id=g.tenant_id,
        number=data.get('number'),
        customer_name=data.get('customer_name'),
        total=data.get('total') or 0,
    )
    db_session.add(invoice)
    db_session.commit()
    return jsonify(invoice.to_dict()), 201


@resources_bp.route('/employees', methods=['POST'])
@require_login
@require_tenant
@require_active_tenant
@require_role('ADMIN')
@check_limit(LimitType.EMPLOYEES)
def create_employee():
    data = _payload()
    db_session = get_session()
    employee = Employee(
        tenant_id=g.tenant_id,
        full_name=_required(data, 'full_name'),
        document_number=data.get('document_number'),
    )
    db_session.add(employee)
    db_session.commit()
    return jsonify(employee.to_dict()), 201


@resources_bp.route('/users', methods=['POST'])
@require_login
@require_tenant
@require_active_tenant
@require_role('ADMIN')
def add_member():
    """
    Add an existing platform user to the tenant.

    Accountants consume accountant seats; every other role consumes a user seat.
    """
    data = _payload()
    role = (data.get('role') or UserRole.STAFF.value).upper()
    if role not in {r.value for r in UserRole} or role == UserRole.OWNER.value:
        raise BusinessLogicError(f"Rol inválido: {role}")

    db_session = get_session()
    limit_type = LimitType.ACCOUNTANTS if role == UserRole.ACCOUNTANT.value else LimitType.USERS
    enforce_limit(db_session, g.tenant_id, limit_type)

    email = _required(data, 'email').strip().lower()
    user = db_session.query(AppUser).filter_by(email=email, active=True).first()
    if not user:
        raise NotFoundError(f"Usuario {email} no encontrado")

    existing = db_session.query(UserTenant).filter_by(user_id=user.id, tenant_id=g.tenant_id).first()
    if existing and existing.active:
        raise BusinessLogicError(f"{email} ya pertenece a este negocio")

    if existing:
        existing.active = True
        existing.role = role
        membership = existing
    else:
        membership = UserTenant(user_id=user.id, tenant_id=g.tenant_id, role=role)
        db_session.add(membership)
    db_session.commit()
    return jsonify({'user_id': user.id, 'email': user.email, 'role': membership.role}), 201
