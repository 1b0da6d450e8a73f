"""
Admin Blueprint - operator endpoints for manual subscription management.

Routes:
- /admin/login, /admin/logout - Admin authentication
- /admin/subscriptions - List and filter subscriptions
- /admin/tenants/<id>/subscription - Tenant subscription detail
- /admin/tenants/<id>/activate|suspend|reactivate|change-plan - Transitions
- /admin/jobs/* - Run or preview the daily billing jobs
"""

from typing import Any, Dict, Tuple, Union

from flask import Blueprint, request, session, jsonify, Response, current_app, g

from stockflow.database import get_session
from stockflow.decorators.admin_security import admin_required
from stockflow.exceptions import BusinessLogicError, NotFoundError, AuthenticationError
from stockflow.models import AdminUser, Subscription
from stockflow.services import plan_catalog
from stockflow.services.jobs import build_expiry_service, run_recurring_billing, run_subscription_expiry
from stockflow.services.subscription_service import SubscriptionService


admin_bp = Blueprint('admin', __name__, url_prefix='/admin')


def _payload() -> Dict[str, Any]:
    return request.get_json(silent=True) or {}


def _subscription_response(subscription: Subscription, message: str) -> Dict[str, Any]:
    return {
        'status': 'ok',
        'message': message,
        'subscription': subscription.to_dict(),
        'tenant': subscription.tenant.to_dict(),
    }


def _require_plan(data: Dict[str, Any], field: str = 'plan') -> plan_catalog.SubscriptionPlan:
    try:
        return plan_catalog.as_plan(data.get(field))
    except ValueError:
        raise BusinessLogicError(f"Plan inválido: {data.get(field)}")


def _require_period(data: Dict[str, Any]) -> plan_catalog.SubscriptionPeriod:
    try:
        return plan_catalog.as_period(data.get('period') or 'MONTHLY')
    except ValueError:
        raise BusinessLogicError(f"Periodo inválido: {data.get('period')}")


@admin_bp.route('/login', methods=['POST'])
def login() -> Union[Response, Tuple[Response, int]]:
    """Admin login - separate from tenant user login."""
    data = _payload()
    email = (data.get('email') or '').strip()
    password = data.get('password') or ''

    if not email or not password:
        raise BusinessLogicError('Email y contraseña son requeridos.')

    session_db = get_session()
    admin_user = session_db.query(AdminUser).filter_by(email=email).first()
    if not admin_user or not admin_user.check_password(password):
        raise AuthenticationError('Email o contraseña incorrectos.')

    session.clear()
    session['admin_user_id'] = admin_user.id
    session.permanent = True

    admin_user.update_last_login()
    session_db.commit()

    current_app.logger.info(f"[ADMIN] Login: {admin_user.email}")
    return jsonify({'status': 'ok', 'admin': {'id': admin_user.id, 'email': admin_user.email}})


@admin_bp.route('/logout', methods=['POST'])
def logout() -> Response:
    session.pop('admin_user_id', None)
    return jsonify({'status': 'ok'})


@admin_bp.route('/subscriptions')
@admin_required
def list_subscriptions() -> Response:
    status = request.args.get('status')
    try:
        subscriptions = SubscriptionService(get_session()).list_subscriptions(status)
    except ValueError:
        raise BusinessLogicError(f"Estado inválido: {status}")
    return jsonify({'subscriptions': [s.to_dict() for s in subscriptions]})


@admin_bp.route('/subscriptions/expiring')
@admin_required
def expiring_subscriptions() -> Response:
    days = request.args.get('days', 7, type=int)
    subscriptions = SubscriptionService(get_session()).get_expiring_subscriptions(days)
    return jsonify({'days': days, 'subscriptions': [s.to_dict() for s in subscriptions]})


@admin_bp.route('/plans')
@admin_required
def plan_limits() -> Response:
    """Límites de todos los planes."""
    return jsonify({
        plan.value: limits.to_dict()
        for plan, limits in plan_catalog.get_all_plan_limits().items()
    })


@admin_bp.route('/tenants/<int:tenant_id>/subscription')
@admin_required
def tenant_subscription(tenant_id: int) -> Response:
    subscription = SubscriptionService(get_session()).get_subscription(tenant_id)
    if not subscription:
        raise NotFoundError('El negocio no tiene suscripción')
    return jsonify(subscription.to_dict())


@admin_bp.route('/tenants/<int:tenant_id>/activate', methods=['POST'])
@admin_required
def activate_plan(tenant_id: int) -> Response:
    """Activar un plan manualmente (pago por fuera de la pasarela)."""
    data = _payload()
    plan = _require_plan(data)
    period = _require_period(data)

    subscription = SubscriptionService(get_session()).activate(
        tenant_id, plan, period, activated_by_id=g.admin_user.id
    )
    current_app.logger.info(
        f"[ADMIN] {g.admin_user.email} activated {plan.value}/{period.value} for tenant {tenant_id}"
    )
    display_name = plan_catalog.get_plan_limits(plan).display_name
    return jsonify(_subscription_response(
        subscription,
        f"Plan {display_name} activado exitosamente hasta {subscription.end_date.strftime('%d/%m/%Y')}"
    ))


@admin_bp.route('/tenants/<int:tenant_id>/suspend', methods=['POST'])
@admin_required
def suspend_plan(tenant_id: int) -> Response:
    reason = (_payload().get('reason') or '').strip()
    if not reason:
        raise BusinessLogicError('El motivo de suspensión es requerido.')

    subscription = SubscriptionService(get_session()).suspend(tenant_id, reason)
    current_app.logger.info(f"[ADMIN] {g.admin_user.email} suspended tenant {tenant_id}: {reason}")
    return jsonify(_subscription_response(subscription, 'Suscripción suspendida'))


@admin_bp.route('/tenants/<int:tenant_id>/reactivate', methods=['POST'])
@admin_required
def reactivate_plan(tenant_id: int) -> Response:
    subscription = SubscriptionService(get_session()).reactivate(tenant_id)
    current_app.logger.info(f"[ADMIN] {g.admin_user.email} reactivated tenant {tenant_id}")
    return jsonify(_subscription_response(subscription, 'Suscripción reactivada'))


@admin_bp.route('/tenants/<int:tenant_id>/change-plan', methods=['POST'])
@admin_required
def change_plan(tenant_id: int) -> Response:
    plan = _require_plan(_payload())
    subscription = SubscriptionService(get_session()).change_plan(tenant_id, plan)
    current_app.logger.info(f"[ADMIN] {g.admin_user.email} changed tenant {tenant_id} to {plan.value}")
    return jsonify(_subscription_response(
        subscription, f"Plan cambiado a {plan_catalog.get_plan_limits(plan).display_name}"
    ))


@admin_bp.route('/jobs/recurring-billing', methods=['POST'])
@admin_required
def run_recurring_billing_job() -> Response:
    result = run_recurring_billing()
    if result is None:
        return jsonify({'status': 'error', 'message': 'El proceso de cobro recurrente falló'}), 500
    return jsonify({'status': 'ok', 'result': result})


@admin_bp.route('/jobs/expiry', methods=['POST'])
@admin_required
def run_expiry_job() -> Response:
    return jsonify({'status': 'ok', 'result': run_subscription_expiry()})


@admin_bp.route('/jobs/expiry-preview')
@admin_required
def expiry_preview() -> Response:
    return jsonify(build_expiry_service().run_expiry_check())
